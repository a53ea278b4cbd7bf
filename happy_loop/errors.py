class HappyLoopError(Exception):
    """Base class for domain errors raised outside the HTTP layer."""


class ParentNotFoundError(HappyLoopError):
    pass


class CatalogUnavailableError(HappyLoopError):
    """No task catalog to generate completions from."""


class SeedingError(HappyLoopError):
    pass


class EvidenceError(HappyLoopError):
    pass
