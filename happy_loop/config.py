import logging
import os


def _default_sqlite_url() -> str:
    data_dir = "/data"
    if os.path.isdir(data_dir):
        return f"sqlite:////{os.path.join(data_dir.lstrip('/'), 'happy_loop.db')}"
    return "sqlite:///happy_loop.db"


def _positive_int(name: str, default: int) -> int:
    value = int(os.getenv(name, str(default)))
    if value < 1:
        raise ValueError(f"{name} must be at least 1, got {value}")
    return value


DATABASE_URL = os.getenv("DATABASE_URL", _default_sqlite_url())
SESSION_SECRET = os.getenv("SESSION_SECRET", "dev-secret")
SESSION_COOKIE = os.getenv("SESSION_COOKIE", "happyloopsession")
SAMPLE_DAYS = _positive_int("SAMPLE_DAYS", 30)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

PACKAGE_DIR = os.path.dirname(__file__)
STATIC_DIR = os.path.join(PACKAGE_DIR, "static")
TEMPLATES_DIR = os.path.join(PACKAGE_DIR, "templates")
UPLOADS_DIR = os.path.join(STATIC_DIR, "uploads")


def configure_logging(level: str = LOG_LEVEL):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
