"""Habit accrual: synthetic completion history and the streak/points fold.

The generator draws a plausible history of task completions for one kid over
a date window. The accumulator folds day outcomes, oldest first, into the
kid's running points total and consecutive-day streak. Both are pure; writing
the results to the database lives in :mod:`happy_loop.seeding`.
"""

import random
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Optional, Sequence

from .models import MediaType, Task, TaskLog
from .storage import placeholder_image_url


class OutOfOrderDayError(ValueError):
    """Raised when a day is folded before one that was already folded."""


def date_range(start: date, end: date) -> list[date]:
    if end < start:
        return []
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


def trailing_window(today: date, days: int) -> list[date]:
    return date_range(today - timedelta(days=days - 1), today)


@dataclass
class GeneratedEvidence:
    storage_path: str
    thumbnail_path: Optional[str] = None
    type: MediaType = MediaType.image


@dataclass
class GeneratedCompletion:
    kid_id: int
    task_id: int
    log_date: date
    ai_validated: bool
    parent_approved: Optional[bool]
    points_awarded: int
    evidence: Optional[GeneratedEvidence] = None

    def to_task_log(self) -> TaskLog:
        return TaskLog(
            kid_id=self.kid_id,
            task_id=self.task_id,
            log_date=self.log_date,
            ai_validated=self.ai_validated,
            parent_approved=self.parent_approved,
            points_awarded=self.points_awarded,
        )


@dataclass(frozen=True)
class DayOutcome:
    """Points awarded by each completion recorded on one day."""

    day: date
    awards: tuple[int, ...] = ()

    @property
    def active(self) -> bool:
        return len(self.awards) > 0


@dataclass
class GeneratedDay:
    kid_id: int
    day: date
    completions: list[GeneratedCompletion] = field(default_factory=list)

    @property
    def outcome(self) -> DayOutcome:
        return DayOutcome(self.day, tuple(c.points_awarded for c in self.completions))

    @property
    def evidence_count(self) -> int:
        return sum(1 for c in self.completions if c.evidence is not None)


class CompletionGenerator:
    """Draw a random completion history for demo and seed data.

    Every draw comes from ``rng`` so a seeded ``random.Random`` reproduces the
    exact same history.
    """

    def __init__(
        self,
        rng: random.Random,
        *,
        activity_rate: float = 0.7,
        tasks_per_day: tuple[int, int] = (2, 5),
        ai_validation_rate: float = 0.8,
        approval_rate: float = 0.6,
        rejection_rate: float = 0.1,
        evidence_rate: float = 0.2,
    ):
        low, high = tasks_per_day
        if low < 0 or high < low:
            raise ValueError(f"invalid tasks_per_day range: {tasks_per_day}")
        self.rng = rng
        self.activity_rate = activity_rate
        self.tasks_per_day = tasks_per_day
        self.ai_validation_rate = ai_validation_rate
        self.approval_rate = approval_rate
        self.rejection_rate = rejection_rate
        self.evidence_rate = evidence_rate

    def generate(self, kid_id: int, tasks: Sequence[Task], days: Iterable[date]) -> list[GeneratedDay]:
        if not tasks:
            return []
        ordered_days = sorted(days)
        return [self.generate_day(kid_id, tasks, day) for day in ordered_days]

    def generate_day(self, kid_id: int, tasks: Sequence[Task], day: date) -> GeneratedDay:
        result = GeneratedDay(kid_id=kid_id, day=day)
        if not tasks or self.rng.random() >= self.activity_rate:
            return result
        count = min(self.rng.randint(*self.tasks_per_day), len(tasks))
        for task in self.rng.sample(list(tasks), count):
            result.completions.append(self._complete(kid_id, task, day))
        return result

    def _complete(self, kid_id: int, task: Task, day: date) -> GeneratedCompletion:
        ai_validated = self.rng.random() < self.ai_validation_rate
        approval_draw = self.rng.random()
        parent_approved: Optional[bool] = None
        if ai_validated and approval_draw < self.approval_rate:
            parent_approved = True
        elif ai_validated and approval_draw < self.approval_rate + self.rejection_rate:
            parent_approved = False
        evidence = None
        if parent_approved is not True and self.rng.random() < self.evidence_rate:
            evidence = GeneratedEvidence(
                storage_path=placeholder_image_url(),
                thumbnail_path=placeholder_image_url(100, 100),
            )
        return GeneratedCompletion(
            kid_id=kid_id,
            task_id=task.id,
            log_date=day,
            ai_validated=ai_validated,
            parent_approved=parent_approved,
            points_awarded=task.points if parent_approved is True else 0,
            evidence=evidence,
        )


@dataclass
class StreakAccumulator:
    """Fold day outcomes into a points total and a consecutive-day streak.

    Days must arrive in non-decreasing order. An inactive day only zeroes the
    streak once the gap since the last active day already exceeds one day;
    a single missed day leaves the streak as it was until the next active day
    resets it to 1.
    """

    points: int = 0
    streak: int = 0
    last_active_date: Optional[date] = None
    last_day: Optional[date] = None

    def fold(self, outcome: DayOutcome) -> None:
        if self.last_day is not None and outcome.day < self.last_day:
            raise OutOfOrderDayError(f"{outcome.day} folded after {self.last_day}")
        self.last_day = outcome.day
        self.points += sum(outcome.awards)

        if outcome.active:
            if self.last_active_date is None:
                self.streak = 1
            else:
                gap = (outcome.day - self.last_active_date).days
                if gap == 1:
                    self.streak += 1
                elif gap > 1:
                    self.streak = 1
            self.last_active_date = outcome.day
        elif self.last_active_date is not None:
            if (outcome.day - self.last_active_date).days > 1:
                self.streak = 0

    def fold_all(self, outcomes: Iterable[DayOutcome]) -> "StreakAccumulator":
        for outcome in outcomes:
            self.fold(outcome)
        return self

    @property
    def totals(self) -> tuple[int, int]:
        return self.points, self.streak


def accumulate(outcomes: Iterable[DayOutcome]) -> tuple[int, int]:
    return StreakAccumulator().fold_all(outcomes).totals


def history_outcomes(logs: Iterable[TaskLog], through: Optional[date] = None) -> list[DayOutcome]:
    """Turn stored task logs into one outcome per calendar day.

    The series runs from the earliest log through ``through`` (or the latest
    log), with empty outcomes for days that have no logs. Logs dated after
    ``through`` are left out.
    """
    awards_by_day: dict[date, list[int]] = {}
    for log in logs:
        if through is not None and log.log_date > through:
            continue
        awards_by_day.setdefault(log.log_date, []).append(log.points_awarded or 0)
    if not awards_by_day:
        return []
    start = min(awards_by_day)
    end = through if through is not None else max(awards_by_day)
    return [DayOutcome(day, tuple(awards_by_day.get(day, ()))) for day in date_range(start, end)]


__all__ = [
    "CompletionGenerator",
    "DayOutcome",
    "GeneratedCompletion",
    "GeneratedDay",
    "GeneratedEvidence",
    "OutOfOrderDayError",
    "StreakAccumulator",
    "accumulate",
    "date_range",
    "history_outcomes",
    "trailing_window",
]
