import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .accrual import GeneratedDay, accumulate, date_range, history_outcomes
from .models import Kid, MediaUpload, TaskLog

logger = logging.getLogger(__name__)


@dataclass
class PersistResult:
    logs: int = 0
    media: int = 0
    failed_days: list[date] = field(default_factory=list)


def persist_generated_history(session: Session, days: Iterable[GeneratedDay]) -> PersistResult:
    """Write generated days one transaction per day.

    A day that fails to insert is rolled back, logged and skipped; the days
    after it are still written.
    """
    result = PersistResult()
    for generated in days:
        if not generated.completions:
            continue
        try:
            logs = [completion.to_task_log() for completion in generated.completions]
            session.add_all(logs)
            session.flush()
            media_count = 0
            for completion, log in zip(generated.completions, logs):
                if completion.evidence is None:
                    continue
                media = MediaUpload(
                    task_log_id=log.id,
                    storage_path=completion.evidence.storage_path,
                    type=completion.evidence.type,
                    thumbnail_path=completion.evidence.thumbnail_path,
                )
                session.add(media)
                session.flush()
                log.media_id = media.id
                session.add(log)
                media_count += 1
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            logger.exception(
                "Failed to insert task logs for kid %s on %s", generated.kid_id, generated.day
            )
            result.failed_days.append(generated.day)
            continue
        result.logs += len(logs)
        result.media += media_count
    return result


def kid_history(
    session: Session, kid_id: int, start: Optional[date] = None, end: Optional[date] = None
) -> list[TaskLog]:
    statement = select(TaskLog).where(TaskLog.kid_id == kid_id)
    if start:
        statement = statement.where(TaskLog.log_date >= start)
    if end:
        statement = statement.where(TaskLog.log_date <= end)
    return list(session.exec(statement.order_by(TaskLog.log_date, TaskLog.id)).all())


def compute_kid_totals(session: Session, kid_id: int, through: Optional[date] = None) -> tuple[int, int]:
    return accumulate(history_outcomes(kid_history(session, kid_id), through=through or date.today()))


def refresh_kid_totals(session: Session, kid: Kid, through: Optional[date] = None) -> Kid:
    points, streak = compute_kid_totals(session, kid.id, through)
    kid.points = points
    kid.streak = streak
    session.add(kid)
    session.commit()
    session.refresh(kid)
    logger.info("Updated kid %s: points=%s streak=%s", kid.id, points, streak)
    return kid


def refresh_kid_streak(session: Session, kid: Kid, through: Optional[date] = None) -> Kid:
    _, streak = compute_kid_totals(session, kid.id, through)
    kid.streak = streak
    session.add(kid)
    return kid


def progress_series(session: Session, kid_id: int, days: int, today: Optional[date] = None) -> list[dict]:
    today = today or date.today()
    start = today - timedelta(days=days - 1)
    by_day: dict[date, dict] = {
        day: {"date": day.isoformat(), "completions": 0, "approved": 0, "points": 0}
        for day in date_range(start, today)
    }
    for log in kid_history(session, kid_id, start, today):
        entry = by_day[log.log_date]
        entry["completions"] += 1
        entry["points"] += log.points_awarded
        if log.parent_approved:
            entry["approved"] += 1
    return list(by_day.values())


def delete_task_logs(session: Session, kid_ids: list[int], since: Optional[date] = None) -> int:
    """Delete the kids' task logs and their evidence. The caller commits."""
    if not kid_ids:
        return 0
    statement = select(TaskLog).where(TaskLog.kid_id.in_(kid_ids))
    if since:
        statement = statement.where(TaskLog.log_date >= since)
    logs = session.exec(statement).all()
    log_ids = [log.id for log in logs]
    if log_ids:
        for media in session.exec(select(MediaUpload).where(MediaUpload.task_log_id.in_(log_ids))).all():
            session.delete(media)
        session.flush()
    for log in logs:
        session.delete(log)
    return len(logs)
