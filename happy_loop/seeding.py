import logging
import random
from datetime import date
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .accrual import CompletionGenerator, DayOutcome, accumulate, trailing_window
from .config import SAMPLE_DAYS
from .errors import CatalogUnavailableError, ParentNotFoundError, SeedingError
from .history import delete_task_logs, persist_generated_history, refresh_kid_totals
from .models import Badge, FamilyConfig, Kid, KidTask, Parent, Reward, Task, TaskFrequency

logger = logging.getLogger(__name__)

SAMPLE_TASKS = [
    {"name": "Brush Teeth", "description": "Brush for 2 minutes", "icon": "🦷", "points": 5, "frequency": TaskFrequency.daily},
    {"name": "Make Bed", "description": "Smooth sheets and arrange pillows", "icon": "🛏️", "points": 5, "frequency": TaskFrequency.daily},
    {"name": "Tidy Room", "description": "Put away toys and clothes", "icon": "🧹", "points": 10, "frequency": TaskFrequency.daily},
    {"name": "Read Book", "description": "Read for 15 minutes", "icon": "📚", "points": 10, "frequency": TaskFrequency.daily},
    {"name": "Homework", "description": "Complete assigned homework", "icon": "✏️", "points": 15, "frequency": TaskFrequency.daily},
    {"name": "Set Table", "description": "Set the table for dinner", "icon": "🍽️", "points": 5, "frequency": TaskFrequency.daily},
    {"name": "Clear Table", "description": "Clear your plate after eating", "icon": "🍽️", "points": 5, "frequency": TaskFrequency.daily},
    {"name": "Walk Dog", "description": "Take the dog for a walk", "icon": "🐕", "points": 15, "frequency": TaskFrequency.daily},
    {"name": "Water Plants", "description": "Water the houseplants", "icon": "🌱", "points": 10, "frequency": TaskFrequency.weekly},
    {"name": "Clean Bathroom", "description": "Help clean the bathroom sink/counter", "icon": "🛁", "points": 20, "frequency": TaskFrequency.weekly},
]

DEV_SAMPLE_TASKS = [
    {"name": "Brush Teeth", "description": "Morning and night", "icon": "🦷", "points": 5, "frequency": TaskFrequency.daily},
    {"name": "Make Bed", "description": "Every morning", "icon": "🛏️", "points": 10, "frequency": TaskFrequency.daily},
    {"name": "Homework", "description": "Complete assigned homework", "icon": "📚", "points": 25, "frequency": TaskFrequency.daily},
    {"name": "Clean Room", "description": "Tidy up room", "icon": "🧹", "points": 30, "frequency": TaskFrequency.weekly},
    {"name": "Feed Pet", "description": "Give food and water to pet", "icon": "🐾", "points": 15, "frequency": TaskFrequency.daily},
]

SAMPLE_REWARDS = [
    {"name": "Extra Screen Time", "description": "30 minutes extra screen time", "image": "📱", "point_cost": 50},
    {"name": "Small Toy", "description": "Choose a small toy from the shop", "image": "🧸", "point_cost": 100},
    {"name": "Book Voucher", "description": "$10 book voucher", "image": "📚", "point_cost": 150},
    {"name": "Movie Night Choice", "description": "Choose the movie for family night", "image": "🎬", "point_cost": 75},
]

DEMO_CHILDREN = [
    {"name": "Sukhnaaz kaur", "age": 7, "avatar": "👧"},
    {"name": "Sehajpreet Kaur", "age": 12, "avatar": "👦"},
]

SAMPLE_KIDS = [
    {"name": "Sample Kid 1", "age": 8, "avatar": "🤖"},
    {"name": "Sample Kid 2", "age": 10, "avatar": "🚀"},
]


def find_parent_by_email(session: Session, email: str) -> Parent:
    parent = session.exec(select(Parent).where(Parent.email == email)).first()
    if not parent:
        raise ParentNotFoundError(f"No parent found with email {email}")
    return parent


def get_parent_kids(session: Session, parent_id: int) -> list[Kid]:
    return list(
        session.exec(
            select(Kid).where(Kid.parent_id == parent_id).order_by(Kid.created_at.desc(), Kid.id.desc())
        ).all()
    )


def get_catalog(session: Session) -> list[Task]:
    return list(session.exec(select(Task).order_by(Task.id)).all())


def insert_tasks(session: Session, presets: list[dict]) -> list[Task]:
    tasks = [Task(**preset) for preset in presets]
    session.add_all(tasks)
    session.commit()
    for task in tasks:
        session.refresh(task)
    return tasks


def setup_sample_tasks(session: Session) -> tuple[bool, int]:
    """Insert the starter catalog when no task exists yet.

    Returns whether tasks were created and how many the catalog now holds.
    """
    existing = session.exec(select(func.count(Task.id))).one()
    if existing:
        return False, int(existing)
    created = insert_tasks(session, SAMPLE_TASKS)
    logger.info("Added %d sample tasks", len(created))
    return True, len(created)


def ensure_sample_rewards(session: Session) -> int:
    if session.exec(select(Reward.id).limit(1)).first() is not None:
        return 0
    for preset in SAMPLE_REWARDS:
        session.add(Reward(**preset))
    session.commit()
    logger.info("Added %d sample rewards", len(SAMPLE_REWARDS))
    return len(SAMPLE_REWARDS)


def assign_tasks(session: Session, kid: Kid, tasks: list[Task]) -> int:
    assigned = set(session.exec(select(KidTask.task_id).where(KidTask.kid_id == kid.id)).all())
    added = 0
    for task in tasks:
        if task.id in assigned:
            continue
        session.add(KidTask(kid_id=kid.id, task_id=task.id))
        added += 1
    session.commit()
    return added


def get_family_config(session: Session, parent_id: int) -> FamilyConfig:
    config = session.exec(select(FamilyConfig).where(FamilyConfig.parent_id == parent_id)).first()
    if config:
        return config
    config = FamilyConfig(parent_id=parent_id)
    session.add(config)
    session.commit()
    session.refresh(config)
    return config


def populate_sample_data(
    session: Session,
    email: str,
    rng: Optional[random.Random] = None,
    today: Optional[date] = None,
    days: int = SAMPLE_DAYS,
) -> dict:
    """Add the demo children and give them a month of generated history."""
    rng = rng or random.Random()
    today = today or date.today()
    parent = find_parent_by_email(session, email)
    logger.info("Populating sample data for parent %s", parent.id)

    kids: list[Kid] = []
    for child in DEMO_CHILDREN:
        kid = Kid(parent_id=parent.id, points=0, streak=0, **child)
        try:
            session.add(kid)
            session.commit()
            session.refresh(kid)
        except SQLAlchemyError:
            session.rollback()
            logger.exception("Error adding child %s", child["name"])
            continue
        kids.append(kid)
    if not kids:
        raise SeedingError("Failed to add any children")

    tasks = get_catalog(session)
    if not tasks:
        raise CatalogUnavailableError("Could not fetch tasks to generate logs")

    try:
        ensure_sample_rewards(session)
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Error adding sample rewards")

    for kid in kids:
        try:
            assign_tasks(session, kid, tasks)
        except SQLAlchemyError:
            session.rollback()
            logger.exception("Error assigning tasks to kid %s", kid.id)

    generator = CompletionGenerator(rng, tasks_per_day=(2, 5))
    window = trailing_window(today, days)
    logs_generated = 0
    media_generated = 0
    for kid in kids:
        generated = generator.generate(kid.id, tasks, window)
        written = persist_generated_history(session, generated)
        logs_generated += written.logs
        media_generated += written.media
        outcomes = [
            DayOutcome(day.day) if day.day in written.failed_days else day.outcome for day in generated
        ]
        kid.points, kid.streak = accumulate(outcomes)
        session.add(kid)
        session.commit()
        session.refresh(kid)
        logger.info("Updated kid %s: points=%s streak=%s", kid.id, kid.points, kid.streak)

    logger.info(
        "Sample data complete: %d logs and %d media placeholders", logs_generated, media_generated
    )
    return {
        "kids": kids,
        "logs_generated": logs_generated,
        "media_generated": media_generated,
    }


def seed_dev_data(
    session: Session,
    email: str,
    rng: Optional[random.Random] = None,
    today: Optional[date] = None,
    days: int = SAMPLE_DAYS,
) -> dict:
    """Regenerate the last ``days`` of history for a parent's kids."""
    if days < 1:
        raise SeedingError(f"Cannot seed {days} days of history")
    rng = rng or random.Random()
    today = today or date.today()
    parent = find_parent_by_email(session, email)

    kids = get_parent_kids(session, parent.id)
    if not kids:
        logger.info("No kids for parent %s, creating sample kids", parent.id)
        kids = [Kid(parent_id=parent.id, **preset) for preset in SAMPLE_KIDS]
        session.add_all(kids)
        session.commit()
        for kid in kids:
            session.refresh(kid)

    tasks = get_catalog(session)
    if not tasks:
        logger.info("No tasks found, creating dev sample tasks")
        tasks = insert_tasks(session, DEV_SAMPLE_TASKS)

    window = trailing_window(today, days)
    try:
        cleared = delete_task_logs(session, [kid.id for kid in kids], since=window[0])
        session.commit()
        logger.info("Cleared %d task logs since %s", cleared, window[0])
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Deleting recent task logs failed")

    generator = CompletionGenerator(rng, tasks_per_day=(1, 4))
    logs_generated = 0
    for kid in kids:
        written = persist_generated_history(session, generator.generate(kid.id, tasks, window))
        logs_generated += written.logs
        refresh_kid_totals(session, kid, through=today)

    return {"kids_processed": len(kids), "tasks_found": len(tasks), "logs_generated": logs_generated}


def delete_kid_records(session: Session, kid_ids: list[int]):
    """Delete the kids' task assignments and badges. The caller commits."""
    if not kid_ids:
        return
    for assignment in session.exec(select(KidTask).where(KidTask.kid_id.in_(kid_ids))).all():
        session.delete(assignment)
    for badge in session.exec(select(Badge).where(Badge.kid_id.in_(kid_ids))).all():
        session.delete(badge)
    session.flush()


def cleanup_duplicate_kids(session: Session, parent: Parent) -> tuple[int, int]:
    """Keep the newest kid per name and delete the rest with their logs.

    Returns the number of kids and task logs deleted.
    """
    kids = session.exec(
        select(Kid)
        .where(Kid.parent_id == parent.id)
        .order_by(Kid.name, Kid.created_at.desc(), Kid.id.desc())
    ).all()
    keep: dict[str, int] = {}
    duplicates: list[Kid] = []
    for kid in kids:
        if kid.name not in keep:
            keep[kid.name] = kid.id
        else:
            logger.info("Marking duplicate kid %s (%s) for deletion", kid.name, kid.id)
            duplicates.append(kid)
    if not duplicates:
        return 0, 0

    duplicate_ids = [kid.id for kid in duplicates]
    deleted_logs = delete_task_logs(session, duplicate_ids)
    delete_kid_records(session, duplicate_ids)
    for kid in duplicates:
        session.delete(kid)
    session.commit()
    logger.info("Removed %d duplicate kids and %d task logs", len(duplicates), deleted_logs)
    return len(duplicates), deleted_logs


def delete_kids(session: Session, parent: Parent) -> int:
    kids = get_parent_kids(session, parent.id)
    kid_ids = [kid.id for kid in kids]
    delete_task_logs(session, kid_ids)
    delete_kid_records(session, kid_ids)
    for kid in kids:
        session.delete(kid)
    session.commit()
    logger.info("Deleted %d kids for parent %s", len(kids), parent.id)
    return len(kids)
