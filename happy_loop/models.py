from datetime import datetime, date
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


class TaskFrequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    weekday = "weekday"
    weekend = "weekend"


class VerificationType(str, Enum):
    none = "none"
    photo = "photo"
    video = "video"


class MediaType(str, Enum):
    image = "image"
    video = "video"
    audio = "audio"


class NotificationFrequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    never = "never"


class Parent(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    name: str
    hashed_password: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Kid(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    parent_id: int = Field(foreign_key="parent.id", index=True)
    name: str
    age: int
    avatar: str
    points: int = Field(default=0)
    streak: int = Field(default=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Task(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    points: int
    frequency: TaskFrequency = Field(default=TaskFrequency.daily)
    verification_type: VerificationType = Field(default=VerificationType.none)
    enabled: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class KidTask(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("kid_id", "task_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    kid_id: int = Field(foreign_key="kid.id", index=True)
    task_id: int = Field(foreign_key="task.id", index=True)


class TaskLog(SQLModel, table=True):
    # one completion per kid, task and day
    __table_args__ = (UniqueConstraint("kid_id", "task_id", "log_date"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    kid_id: int = Field(foreign_key="kid.id", index=True)
    task_id: int = Field(foreign_key="task.id", index=True)
    log_date: date = Field(index=True)
    ai_validated: bool = Field(default=False)
    parent_approved: Optional[bool] = None
    points_awarded: int = Field(default=0)
    media_id: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class MediaUpload(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    task_log_id: int = Field(foreign_key="tasklog.id", index=True)
    storage_path: str
    type: MediaType = Field(default=MediaType.image)
    thumbnail_path: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Reward(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    description: Optional[str] = None
    image: Optional[str] = None
    point_cost: int
    available: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Badge(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    kid_id: int = Field(foreign_key="kid.id", index=True)
    name: str
    icon: Optional[str] = None
    description: Optional[str] = None
    date_earned: datetime = Field(default_factory=datetime.utcnow)


DEFAULT_REWARD_PREFERENCES = ("books", "toys", "art")


class FamilyConfig(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    parent_id: int = Field(foreign_key="parent.id", index=True)
    show_leaderboard: bool = Field(default=True)
    ai_validation: bool = Field(default=True)
    notification_frequency: NotificationFrequency = Field(default=NotificationFrequency.daily)
    reward_preferences: list[str] = Field(
        default_factory=lambda: list(DEFAULT_REWARD_PREFERENCES), sa_column=Column(JSON)
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


__all__ = [
    "Parent",
    "Kid",
    "Task",
    "KidTask",
    "TaskLog",
    "MediaUpload",
    "Reward",
    "Badge",
    "FamilyConfig",
    "TaskFrequency",
    "VerificationType",
    "MediaType",
    "NotificationFrequency",
]
