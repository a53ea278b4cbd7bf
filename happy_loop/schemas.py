from typing import Optional

from sqlmodel import SQLModel

from .models import TaskFrequency, VerificationType


class ParentCreate(SQLModel):
    user_id: Optional[int] = None
    email: Optional[str] = None
    name: Optional[str] = None
    password: Optional[str] = None


class KidCreate(SQLModel):
    parent_id: Optional[int] = None
    name: Optional[str] = None
    age: Optional[int] = None
    avatar: Optional[str] = None
    points: Optional[int] = None
    streak: Optional[int] = None
    email: Optional[str] = None
    parent_name: Optional[str] = None


class EmailRequest(SQLModel):
    email: Optional[str] = None


class SampleDataRequest(EmailRequest):
    seed: Optional[int] = None


class TaskCreate(SQLModel):
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    points: int
    frequency: TaskFrequency = TaskFrequency.daily
    verification_type: VerificationType = VerificationType.none
    enabled: bool = True


class TaskUpdate(SQLModel):
    name: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    points: Optional[int] = None
    frequency: Optional[TaskFrequency] = None
    verification_type: Optional[VerificationType] = None
    enabled: Optional[bool] = None


class RewardCreate(SQLModel):
    name: str
    description: Optional[str] = None
    image: Optional[str] = None
    point_cost: int
    available: bool = True


class RedeemRequest(SQLModel):
    kid_id: int


# fields that may change after a task has completion history
DESCRIPTIVE_TASK_FIELDS = {"name", "description", "icon", "enabled"}
