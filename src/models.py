from datetime import date, datetime
from enum import Enum

from sqlalchemy import Enum as SQLAEnum
from sqlalchemy import Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class TaskStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


class AccessLevel(str, Enum):
    FULL = "full"
    LIMITED = "limited"


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


class User(SQLModel, table=True):
    id: int = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    email: str = Field(index=True, unique=True)
    password_hash: str
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class Task(SQLModel, table=True):
    id: int = Field(default=None, primary_key=True)
    title: str
    description: str | None = Field(default=None, sa_type=Text)
    # Owner's own progress; participants keep theirs on TaskParticipant.
    status: TaskStatus = Field(
        default=TaskStatus.PENDING,
        sa_type=SQLAEnum(TaskStatus, values_callable=_enum_values),
    )
    due_date: date | None = Field(default=None)
    owner_id: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class TaskParticipant(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("task_id", "user_id", name="uq_task_participant"),)

    id: int = Field(default=None, primary_key=True)
    task_id: int = Field(foreign_key="task.id", index=True, ondelete="CASCADE")
    user_id: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    access_level: AccessLevel = Field(
        default=AccessLevel.LIMITED,
        sa_type=SQLAEnum(AccessLevel, values_callable=_enum_values),
    )
    status: TaskStatus = Field(
        default=TaskStatus.PENDING,
        sa_type=SQLAEnum(TaskStatus, values_callable=_enum_values),
    )
    invited_by: int | None = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=datetime.now)


class Notification(SQLModel, table=True):
    id: int = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    task_id: int | None = Field(default=None, foreign_key="task.id", ondelete="CASCADE")
    type: str
    title: str
    message: str = Field(sa_type=Text)
    # JSON text; avoid name "metadata" (shadows SQLModel.metadata)
    metadata_json: str | None = Field(default=None, sa_type=Text)
    is_read: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=datetime.now)
