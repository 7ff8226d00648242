"""Request/response schemas for the task API and the live channel.

Field names follow the wire shape the web client consumes (camelCase for
derived fields, snake_case for stored task columns). Uses SQLModel
(table=False) for consistency with models.py.
"""

import datetime as _dt
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel
from sqlmodel import SQLModel

from models import TaskStatus


class Principal(SQLModel):
    """Verified identity attached to every request."""

    id: int
    username: str
    email: str


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class RegisterRequest(SQLModel):
    username: str | None = None
    email: str | None = None
    password: str | None = None


class LoginRequest(SQLModel):
    email: str | None = None
    password: str | None = None


class ProfileUpdate(SQLModel):
    username: str | None = None
    email: str | None = None


class PasswordChange(SQLModel):
    password: str | None = None


class UserRead(SQLModel):
    id: int
    username: str
    email: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AuthResponse(SQLModel):
    user: Principal
    token: str


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskCreate(SQLModel):
    """Request body for creating a task. Values are validated by task_service."""

    title: str | None = None
    description: str | None = None
    status: str | None = None
    due_date: str | None = None


class TaskUpdate(SQLModel):
    """Request body for partial task update; only fields sent are applied."""

    title: str | None = None
    description: str | None = None
    status: str | None = None
    due_date: str | None = None


class ShareRequest(SQLModel):
    identifier: str | None = None
    email: str | None = None  # older clients send the email field only
    accessLevel: str | None = None


class ProgressUpdate(SQLModel):
    status: str | None = None


class OwnerRead(SQLModel):
    id: int
    username: str
    email: str
    status: TaskStatus


class ParticipantRead(SQLModel):
    id: int
    username: str
    email: str
    accessLevel: str
    status: TaskStatus
    isCurrentUser: bool = False


class Permissions(SQLModel):
    canEdit: bool
    canDelete: bool
    canUpdateProgress: bool
    canShare: bool


class TaskPayload(SQLModel):
    """Task as seen by one viewer. Computed on read, never stored."""

    id: int
    title: str
    description: str | None = None
    status: TaskStatus
    viewerStatus: TaskStatus
    ownerStatus: TaskStatus
    due_date: date | None = None
    created_at: datetime
    updated_at: datetime
    owner: OwnerRead
    isOwner: bool
    participants: list[ParticipantRead]
    totalParticipants: int
    completedParticipants: int
    overallProgress: int
    permissions: Permissions
    viewerAccessLevel: str | None = None


class MessageResponse(SQLModel):
    message: str


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class NotificationRead(BaseModel):
    """Notification wire shape.

    Plain pydantic model: SQLModel reserves the attribute name ``metadata``.
    """

    id: int
    userId: int
    taskId: int | None = None
    type: str
    title: str
    message: str
    metadata: dict[str, Any] | None = None
    isRead: bool
    createdAt: str | None = None


class NotificationList(BaseModel):
    notifications: list[NotificationRead]
    unreadCount: int


class MarkReadRequest(SQLModel):
    ids: Any = None


class UnreadCount(SQLModel):
    unreadCount: int


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


class AnalyticsSummary(SQLModel):
    totalTasks: int = 0
    completedTasks: int = 0
    pendingTasks: int = 0
    inProgressTasks: int = 0
    overdueTasks: int = 0
    tasksCreatedThisWeek: int = 0
    tasksCompletedThisWeek: int = 0
    tasksCreatedThisMonth: int = 0
    tasksCompletedThisMonth: int = 0


class TrendPoint(SQLModel):
    date: _dt.date
    created: int
    completed: int
    overdue: int


class TrendReport(SQLModel):
    range: str
    data: list[TrendPoint]


class StatusShare(SQLModel):
    status: TaskStatus
    count: int
    percentage: int


class ParticipantProgress(SQLModel):
    totalParticipants: int
    completedParticipants: int
    overallProgress: int
