"""Task CRUD, sharing and progress updates.

Every operation returns the task as the calling user sees it (see
progress.compute_view) and mutations fan notifications out to the other
people on the task. Fan-out runs after the primary write has committed and
never fails the operation: a lost notification is logged, not raised.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from sqlmodel import Session, select

import db as _db
import participation_store
import user_service
from errors import Forbidden, NotFound, ValidationError
from models import AccessLevel, Notification, Task, TaskStatus
from notification_service import NotificationService
from progress import compute_view
from schemas import Principal, TaskCreate, TaskPayload

logger = logging.getLogger(__name__)

TASK_UPDATED = "task_updated"
TASK_SHARED = "task_shared"
TASK_PROGRESS = "task_progress"

_EDITABLE_FIELDS = ("title", "description", "status", "due_date")


# ---------------------------------------------------------------------------
# Input normalisation
# ---------------------------------------------------------------------------


def parse_status(value: Any) -> TaskStatus:
    """Return the TaskStatus for *value* (exact enum text). Raises ValidationError."""
    if isinstance(value, TaskStatus):
        return value
    if isinstance(value, str):
        try:
            return TaskStatus(value.strip())
        except ValueError:
            pass
    raise ValidationError("Invalid status value")


def parse_due_date(value: Any) -> date | None:
    """Empty values clear the due date; strings must be ISO dates (or datetimes)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return date.fromisoformat(text)
        except ValueError:
            try:
                return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
            except ValueError:
                pass
    raise ValidationError("Invalid due date")


def parse_access_level(value: Any) -> AccessLevel:
    """Anything other than full/limited (any case) falls back to limited."""
    if isinstance(value, str):
        try:
            return AccessLevel(value.strip().lower())
        except ValueError:
            pass
    return AccessLevel.LIMITED


def actor_name(actor: Principal) -> str:
    return actor.username or actor.email or "Someone"


def current_actor(viewer: Principal) -> Principal:
    """Return *viewer* with the username and email stored now; tokens keep the ones from sign-in."""
    user = user_service.get_user(viewer.id)
    return user_service.to_principal(user) if user is not None else viewer


# ---------------------------------------------------------------------------
# Payload loading
# ---------------------------------------------------------------------------


def load_payloads(viewer_id: int, task_ids: list[int] | None = None) -> list[TaskPayload]:
    """Return the viewer's tasks (all, or just *task_ids*), newest first."""
    rows = participation_store.visible_tasks(viewer_id, task_ids)
    if not rows:
        return []
    participants = participation_store.list_participants(task.id for task, _ in rows)
    return [compute_view(task, owner, participants.get(task.id, []), viewer_id) for task, owner in rows]


def _task_exists(task_id: int) -> bool:
    with Session(_db.get_engine()) as session:
        return session.get(Task, task_id) is not None


def load_accessible(task_id: int, viewer_id: int) -> TaskPayload:
    """Return the viewer's payload for *task_id*.

    Raises NotFound if the task does not exist, Forbidden if the viewer is
    neither its owner nor a participant.
    """
    if not _task_exists(task_id):
        raise NotFound("Task not found")
    payloads = load_payloads(viewer_id, [task_id])
    if not payloads:
        raise Forbidden("You do not have access to this task")
    return payloads[0]


class TaskService:
    """Task operations on behalf of an authenticated user."""

    def __init__(self, notifications: NotificationService):
        self.notifications = notifications

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def list_tasks_for_viewer(self, viewer: Principal) -> list[TaskPayload]:
        return load_payloads(viewer.id)

    async def get_task(self, task_id: int, viewer: Principal) -> TaskPayload:
        return load_accessible(task_id, viewer.id)

    # -----------------------------------------------------------------------
    # CRUD
    # -----------------------------------------------------------------------

    async def create_task(self, viewer: Principal, data: TaskCreate) -> TaskPayload:
        title = (data.title or "").strip()
        if not title:
            raise ValidationError("Title is required")
        status = TaskStatus.PENDING if data.status in (None, "") else parse_status(data.status)

        with Session(_db.get_engine()) as session:
            task = Task(
                title=title,
                description=data.description or None,
                status=status,
                due_date=parse_due_date(data.due_date),
                owner_id=viewer.id,
            )
            session.add(task)
            session.commit()
            session.refresh(task)
            task_id = task.id

        logger.info("User %s created task %s.", viewer.id, task_id)
        return load_accessible(task_id, viewer.id)

    async def update_task(self, task_id: int, viewer: Principal, fields: dict[str, Any]) -> TaskPayload:
        """Apply a partial update of title/description/status/due_date.

        Only keys present in *fields* are applied. Requires canEdit.
        """
        access = load_accessible(task_id, viewer.id)
        if not access.permissions.canEdit:
            raise Forbidden("You do not have permission to edit this task")

        changes: dict[str, Any] = {}
        if "title" in fields:
            title = (fields["title"] or "").strip()
            if not title:
                raise ValidationError("Title cannot be empty")
            changes["title"] = title
        if "description" in fields:
            changes["description"] = fields["description"] or None
        if "status" in fields:
            changes["status"] = parse_status(fields["status"])
        if "due_date" in fields:
            changes["due_date"] = parse_due_date(fields["due_date"])
        if not changes:
            raise ValidationError("No updates provided")

        with Session(_db.get_engine()) as session:
            task = session.get(Task, task_id)
            if task is None:
                raise NotFound("Task not found")
            for name, value in changes.items():
                setattr(task, name, value)
            task.updated_at = datetime.now()
            session.add(task)
            session.commit()

        updated = load_accessible(task_id, viewer.id)

        metadata: dict[str, Any] = {"action": "update"}
        if "status" in changes:
            metadata["status"] = changes["status"].value
        actor = current_actor(viewer)
        await self.notify_task_participants(
            task_id,
            actor,
            type=TASK_UPDATED,
            title="Task updated",
            message=f'{actor_name(actor)} updated "{updated.title}".',
            metadata=metadata,
        )
        return updated

    async def delete_task(self, task_id: int, viewer: Principal) -> None:
        """Delete the task with its participations and notifications. Requires canDelete."""
        access = load_accessible(task_id, viewer.id)
        if not access.permissions.canDelete:
            raise Forbidden("You do not have permission to delete this task")

        with Session(_db.get_engine()) as session:
            for note in session.exec(select(Notification).where(Notification.task_id == task_id)).all():
                session.delete(note)
            participation_store.delete_for_task(session, task_id)
            session.flush()
            task = session.get(Task, task_id)
            if task is not None:
                session.delete(task)
            session.commit()
        logger.info("User %s deleted task %s.", viewer.id, task_id)

    # -----------------------------------------------------------------------
    # Sharing and progress
    # -----------------------------------------------------------------------

    async def share_task(
        self,
        task_id: int,
        viewer: Principal,
        identifier: str | None,
        access_level: str | None = None,
    ) -> TaskPayload:
        """Share the task with the user whose email or username is *identifier*.

        Owner only. The new participant starts Pending and is the only one
        notified.
        """
        lookup = (identifier or "").strip()
        if not lookup:
            raise ValidationError("Email or username is required to share a task")
        level = parse_access_level(access_level)

        with Session(_db.get_engine()) as session:
            task = session.get(Task, task_id)
            if task is None:
                raise NotFound("Task not found")
            owner_id, title = task.owner_id, task.title
        if owner_id != viewer.id:
            raise Forbidden("Only the task owner can share this task")

        target = user_service.find_user_by_identifier(lookup)
        if target is None:
            raise NotFound("User not found")
        participation_store.add_participant(task_id, target.id, level, invited_by=viewer.id)

        name = actor_name(current_actor(viewer))
        try:
            await self.notifications.create_notification(
                target.id,
                TASK_SHARED,
                "Task shared with you",
                f'{name} shared "{title}" with you.',
                task_id=task_id,
                metadata={
                    "taskId": task_id,
                    "taskTitle": title,
                    "actorId": viewer.id,
                    "actorName": name,
                    "accessLevel": level.value,
                },
            )
        except Exception:
            logger.exception("Share notification for task %s to user %s failed", task_id, target.id)

        return load_accessible(task_id, viewer.id)

    async def update_progress(self, task_id: int, viewer: Principal, status: Any) -> TaskPayload:
        """Set the viewer's own status: the task status for the owner, the participation otherwise."""
        new_status = parse_status(status)
        access = load_accessible(task_id, viewer.id)
        if not access.permissions.canUpdateProgress:
            raise Forbidden("You do not have permission to update progress")

        if access.isOwner:
            with Session(_db.get_engine()) as session:
                task = session.get(Task, task_id)
                if task is None:
                    raise NotFound("Task not found")
                task.status = new_status
                task.updated_at = datetime.now()
                session.add(task)
                session.commit()
        else:
            participation_store.set_participant_status(task_id, viewer.id, new_status)

        updated = load_accessible(task_id, viewer.id)
        actor = current_actor(viewer)
        await self.notify_task_participants(
            task_id,
            actor,
            type=TASK_PROGRESS,
            title="Progress updated",
            message=f'{actor_name(actor)} updated progress on "{updated.title}" to {new_status.value}.',
            metadata={"action": "progress", "status": new_status.value},
        )
        return updated

    # -----------------------------------------------------------------------
    # Fan-out
    # -----------------------------------------------------------------------

    async def notify_task_participants(
        self,
        task_id: int,
        actor: Principal,
        type: str,
        title: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Notify owner and participants of *task_id*, except *actor*.

        Returns how many notifications were created. An empty recipient set
        creates nothing and pushes nothing. Errors are logged, not raised.
        """
        try:
            with Session(_db.get_engine()) as session:
                task = session.get(Task, task_id)
                if task is None:
                    return 0
                owner_id, task_title = task.owner_id, task.title
            recipients = [owner_id, *participation_store.participant_ids(task_id)]
            recipients = [uid for uid in dict.fromkeys(recipients) if uid != actor.id]
            if not recipients:
                return 0
            created = await self.notifications.notify_users(
                recipients,
                type,
                title,
                message,
                task_id=task_id,
                metadata={
                    "taskId": task_id,
                    "taskTitle": task_title,
                    "actorId": actor.id,
                    "actorName": actor_name(actor),
                    **(metadata or {}),
                },
            )
            return len(created)
        except Exception:
            logger.exception("Fan-out %s for task %s failed", type, task_id)
            return 0
