"""Owner/participant relationship storage.

A task has exactly one owner (Task.owner_id) and any number of participant
rows. The owner never has a participant row on their own task.
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

import db as _db
from errors import Conflict, NotFound, SelfShare
from models import AccessLevel, Task, TaskParticipant, TaskStatus, User
from schemas import ParticipantRead

logger = logging.getLogger(__name__)


def list_participants(task_ids: Iterable[int]) -> dict[int, list[ParticipantRead]]:
    """Return task_id -> participants for every id in *task_ids*, in one query.

    Tasks without participants are absent from the mapping. Empty input
    returns ``{}`` without touching the database.
    """
    ids = sorted(set(task_ids))
    if not ids:
        return {}
    with Session(_db.get_engine()) as session:
        rows = session.exec(
            select(TaskParticipant, User)
            .join(User, User.id == TaskParticipant.user_id)
            .where(TaskParticipant.task_id.in_(ids))  # type: ignore[attr-defined]
            .order_by(TaskParticipant.created_at, TaskParticipant.id)
        ).all()
    result: dict[int, list[ParticipantRead]] = {}
    for part, user in rows:
        result.setdefault(part.task_id, []).append(
            ParticipantRead(
                id=user.id,
                username=user.username,
                email=user.email,
                accessLevel=part.access_level.value,
                status=part.status,
            )
        )
    return result


def participant_ids(task_id: int) -> list[int]:
    with Session(_db.get_engine()) as session:
        return list(
            session.exec(select(TaskParticipant.user_id).where(TaskParticipant.task_id == task_id))
        )


def get_participation(task_id: int, user_id: int) -> TaskParticipant | None:
    with Session(_db.get_engine()) as session:
        return session.exec(
            select(TaskParticipant).where(
                TaskParticipant.task_id == task_id,
                TaskParticipant.user_id == user_id,
            )
        ).first()


def add_participant(
    task_id: int,
    user_id: int,
    access_level: AccessLevel,
    invited_by: int,
) -> TaskParticipant:
    """Insert a Pending participation row and return it.

    Raises NotFound if the task is gone, SelfShare if *user_id* owns the task,
    Conflict if the (task, user) pair already exists.
    """
    with Session(_db.get_engine()) as session:
        task = session.get(Task, task_id)
        if task is None:
            raise NotFound("Task not found")
        if task.owner_id == user_id:
            raise SelfShare("You cannot share a task with yourself")
        existing = session.exec(
            select(TaskParticipant.id).where(
                TaskParticipant.task_id == task_id,
                TaskParticipant.user_id == user_id,
            )
        ).first()
        if existing is not None:
            raise Conflict("Task is already shared with this user")
        row = TaskParticipant(
            task_id=task_id,
            user_id=user_id,
            access_level=access_level,
            status=TaskStatus.PENDING,
            invited_by=invited_by,
        )
        session.add(row)
        try:
            session.commit()
        except IntegrityError as exc:
            # Concurrent share of the same pair lost the race on the unique constraint.
            session.rollback()
            raise Conflict("Task is already shared with this user") from exc
        session.refresh(row)
        logger.info("Shared task %s with user %s (%s).", task_id, user_id, access_level.value)
        return row


def set_participant_status(task_id: int, user_id: int, status: TaskStatus) -> None:
    """Set one participant's own status. Raises NotFound if there is no such row."""
    with Session(_db.get_engine()) as session:
        row = session.exec(
            select(TaskParticipant).where(
                TaskParticipant.task_id == task_id,
                TaskParticipant.user_id == user_id,
            )
        ).first()
        if row is None:
            raise NotFound("Participation not found")
        row.status = status
        session.add(row)
        session.commit()


def delete_for_task(session: Session, task_id: int) -> None:
    """Remove every participation row of *task_id* inside the caller's session."""
    for row in session.exec(select(TaskParticipant).where(TaskParticipant.task_id == task_id)).all():
        session.delete(row)


def visible_tasks(
    viewer_id: int, task_ids: Iterable[int] | None = None
) -> list[tuple[Task, User]]:
    """Return (task, owner) pairs the viewer owns or participates in.

    Newest first by created_at, id breaking ties. Pass *task_ids* to restrict
    the result to those tasks.
    """
    with Session(_db.get_engine()) as session:
        q = (
            select(Task, User)
            .join(User, User.id == Task.owner_id)
            .join(
                TaskParticipant,
                and_(TaskParticipant.task_id == Task.id, TaskParticipant.user_id == viewer_id),
                isouter=True,
            )
            .where(or_(Task.owner_id == viewer_id, TaskParticipant.user_id.is_not(None)))  # type: ignore[union-attr]
            .order_by(Task.created_at.desc(), Task.id.desc())  # type: ignore[attr-defined]
        )
        if task_ids is not None:
            ids = list(task_ids)
            if not ids:
                return []
            q = q.where(Task.id.in_(ids))  # type: ignore[attr-defined]
        return list(session.exec(q).all())
