"""Per-viewer task view: status, permissions and overall progress.

Pure functions over a task, its owner and its participant list. No database
access, no hidden state: the same inputs always produce the same payload.
"""

from __future__ import annotations

from typing import Iterable

from errors import AccessInvariantError
from models import AccessLevel, Task, TaskStatus, User
from schemas import OwnerRead, ParticipantRead, Permissions, TaskPayload

OWNER_ACCESS_LEVEL = "owner"


def percentage(part: int, whole: int) -> int:
    """Return ``part / whole`` as a whole percentage, rounding halves up.

    Integer arithmetic, so 1/8 gives 13 (not the 12 banker's rounding would).
    Returns 0 when *whole* is not positive.
    """
    if whole <= 0:
        return 0
    return (200 * part + whole) // (2 * whole)


def calculate_overall_progress(
    owner_status: TaskStatus, participants: Iterable[ParticipantRead]
) -> tuple[int, int, int]:
    """Return ``(total, completed, overall_progress)``; the owner always counts as one."""
    statuses = [p.status for p in participants]
    total = len(statuses) + 1
    completed = (1 if owner_status == TaskStatus.COMPLETED else 0) + sum(
        1 for s in statuses if s == TaskStatus.COMPLETED
    )
    return total, completed, percentage(completed, total)


def compute_permissions(is_owner: bool, access_level: str | None) -> Permissions:
    full = is_owner or access_level == AccessLevel.FULL.value
    return Permissions(
        canEdit=full,
        canDelete=full,
        canUpdateProgress=is_owner or access_level is not None,
        canShare=is_owner,
    )


def compute_view(
    task: Task,
    owner: User,
    participants: list[ParticipantRead],
    viewer_id: int,
) -> TaskPayload:
    """Build the TaskPayload *viewer_id* sees for *task*.

    Raises AccessInvariantError when the viewer is neither the owner nor in
    *participants*; callers only compute views for tasks the viewer can reach.
    """
    is_owner = task.owner_id == viewer_id
    annotated = [p.model_copy(update={"isCurrentUser": p.id == viewer_id}) for p in participants]
    viewer_row = None if is_owner else next((p for p in annotated if p.id == viewer_id), None)

    if is_owner:
        viewer_status = task.status
        access_level = OWNER_ACCESS_LEVEL
    elif viewer_row is not None:
        viewer_status = viewer_row.status
        access_level = viewer_row.accessLevel
    else:
        raise AccessInvariantError(
            f"User {viewer_id} has no participation row on task {task.id}"
        )

    total, completed, overall = calculate_overall_progress(task.status, participants)

    return TaskPayload(
        id=task.id,
        title=task.title,
        description=task.description,
        status=viewer_status,
        viewerStatus=viewer_status,
        ownerStatus=task.status,
        due_date=task.due_date,
        created_at=task.created_at,
        updated_at=task.updated_at,
        owner=OwnerRead(id=owner.id, username=owner.username, email=owner.email, status=task.status),
        isOwner=is_owner,
        participants=annotated,
        totalParticipants=total,
        completedParticipants=completed,
        overallProgress=overall,
        permissions=compute_permissions(is_owner, None if is_owner else access_level),
        viewerAccessLevel=access_level,
    )
