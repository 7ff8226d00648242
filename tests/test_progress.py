"""Unit tests for progress (per-viewer view, permissions, overall progress)."""

from datetime import datetime

import pytest

from errors import AccessInvariantError
from models import Task, TaskStatus, User
from progress import calculate_overall_progress, compute_permissions, compute_view, percentage
from schemas import ParticipantRead

OWNER = User(id=1, username="owner", email="owner@example.com", password_hash="")


def _task(status=TaskStatus.PENDING):
    stamp = datetime(2025, 1, 1, 12, 0, 0)
    return Task(id=10, title="Ship it", owner_id=OWNER.id, status=status, created_at=stamp, updated_at=stamp)


def _participant(user_id, status=TaskStatus.PENDING, level="limited"):
    return ParticipantRead(
        id=user_id,
        username=f"user{user_id}",
        email=f"user{user_id}@example.com",
        accessLevel=level,
        status=status,
    )


# ---------------------------------------------------------------------------
# percentage / calculate_overall_progress
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "part,whole,expected",
    [(0, 1, 0), (1, 1, 100), (1, 2, 50), (1, 3, 33), (2, 3, 67), (1, 8, 13), (3, 8, 38), (0, 0, 0)],
)
def test_percentage_rounds_half_up(part, whole, expected):
    assert percentage(part, whole) == expected


def test_overall_progress_counts_owner_as_one():
    total, completed, overall = calculate_overall_progress(TaskStatus.PENDING, [])
    assert (total, completed, overall) == (1, 0, 0)


def test_overall_progress_mixes_owner_and_participants():
    parts = [_participant(2, TaskStatus.COMPLETED), _participant(3, TaskStatus.IN_PROGRESS)]
    total, completed, overall = calculate_overall_progress(TaskStatus.COMPLETED, parts)
    assert total == 3
    assert completed == 2
    assert overall == 67


def test_in_progress_does_not_count_as_completed():
    parts = [_participant(2, TaskStatus.IN_PROGRESS)]
    assert calculate_overall_progress(TaskStatus.IN_PROGRESS, parts) == (2, 0, 0)


# ---------------------------------------------------------------------------
# compute_permissions
# ---------------------------------------------------------------------------


def test_owner_has_every_permission():
    perms = compute_permissions(True, None)
    assert perms.canEdit and perms.canDelete and perms.canUpdateProgress and perms.canShare


def test_full_participant_can_edit_and_delete_but_not_share():
    perms = compute_permissions(False, "full")
    assert perms.canEdit is True
    assert perms.canDelete is True
    assert perms.canUpdateProgress is True
    assert perms.canShare is False


def test_limited_participant_can_only_update_progress():
    perms = compute_permissions(False, "limited")
    assert perms.model_dump() == {
        "canEdit": False,
        "canDelete": False,
        "canUpdateProgress": True,
        "canShare": False,
    }


def test_stranger_has_no_permissions():
    perms = compute_permissions(False, None)
    assert not any(perms.model_dump().values())


# ---------------------------------------------------------------------------
# compute_view
# ---------------------------------------------------------------------------


def test_owner_view():
    view = compute_view(_task(TaskStatus.IN_PROGRESS), OWNER, [_participant(2)], viewer_id=OWNER.id)
    assert view.isOwner is True
    assert view.viewerAccessLevel == "owner"
    assert view.viewerStatus == TaskStatus.IN_PROGRESS
    assert view.status == TaskStatus.IN_PROGRESS
    assert view.owner.username == "owner"
    assert view.owner.status == TaskStatus.IN_PROGRESS
    assert view.totalParticipants == 2
    assert [p.isCurrentUser for p in view.participants] == [False]


def test_participant_view_uses_own_status():
    parts = [_participant(2, TaskStatus.COMPLETED, "limited"), _participant(3)]
    view = compute_view(_task(TaskStatus.PENDING), OWNER, parts, viewer_id=2)
    assert view.isOwner is False
    assert view.viewerStatus == TaskStatus.COMPLETED
    assert view.status == TaskStatus.COMPLETED
    assert view.ownerStatus == TaskStatus.PENDING
    assert view.viewerAccessLevel == "limited"
    assert view.permissions.canEdit is False
    assert view.permissions.canUpdateProgress is True
    assert [p.isCurrentUser for p in view.participants] == [True, False]
    assert view.completedParticipants == 1
    assert view.overallProgress == 33


def test_view_does_not_mutate_participants():
    parts = [_participant(2)]
    compute_view(_task(), OWNER, parts, viewer_id=2)
    assert parts[0].isCurrentUser is False


def test_view_is_idempotent():
    task = _task(TaskStatus.COMPLETED)
    parts = [_participant(2, TaskStatus.COMPLETED, "full"), _participant(3)]
    first = compute_view(task, OWNER, parts, viewer_id=3)
    second = compute_view(task, OWNER, parts, viewer_id=3)
    assert first.model_dump() == second.model_dump()


def test_view_for_viewer_without_participation_raises():
    with pytest.raises(AccessInvariantError):
        compute_view(_task(), OWNER, [_participant(2)], viewer_id=99)


def test_total_is_participants_plus_one_and_progress_in_range():
    for n in range(0, 6):
        parts = [_participant(100 + i, TaskStatus.COMPLETED if i % 2 else TaskStatus.PENDING) for i in range(n)]
        view = compute_view(_task(TaskStatus.COMPLETED), OWNER, parts, viewer_id=OWNER.id)
        assert view.totalParticipants == len(parts) + 1
        assert 0 <= view.overallProgress <= 100
        assert view.overallProgress == percentage(view.completedParticipants, view.totalParticipants)
