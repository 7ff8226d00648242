"""Tests for NotificationService: persistence, unread counts, live pushes, mark-read."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from sqlmodel import Session, select

from models import Notification
from notification_service import (
    MARKED_READ_EVENT,
    NEW_EVENT,
    NotificationService,
    clean_ids,
    get_unread_count,
)


def run(coro):
    return asyncio.run(coro)


def _create(notifications, user_id, title="t", **kwargs):
    return run(notifications.create_notification(user_id, "task_updated", title, "m", **kwargs))


# ---------------------------------------------------------------------------
# create_notification
# ---------------------------------------------------------------------------


def test_create_persists_and_pushes(notifications, broadcaster, seed_users):
    bob = seed_users["bob"]
    note = _create(notifications, bob.id, metadata={"taskId": 7, "actorName": "owner"})

    assert note.isRead is False
    assert note.metadata == {"taskId": 7, "actorName": "owner"}
    assert broadcaster.events == [
        (bob.id, NEW_EVENT, {"notification": note.model_dump(mode="json"), "unreadCount": 1})
    ]
    assert get_unread_count(bob.id) == 1


def test_create_keeps_empty_metadata(notifications, seed_users, in_memory_engine):
    note = _create(notifications, seed_users["bob"].id, metadata={})
    assert note.metadata == {}
    with Session(in_memory_engine) as s:
        assert s.exec(select(Notification)).one().metadata_json == "{}"


def test_create_survives_broadcast_failure(in_memory_engine, seed_users):
    class Broken:
        async def emit_to_user(self, user_id, event, payload):
            raise ConnectionError("socket gone")

    service = NotificationService(Broken())
    note = _create(service, seed_users["bob"].id)
    assert note.id is not None
    assert get_unread_count(seed_users["bob"].id) == 1


# ---------------------------------------------------------------------------
# notify_users
# ---------------------------------------------------------------------------


def test_notify_users_dedups_recipients(notifications, broadcaster, seed_users):
    bob, carol = seed_users["bob"], seed_users["carol"]
    created = run(notifications.notify_users([bob.id, carol.id, bob.id], "task_progress", "t", "m"))
    assert sorted(n.userId for n in created) == sorted([bob.id, carol.id])
    assert len(broadcaster.events) == 2


def test_notify_users_empty_is_noop(notifications, broadcaster):
    assert run(notifications.notify_users([], "task_progress", "t", "m")) == []
    assert broadcaster.events == []


def test_notify_users_partial_failure_keeps_others(notifications, seed_users):
    bob, carol = seed_users["bob"], seed_users["carol"]
    real_create = notifications.create_notification

    async def flaky(user_id, *args, **kwargs):
        if user_id == bob.id:
            raise RuntimeError("insert failed")
        return await real_create(user_id, *args, **kwargs)

    notifications.create_notification = AsyncMock(side_effect=flaky)

    created = run(notifications.notify_users([bob.id, carol.id], "task_progress", "t", "m"))

    assert [n.userId for n in created] == [carol.id]
    assert get_unread_count(carol.id) == 1
    assert get_unread_count(bob.id) == 0


# ---------------------------------------------------------------------------
# list_notifications
# ---------------------------------------------------------------------------


def test_list_newest_first_with_limit(notifications, seed_users):
    bob = seed_users["bob"]
    for i in range(4):
        _create(notifications, bob.id, title=f"n{i}")
    _create(notifications, seed_users["carol"].id, title="other")

    assert [n.title for n in notifications.list_notifications(bob.id, 2)] == ["n3", "n2"]
    assert len(notifications.list_notifications(bob.id)) == 4


@pytest.mark.parametrize("limit", [0, -3, "abc", None])
def test_list_invalid_limit_falls_back_to_default(notifications, seed_users, limit):
    _create(notifications, seed_users["bob"].id)
    assert len(notifications.list_notifications(seed_users["bob"].id, limit)) == 1


@pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '"text"'])
def test_list_unparseable_metadata_reads_as_none(notifications, seed_users, db_session, raw):
    bob = seed_users["bob"]
    db_session.add(Notification(user_id=bob.id, type="x", title="t", message="m", metadata_json=raw))
    db_session.commit()
    assert notifications.list_notifications(bob.id)[0].metadata is None


def test_list_round_trips_metadata(notifications, seed_users):
    meta = {"taskId": 3, "status": "Completed", "nested": {"a": [1, 2]}}
    _create(notifications, seed_users["bob"].id, metadata=meta)
    assert notifications.list_notifications(seed_users["bob"].id)[0].metadata == json.loads(json.dumps(meta))


# ---------------------------------------------------------------------------
# mark_as_read / mark_all_as_read
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw,expected",
    [
        ([1, "2", " 3 ", 4.0], [1, 2, 3, 4]),
        ([0, -1, "x", None, True, 2.5], []),
        ("1,2", []),
        (None, []),
        ((5, 6), [5, 6]),
        ([10**30, "99999999999999999999", 2**31 - 1], [2**31 - 1]),
    ],
)
def test_clean_ids(raw, expected):
    assert clean_ids(raw) == expected


def test_mark_as_read_only_touches_own_rows(notifications, broadcaster, seed_users):
    bob, carol = seed_users["bob"], seed_users["carol"]
    mine = [_create(notifications, bob.id).id for _ in range(3)]
    theirs = _create(notifications, carol.id).id
    broadcaster.events.clear()

    unread = run(notifications.mark_as_read(bob.id, [mine[0], str(mine[1]), theirs, "junk"]))

    assert unread == 1
    assert get_unread_count(carol.id) == 1
    assert broadcaster.events == [
        (bob.id, MARKED_READ_EVENT, {"ids": [mine[0], mine[1], theirs], "unreadCount": 1})
    ]


def test_mark_as_read_with_nothing_valid_still_reports_count(notifications, broadcaster, seed_users):
    bob = seed_users["bob"]
    _create(notifications, bob.id)
    broadcaster.events.clear()

    assert run(notifications.mark_as_read(bob.id, "not-a-list")) == 1
    assert broadcaster.events == [(bob.id, MARKED_READ_EVENT, {"ids": [], "unreadCount": 1})]


def test_mark_all_as_read(notifications, broadcaster, seed_users):
    bob, carol = seed_users["bob"], seed_users["carol"]
    for _ in range(3):
        _create(notifications, bob.id)
    _create(notifications, carol.id)
    broadcaster.events.clear()

    assert run(notifications.mark_all_as_read(bob.id)) == 0
    assert notifications.get_unread_count(bob.id) == 0
    assert notifications.get_unread_count(carol.id) == 1
    assert broadcaster.events == [(bob.id, MARKED_READ_EVENT, {"ids": "all", "unreadCount": 0})]
    assert all(n.isRead for n in notifications.list_notifications(bob.id))
