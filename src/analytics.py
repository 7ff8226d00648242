"""Aggregate statistics over every task a user owns or participates in.

Task counts use the owner's status (Task.status). Weeks start on Monday.
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import date, datetime, timedelta

import participation_store
from models import Task, TaskStatus
from progress import percentage
from schemas import (
    AnalyticsSummary,
    ParticipantProgress,
    StatusShare,
    TrendPoint,
    TrendReport,
)

TREND_RANGES = {"weekly": 7, "monthly": 30}


def _visible(viewer_id: int) -> list[Task]:
    return [task for task, _ in participation_store.visible_tasks(viewer_id)]


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, datetime.min.time())


def summary(viewer_id: int, today: date | None = None) -> AnalyticsSummary:
    today = today or date.today()
    week_start = _start_of_day(today - timedelta(days=today.weekday()))
    month_start = _start_of_day(today.replace(day=1))

    result = AnalyticsSummary()
    for task in _visible(viewer_id):
        done = task.status == TaskStatus.COMPLETED
        result.totalTasks += 1
        if done:
            result.completedTasks += 1
        elif task.status == TaskStatus.IN_PROGRESS:
            result.inProgressTasks += 1
        else:
            result.pendingTasks += 1
        if task.due_date is not None and task.due_date < today and not done:
            result.overdueTasks += 1
        if task.created_at >= week_start:
            result.tasksCreatedThisWeek += 1
        if task.created_at >= month_start:
            result.tasksCreatedThisMonth += 1
        if done and task.updated_at >= week_start:
            result.tasksCompletedThisWeek += 1
        if done and task.updated_at >= month_start:
            result.tasksCompletedThisMonth += 1
    return result


def trends(viewer_id: int, range_name: str | None = "weekly", today: date | None = None) -> TrendReport:
    """Per-day created/completed/overdue counts for tasks created in the last 7 or 30 days.

    Unknown range names fall back to weekly. Overdue here means the task was
    already past due on the day it was created and is still not completed.
    """
    name = range_name if range_name in TREND_RANGES else "weekly"
    today = today or date.today()
    since = _start_of_day(today - timedelta(days=TREND_RANGES[name]))

    days: OrderedDict[date, TrendPoint] = OrderedDict()
    tasks = sorted(
        (t for t in _visible(viewer_id) if t.created_at >= since),
        key=lambda t: (t.created_at, t.id),
    )
    for task in tasks:
        day = task.created_at.date()
        point = days.get(day)
        if point is None:
            point = days[day] = TrendPoint(date=day, created=0, completed=0, overdue=0)
        point.created += 1
        done = task.status == TaskStatus.COMPLETED
        if done:
            point.completed += 1
        if task.due_date is not None and task.due_date < day and not done:
            point.overdue += 1
    return TrendReport(range=name, data=list(days.values()))


def status_breakdown(viewer_id: int) -> list[StatusShare]:
    counts = {status: 0 for status in TaskStatus}
    for task in _visible(viewer_id):
        counts[task.status] += 1
    total = sum(counts.values())
    return [
        StatusShare(status=status, count=count, percentage=percentage(count, total))
        for status, count in counts.items()
    ]


def participant_progress(viewer_id: int) -> ParticipantProgress:
    """Owner slots plus participant rows, summed over every visible task."""
    tasks = _visible(viewer_id)
    participants = participation_store.list_participants(t.id for t in tasks)
    total = completed = 0
    for task in tasks:
        rows = participants.get(task.id, [])
        total += 1 + len(rows)
        completed += (1 if task.status == TaskStatus.COMPLETED else 0) + sum(
            1 for p in rows if p.status == TaskStatus.COMPLETED
        )
    return ParticipantProgress(
        totalParticipants=total,
        completedParticipants=completed,
        overallProgress=percentage(completed, total),
    )
