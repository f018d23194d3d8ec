from __future__ import annotations
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy import select, insert, update, delete, and_, func

from .db import tasks, buckets, now_ts, next_sort_key
from .errors import NotFound

logger = logging.getLogger(__name__)


class TaskOut(BaseModel):
    id: str; name: str; complete: bool
    date: Optional[str] = None
    bucketId: Optional[str] = None
    bucketName: Optional[str] = None
    sortKey: int
    createdAt: int; updatedAt: int


class CalendarStats(BaseModel):
    total: Dict[str, int]
    incomplete: Dict[str, int]


def to_task_out(r) -> TaskOut:
    return TaskOut(
        id=r["id"], name=r["name"] or "", complete=bool(r["complete"]),
        date=r["date"], bucketId=r["bucket_id"], bucketName=r.get("bucket_name"),
        sortKey=int(r["sort_key"]),
        createdAt=int(r["created_at"]), updatedAt=int(r["updated_at"]),
    )


def _select_tasks():
    return (
        select(tasks, buckets.c.name.label("bucket_name"))
        .select_from(tasks.outerjoin(buckets, buckets.c.id == tasks.c.bucket_id))
    )


def _list(conn, *conds) -> List[TaskOut]:
    stmt = _select_tasks().where(and_(*conds)).order_by(tasks.c.sort_key.asc(), tasks.c.created_at.asc())
    return [to_task_out(r) for r in conn.execute(stmt).mappings().all()]


def get_backlog(conn, user_id: str) -> List[TaskOut]:
    return _list(conn, tasks.c.user_id == user_id, tasks.c.date.is_(None))


def get_day_tasks(conn, user_id: str, day: str) -> List[TaskOut]:
    return _list(conn, tasks.c.user_id == user_id, tasks.c.date == day)


def get_unassigned_tasks(conn, user_id: str) -> List[TaskOut]:
    return _list(conn, tasks.c.user_id == user_id, tasks.c.bucket_id.is_(None))


def get_bucket_tasks(conn, user_id: str, bucket_id: str) -> List[TaskOut]:
    return _list(conn, tasks.c.user_id == user_id, tasks.c.bucket_id == bucket_id)


def find_task(conn, user_id: str, task_id: str) -> Optional[TaskOut]:
    r = conn.execute(
        _select_tasks().where(and_(tasks.c.id == task_id, tasks.c.user_id == user_id))
    ).mappings().first()
    return to_task_out(r) if r else None


def get_task(conn, user_id: str, task_id: str) -> TaskOut:
    task = find_task(conn, user_id, task_id)
    if task is None:
        raise NotFound("Task not found")
    return task


def _ensure_bucket_exists(conn, user_id: str, bucket_id: str) -> None:
    if not conn.execute(select(buckets.c.id).where(and_(buckets.c.id == bucket_id, buckets.c.user_id == user_id))).first():
        raise NotFound("Bucket not found")


def _update(conn, user_id: str, task_id: str, values: dict) -> TaskOut:
    values["updated_at"] = now_ts()
    res = conn.execute(
        update(tasks).where(and_(tasks.c.id == task_id, tasks.c.user_id == user_id)).values(**values)
    )
    if res.rowcount == 0:
        raise NotFound("Task not found")
    return get_task(conn, user_id, task_id)


def create_or_update_task(
    conn,
    user_id: str,
    task_id: str,
    name: Optional[str] = None,
    date: Optional[str] = None,
    bucket_id: Optional[str] = None,
) -> TaskOut:
    """Upsert keyed by the client-generated id.

    A retried create whose first response was lost lands on the update
    branch, so it never duplicates the task.
    """
    owner = conn.execute(select(tasks.c.user_id).where(tasks.c.id == task_id)).scalar_one_or_none()
    if bucket_id:
        _ensure_bucket_exists(conn, user_id, bucket_id)

    if owner is None:
        ts = now_ts()
        conn.execute(insert(tasks).values(
            id=task_id, user_id=user_id, name=name or "", complete=False,
            date=date, bucket_id=bucket_id or None, sort_key=next_sort_key(),
            created_at=ts, updated_at=ts,
        ))
        logger.debug("Created task %s", task_id)
        return get_task(conn, user_id, task_id)

    if owner != user_id:
        raise NotFound("Task not found")

    current = get_task(conn, user_id, task_id)
    values = {}
    if name is not None:
        values["name"] = name
    placement = {}
    if date is not None and date != current.date:
        placement["date"] = date
    if bucket_id and bucket_id != current.bucketId:
        placement["bucket_id"] = bucket_id
    if placement:
        placement["sort_key"] = next_sort_key(current.sortKey)
        values.update(placement)
    if not values:
        return current
    return _update(conn, user_id, task_id, values)


def mark_complete(conn, user_id: str, task_id: str) -> TaskOut:
    return _update(conn, user_id, task_id, {"complete": True})


def mark_incomplete(conn, user_id: str, task_id: str) -> TaskOut:
    return _update(conn, user_id, task_id, {"complete": False})


def _move(conn, user_id: str, task_id: str, **placement) -> TaskOut:
    current = get_task(conn, user_id, task_id)
    placement["sort_key"] = next_sort_key(current.sortKey)
    return _update(conn, user_id, task_id, placement)


def add_date(conn, user_id: str, task_id: str, day: str) -> TaskOut:
    return _move(conn, user_id, task_id, date=day)


def remove_date(conn, user_id: str, task_id: str) -> TaskOut:
    return _move(conn, user_id, task_id, date=None)


def assign_task(conn, user_id: str, task_id: str, bucket_id: str) -> TaskOut:
    _ensure_bucket_exists(conn, user_id, bucket_id)
    return _move(conn, user_id, task_id, bucket_id=bucket_id)


def unassign_task(conn, user_id: str, task_id: str) -> TaskOut:
    return _move(conn, user_id, task_id, bucket_id=None)


def delete_task(conn, user_id: str, task_id: str) -> TaskOut:
    task = get_task(conn, user_id, task_id)
    conn.execute(delete(tasks).where(and_(tasks.c.id == task_id, tasks.c.user_id == user_id)))
    return task


def _counts_by_date(conn, user_id: str, start: str, end: str, *extra) -> Dict[str, int]:
    stmt = (
        select(tasks.c.date, func.count(tasks.c.id))
        .where(and_(tasks.c.user_id == user_id, tasks.c.date.is_not(None),
                    tasks.c.date >= start, tasks.c.date <= end, *extra))
        .group_by(tasks.c.date)
        .order_by(tasks.c.date.asc())
    )
    return {d: int(n) for d, n in conn.execute(stmt).all()}


def get_total_counts_by_date(conn, user_id: str, start: str, end: str) -> Dict[str, int]:
    return _counts_by_date(conn, user_id, start, end)


def get_incomplete_counts_by_date(conn, user_id: str, start: str, end: str) -> Dict[str, int]:
    return _counts_by_date(conn, user_id, start, end, tasks.c.complete.is_(False))


def get_calendar_stats(conn, user_id: str, start: str, end: str) -> CalendarStats:
    """Per-day totals over the inclusive window [start, end]; one grouped query each."""
    return CalendarStats(
        total=get_total_counts_by_date(conn, user_id, start, end),
        incomplete=get_incomplete_counts_by_date(conn, user_id, start, end),
    )
