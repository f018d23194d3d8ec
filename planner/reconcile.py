"""Optimistic rendering of task and bucket lists.

The server is the only source of truth. The client layers two things on top
of the last list it fetched:

* placeholders for records the user just asked to create (``isNew``), kept
  until a record with the same id comes back from the server;
* in-flight submissions, which hide a task from the list it is leaving and
  show it in the list it is entering before the server confirms the move.

Nothing here is rolled back on failure. When a submission finishes it leaves
the in-flight set and the next fetch decides what is shown.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from .actions import Action
from .db import gen_id

Record = Dict[str, Any]


def placeholder(record_id: str) -> Record:
    return {"id": record_id, "name": "", "isNew": True}


def is_new_record(record: Any) -> bool:
    return (
        isinstance(record, dict)
        and isinstance(record.get("id"), str)
        and isinstance(record.get("name"), str)
        and bool(record.get("isNew"))
    )


class OptimisticRecords:
    """Pending ids for one rendered list."""

    def __init__(self, id_factory: Callable[[], str] = gen_id):
        self._id_factory = id_factory
        self.pending: List[str] = []

    def add(self) -> str:
        record_id = self._id_factory()
        self.pending.append(record_id)
        return record_id

    def retire(self, saved: Iterable[Record]) -> List[str]:
        """Drop pending ids that the server list now contains."""
        saved_ids = {r["id"] for r in saved}
        retired = [i for i in self.pending if i in saved_ids]
        if retired:
            self.pending = [i for i in self.pending if i not in saved_ids]
        return retired

    def render(self, saved: List[Record]) -> List[Record]:
        self.retire(saved)
        return list(saved) + [placeholder(i) for i in self.pending]


@dataclass(eq=False)
class Submission:
    """A command that has been sent and has not answered yet."""

    action: Action
    payload: Dict[str, str] = field(default_factory=dict)
    # calendar day of the route the form posts to
    day: Optional[str] = None

    @property
    def id(self) -> Optional[str]:
        return self.payload.get("id")

    @property
    def target_day(self) -> Optional[str]:
        return self.day or self.payload.get("day")

    @property
    def target_bucket(self) -> Optional[str]:
        return self.payload.get("bucketId")


@dataclass(frozen=True)
class Container:
    """How tasks enter and leave one kind of list."""

    arrive: Action
    leave: Action


DAY = Container(arrive=Action.MOVE_TASK_TO_DAY, leave=Action.MOVE_TASK_TO_BACKLOG)
BACKLOG = Container(arrive=Action.MOVE_TASK_TO_BACKLOG, leave=Action.MOVE_TASK_TO_DAY)
BUCKET = Container(arrive=Action.MOVE_TASK_TO_BUCKET, leave=Action.UNASSIGN_TASK)
UNASSIGNED = Container(arrive=Action.UNASSIGN_TASK, leave=Action.MOVE_TASK_TO_BUCKET)


def _target(sub: Submission) -> Optional[str]:
    if sub.action == Action.MOVE_TASK_TO_DAY:
        return sub.target_day
    if sub.action == Action.MOVE_TASK_TO_BUCKET:
        return sub.target_bucket
    return None


def immigrants(
    action: Action,
    source: List[Record],
    submissions: Iterable[Submission],
    target: Optional[str] = None,
) -> List[Record]:
    """Tasks from `source` that in-flight `action` submissions are moving here.

    With a `target` (a day key or bucket id) only submissions aimed at that
    day or bucket count.
    """
    submissions = [s for s in submissions if s.action == action]
    if not submissions:
        return []
    by_id = {r["id"]: r for r in source}
    found = []
    for sub in submissions:
        if target is not None and _target(sub) not in (None, target):
            continue
        task = by_id.get(sub.id)
        if task is not None:
            found.append(task)
    return found


def departing_ids(
    container: Container,
    submissions: Iterable[Submission],
    target: Optional[str] = None,
) -> Set[str]:
    ids = set()
    for sub in submissions:
        if sub.id is None:
            continue
        if sub.action in (container.leave, Action.DELETE_TASK):
            ids.add(sub.id)
        elif sub.action == container.arrive and target is not None and _target(sub) not in (None, target):
            # moving to another day or bucket of the same kind
            ids.add(sub.id)
    return ids


def optimistic_complete(task: Record, submissions: Iterable[Submission]) -> bool:
    complete = bool(task.get("complete"))
    for sub in submissions:
        if sub.id != task.get("id"):
            continue
        if sub.action == Action.MARK_COMPLETE:
            complete = True
        elif sub.action == Action.MARK_INCOMPLETE:
            complete = False
    return complete


def optimistic_name(record: Record, submissions: Iterable[Submission]) -> str:
    name = record.get("name", "")
    for sub in submissions:
        if sub.id == record.get("id") and sub.action in (Action.UPDATE_TASK_NAME, Action.UPDATE_BUCKET_NAME):
            name = sub.payload.get("name", name)
    return name


def render_list(
    container: Container,
    saved: List[Record],
    source: List[Record],
    submissions: Iterable[Submission],
    target: Optional[str] = None,
    records: Optional[OptimisticRecords] = None,
) -> List[Record]:
    """The list as the user should see it right now.

    Order: saved tasks by sortKey, then tasks arriving through in-flight
    moves (the server will give them the newest sort key), then placeholders.
    """
    submissions = list(submissions)
    leaving = departing_ids(container, submissions, target)
    if records is not None:
        records.retire(saved)

    seen: Set[str] = set()
    ranked = []
    for task in sorted(saved, key=lambda r: r.get("sortKey") or 0):
        ranked.append(task)
        seen.add(task["id"])
    for task in immigrants(container.arrive, source, submissions, target):
        if task["id"] not in seen:
            ranked.append(task)
            seen.add(task["id"])
    if records is not None:
        ranked.extend(placeholder(i) for i in records.pending if i not in seen)

    rendered = []
    for task in ranked:
        if task["id"] in leaving:
            continue
        if is_new_record(task):
            rendered.append(task)
            continue
        rendered.append(dict(
            task,
            name=optimistic_name(task, submissions),
            complete=optimistic_complete(task, submissions),
        ))
    return rendered


def render_buckets(
    saved: List[Record],
    submissions: Iterable[Submission],
    records: Optional[OptimisticRecords] = None,
) -> List[Record]:
    """Bucket navigation list: pending buckets appended, deleting ones hidden."""
    submissions = list(submissions)
    deleting = {s.id for s in submissions if s.action == Action.DELETE_BUCKET}
    listed = records.render(saved) if records is not None else list(saved)
    rendered = []
    for bucket in listed:
        if bucket["id"] in deleting:
            continue
        if is_new_record(bucket):
            rendered.append(bucket)
        else:
            rendered.append(dict(bucket, name=optimistic_name(bucket, submissions)))
    return rendered
