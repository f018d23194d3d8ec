"""HTTP client for the planner API with optimistic views.

Commands are form posts. Between `begin` and `complete` a command is
in flight and the views returned by `calendar_view` / `bucket_view` already
show its effect.
"""
from __future__ import annotations
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional

import httpx

from . import reconcile
from .actions import Action
from .reconcile import OptimisticRecords, Record, Submission

logger = logging.getLogger(__name__)


@dataclass
class CalendarView:
    day: str
    weeks: List[List[str]]
    stats: Dict[str, Dict[str, int]]
    backlog: List[Record]
    tasks: List[Record]


@dataclass
class BucketView:
    bucket: Record
    buckets: List[Record]
    tasks: List[Record]
    unassigned: List[Record]


class PlannerClient:
    def __init__(self, http: httpx.Client):
        self.http = http
        self.in_flight: List[Submission] = []
        self._paths: Dict[int, str] = {}
        self.records: Dict[str, OptimisticRecords] = defaultdict(OptimisticRecords)

    @classmethod
    def connect(cls, base_url: str, token: str) -> "PlannerClient":
        return cls(httpx.Client(base_url=base_url, headers={"Authorization": f"Bearer {token}"}))

    # --- commands ---

    def begin(self, action: Action, path: str = "/api/actions", day: Optional[str] = None, **fields: str) -> Submission:
        payload = {k: v for k, v in fields.items() if v is not None}
        sub = Submission(action=action, payload=payload, day=day)
        self.in_flight.append(sub)
        self._paths[id(sub)] = f"/api/calendar/{day}" if day else path
        return sub

    def complete(self, sub: Submission) -> httpx.Response:
        """Send an in-flight command; it stops being in flight either way."""
        path = self._paths.pop(id(sub))
        try:
            resp = self.http.post(
                path, data={"_action": sub.action.value, **sub.payload}, follow_redirects=False,
            )
        finally:
            self.in_flight.remove(sub)
        if resp.is_error:
            logger.warning("%s %s failed: %s", sub.action.value, sub.id, resp.text)
            resp.raise_for_status()
        return resp

    def submit(self, action: Action, path: str = "/api/actions", day: Optional[str] = None, **fields: str) -> httpx.Response:
        return self.complete(self.begin(action, path, day=day, **fields))

    def new_record(self, list_key: str) -> str:
        """Start a blank record in a list and return its id.

        The placeholder renders immediately; the matching create command is
        the caller's to send.
        """
        return self.records[list_key].add()

    # --- views ---

    def _get(self, path: str) -> dict:
        resp = self.http.get(path)
        resp.raise_for_status()
        return resp.json()

    def calendar_view(self, day: str) -> CalendarView:
        data = self._get(f"/api/calendar/{day}")
        backlog, tasks = data["backlog"], data["tasks"]
        return CalendarView(
            day=data["day"],
            weeks=data["weeks"],
            stats=data["stats"],
            backlog=reconcile.render_list(
                reconcile.BACKLOG, backlog, tasks, self.in_flight,
                records=self.records["backlog"],
            ),
            tasks=reconcile.render_list(
                reconcile.DAY, tasks, backlog, self.in_flight, target=data["day"],
                records=self.records[f"day:{data['day']}"],
            ),
        )

    def bucket_view(self, slug: str) -> BucketView:
        listing = self._get("/api/buckets")
        data = self._get(f"/api/buckets/{slug}")
        bucket, tasks, unassigned = data["bucket"], data["tasks"], listing["unassigned"]
        return BucketView(
            bucket=bucket,
            buckets=reconcile.render_buckets(listing["buckets"], self.in_flight, records=self.records["buckets"]),
            tasks=reconcile.render_list(
                reconcile.BUCKET, tasks, unassigned, self.in_flight, target=bucket["id"],
                records=self.records[f"bucket:{bucket['id']}"],
            ),
            unassigned=reconcile.render_list(
                reconcile.UNASSIGNED, unassigned, tasks, self.in_flight,
                records=self.records["unassigned"],
            ),
        )

    def close(self) -> None:
        self.http.close()
