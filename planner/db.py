from __future__ import annotations
import logging
import os
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    create_engine, MetaData, Table, Column, Index,
    String, Boolean, BigInteger,
)
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

metadata = MetaData()

users = Table(
    "users", metadata,
    Column("id", String, primary_key=True),
    Column("email", String, nullable=False, unique=True),
    Column("created_at", BigInteger, nullable=False),
)

buckets = Table(
    "buckets", metadata,
    Column("id", String, primary_key=True),
    Column("user_id", String, nullable=False),
    Column("name", String, nullable=False, server_default=""),
    Column("slug", String, nullable=False, server_default=""),
    Column("created_at", BigInteger, nullable=False),
    Column("updated_at", BigInteger, nullable=False),
)

tasks = Table(
    "tasks", metadata,
    Column("id", String, primary_key=True),
    Column("user_id", String, nullable=False),
    Column("name", String, nullable=False, server_default=""),
    Column("complete", Boolean, nullable=False, server_default="false"),
    Column("date", String, nullable=True),
    Column("bucket_id", String, nullable=True),
    Column("sort_key", BigInteger, nullable=False),
    Column("created_at", BigInteger, nullable=False),
    Column("updated_at", BigInteger, nullable=False),
)

Index("ix_tasks_user_date", tasks.c.user_id, tasks.c.date)
Index("ix_tasks_user_bucket", tasks.c.user_id, tasks.c.bucket_id)
Index("ix_buckets_user_slug", buckets.c.user_id, buckets.c.slug)


def now_ts() -> int:
    return int(datetime.now(tz=timezone.utc).timestamp())


def now_ms() -> int:
    return int(datetime.now(tz=timezone.utc).timestamp() * 1000)


def next_sort_key(previous: Optional[int] = None) -> int:
    """Return a sort key strictly greater than `previous`.

    Normally the current time in milliseconds; two moves inside the same
    millisecond (or a clock step backwards) still advance by one.
    """
    ts = now_ms()
    if previous is not None and ts <= previous:
        return int(previous) + 1
    return ts


def gen_id() -> str:
    return f"{now_ts()}_{os.urandom(4).hex()}"


class Store:
    """Owns the SQLAlchemy engine for one application instance.

    The engine is created on first use and disposed by `close()`; the app
    lifespan calls `init()` on startup and `close()` on shutdown.
    """

    def __init__(self, url: str):
        self.url = url
        self._engine: Optional[Engine] = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            kwargs = {}
            if self.url.startswith("sqlite"):
                # FastAPI runs sync endpoints in a threadpool.
                kwargs["connect_args"] = {"check_same_thread": False}
            self._engine = create_engine(self.url, future=True, pool_pre_ping=True, **kwargs)
            logger.info("Store engine created for %s", self.url.split("@")[-1])
        return self._engine

    def begin(self):
        return self.engine.begin()

    def connect(self):
        return self.engine.connect()

    def init(self) -> None:
        metadata.create_all(self.engine)

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            logger.info("Store engine disposed")
