from __future__ import annotations
from typing import List, Optional

from pydantic import BaseModel
from slugify import slugify as _slugify
from sqlalchemy import select, insert, update, delete, and_

from .db import buckets, tasks, now_ts
from .errors import NotFound


class BucketOut(BaseModel):
    id: str; name: str; slug: str
    createdAt: int; updatedAt: int


def to_bucket_out(r) -> BucketOut:
    return BucketOut(
        id=r["id"], name=r["name"] or "", slug=r["slug"] or "",
        createdAt=int(r["created_at"]), updatedAt=int(r["updated_at"]),
    )


def slugify(value: str) -> str:
    """Lower-case, transliterated slug. Empty names give an empty slug."""
    return _slugify(value or "", lowercase=True, replacements=[["&", " and "]])


def get_buckets(conn, user_id: str) -> List[BucketOut]:
    stmt = select(buckets).where(buckets.c.user_id == user_id).order_by(buckets.c.updated_at.asc(), buckets.c.created_at.asc())
    return [to_bucket_out(r) for r in conn.execute(stmt).mappings().all()]


def find_bucket(conn, user_id: str, bucket_id: str) -> Optional[BucketOut]:
    r = conn.execute(select(buckets).where(and_(buckets.c.id == bucket_id, buckets.c.user_id == user_id))).mappings().first()
    return to_bucket_out(r) if r else None


def get_bucket(conn, user_id: str, bucket_id: str) -> BucketOut:
    bucket = find_bucket(conn, user_id, bucket_id)
    if bucket is None:
        raise NotFound("Bucket not found")
    return bucket


def get_bucket_by_slug(conn, user_id: str, slug: str) -> Optional[BucketOut]:
    # Slugs are not unique; the oldest match wins.
    stmt = (
        select(buckets)
        .where(and_(buckets.c.user_id == user_id, buckets.c.slug == slug))
        .order_by(buckets.c.created_at.asc())
    )
    r = conn.execute(stmt).mappings().first()
    return to_bucket_out(r) if r else None


def get_recent_bucket(conn, user_id: str) -> Optional[BucketOut]:
    stmt = select(buckets).where(buckets.c.user_id == user_id).order_by(buckets.c.updated_at.desc(), buckets.c.created_at.desc())
    r = conn.execute(stmt).mappings().first()
    return to_bucket_out(r) if r else None


def create_bucket(conn, user_id: str, bucket_id: str, name: str = "") -> BucketOut:
    ts = now_ts()
    conn.execute(insert(buckets).values(
        id=bucket_id, user_id=user_id, name=name, slug=slugify(name),
        created_at=ts, updated_at=ts,
    ))
    return get_bucket(conn, user_id, bucket_id)


def update_bucket_name(conn, user_id: str, bucket_id: str, name: str) -> BucketOut:
    stmt = (
        update(buckets)
        .where(and_(buckets.c.id == bucket_id, buckets.c.user_id == user_id))
        .values(name=name, slug=slugify(name), updated_at=now_ts())
    )
    if conn.execute(stmt).rowcount == 0:
        raise NotFound("Bucket not found")
    return get_bucket(conn, user_id, bucket_id)


def delete_bucket(conn, user_id: str, bucket_id: str) -> BucketOut:
    """Delete a bucket; its tasks stay, unassigned."""
    bucket = get_bucket(conn, user_id, bucket_id)
    conn.execute(update(tasks).where(and_(tasks.c.bucket_id == bucket_id, tasks.c.user_id == user_id)).values(bucket_id=None, updated_at=now_ts()))
    conn.execute(delete(buckets).where(and_(buckets.c.id == bucket_id, buckets.c.user_id == user_id)))
    return bucket
