"""Form-action dispatch.

Every route that accepts a POST hands the form to `dispatch`. The `_action`
field picks a command model; the model validates the remaining string fields
once, and the handler applies exactly one mutation.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Mapping, Optional, Tuple, Type, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from . import buckets as bucket_model
from . import tasks as task_model
from .buckets import BucketOut
from .dates import validate_day_key
from .errors import InvariantFailed, UnknownAction
from .tasks import TaskOut

logger = logging.getLogger(__name__)


class Action(str, Enum):
    CREATE_TASK = "CREATE_TASK"
    UPDATE_TASK_NAME = "UPDATE_TASK_NAME"
    MOVE_TASK_TO_DAY = "MOVE_TASK_TO_DAY"
    MOVE_TASK_TO_BACKLOG = "MOVE_TASK_TO_BACKLOG"
    MARK_COMPLETE = "MARK_COMPLETE"
    MARK_INCOMPLETE = "MARK_INCOMPLETE"
    DELETE_TASK = "DELETE_TASK"
    UNASSIGN_TASK = "UNASSIGN_TASK"
    CREATE_BUCKET = "CREATE_BUCKET"
    DELETE_BUCKET = "DELETE_BUCKET"
    UPDATE_BUCKET_NAME = "UPDATE_BUCKET_NAME"
    MOVE_TASK_TO_BUCKET = "MOVE_TASK_TO_BUCKET"


@dataclass(frozen=True)
class Redirect:
    location: str


Result = Union[TaskOut, BucketOut, Redirect]


class TaskRef(BaseModel):
    id: str = Field(min_length=1)


class UpsertTask(TaskRef):
    name: Optional[str] = None
    date: Optional[str] = None
    bucketId: Optional[str] = None

    @field_validator("date")
    @classmethod
    def _day(cls, v):
        return validate_day_key(v)

    @field_validator("bucketId")
    @classmethod
    def _blank_bucket(cls, v):
        return v or None


class MoveToDay(TaskRef):
    day: str = Field(min_length=1)

    @field_validator("day")
    @classmethod
    def _day(cls, v):
        return validate_day_key(v)


class MoveToBucket(TaskRef):
    bucketId: str = Field(min_length=1)


class BucketRef(BaseModel):
    id: str = Field(min_length=1)


class CreateBucket(BucketRef):
    name: str = ""


class RenameBucket(BucketRef):
    name: str = Field(min_length=1)
    # slug of the bucket page the client is looking at
    slug: str = Field(min_length=1)


def _upsert_task(conn, user_id: str, cmd: UpsertTask) -> TaskOut:
    return task_model.create_or_update_task(conn, user_id, cmd.id, name=cmd.name, date=cmd.date, bucket_id=cmd.bucketId)


def _rename_bucket(conn, user_id: str, cmd: RenameBucket) -> Union[BucketOut, Redirect]:
    bucket = bucket_model.get_bucket(conn, user_id, cmd.id)
    bucket_is_active_page = cmd.slug == bucket.slug
    bucket = bucket_model.update_bucket_name(conn, user_id, cmd.id, cmd.name)
    return Redirect(f"/api/buckets/{bucket.slug}") if bucket_is_active_page else bucket


Handler = Callable[..., Result]

COMMANDS: Dict[Action, Tuple[Type[BaseModel], Handler]] = {
    Action.CREATE_TASK: (UpsertTask, _upsert_task),
    Action.UPDATE_TASK_NAME: (UpsertTask, _upsert_task),
    Action.MARK_COMPLETE: (TaskRef, lambda conn, uid, c: task_model.mark_complete(conn, uid, c.id)),
    Action.MARK_INCOMPLETE: (TaskRef, lambda conn, uid, c: task_model.mark_incomplete(conn, uid, c.id)),
    Action.MOVE_TASK_TO_DAY: (MoveToDay, lambda conn, uid, c: task_model.add_date(conn, uid, c.id, c.day)),
    Action.MOVE_TASK_TO_BACKLOG: (TaskRef, lambda conn, uid, c: task_model.remove_date(conn, uid, c.id)),
    Action.MOVE_TASK_TO_BUCKET: (MoveToBucket, lambda conn, uid, c: task_model.assign_task(conn, uid, c.id, c.bucketId)),
    Action.UNASSIGN_TASK: (TaskRef, lambda conn, uid, c: task_model.unassign_task(conn, uid, c.id)),
    Action.DELETE_TASK: (TaskRef, lambda conn, uid, c: task_model.delete_task(conn, uid, c.id)),
    Action.CREATE_BUCKET: (CreateBucket, lambda conn, uid, c: bucket_model.create_bucket(conn, uid, c.id, c.name)),
    Action.DELETE_BUCKET: (BucketRef, lambda conn, uid, c: bucket_model.delete_bucket(conn, uid, c.id)),
    Action.UPDATE_BUCKET_NAME: (RenameBucket, _rename_bucket),
}


def _describe(err: ValidationError) -> str:
    parts = []
    for e in err.errors():
        loc = ".".join(str(x) for x in e.get("loc", ())) or "payload"
        parts.append(f"{loc}: {e.get('msg')}")
    return "; ".join(parts)


def parse_command(data: Mapping[str, str], day: Optional[str] = None) -> Tuple[Action, BaseModel]:
    """Turn a flat form payload into (action, typed command).

    `day` is the calendar day from the route, when the form was posted to one;
    it wins over a `day` field in the payload.
    """
    raw = data.get("_action")
    try:
        action = Action(raw)
    except ValueError:
        raise UnknownAction(raw)
    model, _ = COMMANDS[action]
    fields = {k: v for k, v in data.items() if k != "_action"}
    if day is not None:
        fields["day"] = day
    try:
        return action, model.model_validate(fields)
    except InvariantFailed:
        raise
    except ValidationError as e:
        raise InvariantFailed(f"{action.value}: {_describe(e)}")


def dispatch(conn, user_id: str, data: Mapping[str, str], day: Optional[str] = None) -> Result:
    action, command = parse_command(data, day=day)
    _, handler = COMMANDS[action]
    logger.info("action %s id=%s user=%s", action.value, getattr(command, "id", None), user_id)
    return handler(conn, user_id, command)
