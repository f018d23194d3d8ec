from datetime import date, timedelta

import pytest
from sqlalchemy import func, select

from planner import db as db_module
from planner import tasks as task_model
from planner.actions import COMMANDS, Action, Redirect, dispatch, parse_command
from planner.buckets import BucketOut, slugify
from planner.dates import format_day_key
from planner.db import buckets, tasks
from planner.errors import InvariantFailed, NotFound, UnknownAction


@pytest.fixture
def run(store, user):
    def _run(data, day=None, user_id=None):
        with store.begin() as conn:
            return dispatch(conn, user_id or user["id"], data, day=day)
    return _run


def count_rows(store, table):
    with store.connect() as conn:
        return conn.execute(select(func.count()).select_from(table)).scalar_one()


def test_every_action_has_a_handler():
    assert set(COMMANDS) == set(Action)


def test_create_task_is_idempotent(run, store):
    first = run({"_action": "CREATE_TASK", "id": "t1", "name": "Milk"})
    again = run({"_action": "CREATE_TASK", "id": "t1", "name": "Milk"})
    assert count_rows(store, tasks) == 1
    assert again.name == "Milk"
    assert again.sortKey == first.sortKey

    renamed = run({"_action": "UPDATE_TASK_NAME", "id": "t1", "name": "Oat milk"})
    assert count_rows(store, tasks) == 1
    assert renamed.name == "Oat milk"
    assert renamed.complete is False


def test_create_task_with_placement(run):
    run({"_action": "CREATE_BUCKET", "id": "b1", "name": "Home"})
    t = run({"_action": "CREATE_TASK", "id": "t1", "name": "", "date": "2024-05-06", "bucketId": "b1"})
    assert t.date == "2024-05-06"
    assert t.bucketId == "b1"
    assert t.bucketName == "Home"
    assert t.name == ""


def test_create_task_blank_fields_mean_unplaced(run):
    t = run({"_action": "CREATE_TASK", "id": "t1", "date": "", "bucketId": ""})
    assert t.date is None
    assert t.bucketId is None


def test_mark_complete_and_incomplete(run):
    run({"_action": "CREATE_TASK", "id": "t1", "name": "x"})
    assert run({"_action": "MARK_COMPLETE", "id": "t1"}).complete is True
    assert run({"_action": "MARK_INCOMPLETE", "id": "t1"}).complete is False


def test_move_between_day_and_backlog(run, store, user):
    run({"_action": "CREATE_TASK", "id": "t1", "name": "x"})
    moved = run({"_action": "MOVE_TASK_TO_DAY", "id": "t1"}, day="2024-05-06")
    assert moved.date == "2024-05-06"
    with store.connect() as conn:
        assert [t.id for t in task_model.get_day_tasks(conn, user["id"], "2024-05-06")] == ["t1"]
        assert task_model.get_backlog(conn, user["id"]) == []

    back = run({"_action": "MOVE_TASK_TO_BACKLOG", "id": "t1"})
    assert back.date is None
    with store.connect() as conn:
        assert [t.id for t in task_model.get_backlog(conn, user["id"])] == ["t1"]


def test_route_day_wins_over_payload_day(run):
    run({"_action": "CREATE_TASK", "id": "t1"})
    moved = run({"_action": "MOVE_TASK_TO_DAY", "id": "t1", "day": "2024-01-01"}, day="2024-05-06")
    assert moved.date == "2024-05-06"


def test_placement_axes_are_independent(run, store, user):
    run({"_action": "CREATE_BUCKET", "id": "b1", "name": "Home"})
    run({"_action": "CREATE_TASK", "id": "t1"})
    steps = [
        ({"_action": "MOVE_TASK_TO_DAY", "id": "t1"}, "2024-05-06"),
        ({"_action": "MOVE_TASK_TO_BUCKET", "id": "t1", "bucketId": "b1"}, None),
        ({"_action": "MOVE_TASK_TO_BACKLOG", "id": "t1"}, None),
        ({"_action": "UNASSIGN_TASK", "id": "t1"}, None),
        ({"_action": "MOVE_TASK_TO_BUCKET", "id": "t1", "bucketId": "b1"}, None),
    ]
    for data, day in steps:
        t = run(data, day=day)
        with store.connect() as conn:
            in_backlog = t.id in [x.id for x in task_model.get_backlog(conn, user["id"])]
            on_day = bool(t.date) and t.id in [x.id for x in task_model.get_day_tasks(conn, user["id"], t.date)]
            unassigned = t.id in [x.id for x in task_model.get_unassigned_tasks(conn, user["id"])]
            in_bucket = t.id in [x.id for x in task_model.get_bucket_tasks(conn, user["id"], "b1")]
        assert in_backlog != on_day
        assert unassigned != in_bucket

    assert t.date is None and t.bucketId == "b1"


def test_sort_key_strictly_advances_on_moves(run, store, monkeypatch):
    run({"_action": "CREATE_BUCKET", "id": "b1", "name": "Home"})
    # a frozen clock must still produce increasing keys
    monkeypatch.setattr(db_module, "now_ms", lambda: 1_000)
    last = run({"_action": "CREATE_TASK", "id": "t1"}).sortKey
    for data, day in [
        ({"_action": "MOVE_TASK_TO_DAY", "id": "t1"}, "2024-05-06"),
        ({"_action": "MOVE_TASK_TO_BACKLOG", "id": "t1"}, None),
        ({"_action": "MOVE_TASK_TO_BUCKET", "id": "t1", "bucketId": "b1"}, None),
        ({"_action": "UNASSIGN_TASK", "id": "t1"}, None),
    ]:
        current = run(data, day=day).sortKey
        assert current > last
        last = current


def test_rename_does_not_touch_sort_key(run):
    created = run({"_action": "CREATE_TASK", "id": "t1", "name": "a"})
    renamed = run({"_action": "UPDATE_TASK_NAME", "id": "t1", "name": "b"})
    assert renamed.sortKey == created.sortKey


def test_delete_task(run, store):
    run({"_action": "CREATE_TASK", "id": "t1", "name": "bye"})
    deleted = run({"_action": "DELETE_TASK", "id": "t1"})
    assert deleted.name == "bye"
    assert count_rows(store, tasks) == 0


def test_unknown_action_is_rejected_without_mutation(run, store):
    run({"_action": "CREATE_TASK", "id": "t1", "name": "keep"})
    with pytest.raises(UnknownAction) as exc:
        run({"_action": "DROP_TABLES", "id": "t1"})
    assert exc.value.status_code == 400
    with pytest.raises(UnknownAction):
        run({"id": "t1"})
    assert count_rows(store, tasks) == 1


@pytest.mark.parametrize("data,day", [
    ({"_action": "MARK_COMPLETE"}, None),
    ({"_action": "MARK_COMPLETE", "id": ""}, None),
    ({"_action": "MOVE_TASK_TO_DAY", "id": "t1"}, None),
    ({"_action": "MOVE_TASK_TO_DAY", "id": "t1"}, "not-a-day"),
    ({"_action": "MOVE_TASK_TO_BUCKET", "id": "t1"}, None),
    ({"_action": "CREATE_TASK", "id": "t1", "date": "2024-02-30"}, None),
    ({"_action": "UPDATE_BUCKET_NAME", "id": "b1", "name": "x"}, None),
])
def test_missing_or_malformed_fields_fail_the_invariant(data, day):
    with pytest.raises(InvariantFailed) as exc:
        parse_command(data, day=day)
    assert exc.value.status_code == 400


def test_missing_records_are_not_found(run, store):
    with pytest.raises(NotFound) as exc:
        run({"_action": "MARK_COMPLETE", "id": "nope"})
    assert exc.value.status_code == 404
    run({"_action": "CREATE_TASK", "id": "t1"})
    with pytest.raises(NotFound):
        run({"_action": "MOVE_TASK_TO_BUCKET", "id": "t1", "bucketId": "missing"})
    with pytest.raises(NotFound):
        run({"_action": "UPDATE_BUCKET_NAME", "id": "missing", "name": "x", "slug": "x"})


def test_tasks_are_scoped_to_their_owner(run, store, make_user):
    other = make_user("other@example.com")
    run({"_action": "CREATE_TASK", "id": "t1", "name": "mine"})
    with pytest.raises(NotFound):
        run({"_action": "DELETE_TASK", "id": "t1"}, user_id=other["id"])
    with pytest.raises(NotFound):
        run({"_action": "CREATE_TASK", "id": "t1", "name": "theirs"}, user_id=other["id"])
    assert count_rows(store, tasks) == 1


def test_create_and_rename_bucket(run):
    b = run({"_action": "CREATE_BUCKET", "id": "b1", "name": "Side Projects!"})
    assert isinstance(b, BucketOut)
    assert b.slug == "side-projects"

    # renaming the bucket being viewed redirects to its new slug
    result = run({"_action": "UPDATE_BUCKET_NAME", "id": "b1", "name": "Garden Work", "slug": "side-projects"})
    assert result == Redirect("/api/buckets/garden-work")

    # renaming from elsewhere returns the bucket
    result = run({"_action": "UPDATE_BUCKET_NAME", "id": "b1", "name": "Yard", "slug": "something-else"})
    assert isinstance(result, BucketOut)
    assert (result.name, result.slug) == ("Yard", "yard")


def test_delete_bucket_unassigns_its_tasks(run, store, user):
    run({"_action": "CREATE_BUCKET", "id": "b1", "name": "Home"})
    run({"_action": "CREATE_TASK", "id": "t1", "bucketId": "b1"})
    run({"_action": "DELETE_BUCKET", "id": "b1"})
    assert count_rows(store, buckets) == 0
    with store.connect() as conn:
        assert task_model.get_task(conn, user["id"], "t1").bucketId is None


def test_calendar_stats(run, store, user):
    today = date.today()
    d1, d2 = format_day_key(today), format_day_key(today + timedelta(days=1))
    for i, day in enumerate([d1, d1, d1, d2]):
        run({"_action": "CREATE_TASK", "id": f"t{i}", "date": day})
    run({"_action": "MARK_COMPLETE", "id": "t0"})
    run({"_action": "CREATE_TASK", "id": "far", "date": "1990-01-01"})
    run({"_action": "CREATE_TASK", "id": "backlog"})

    with store.connect() as conn:
        stats = task_model.get_calendar_stats(conn, user["id"], d1, d2)
    assert stats.total == {d1: 3, d2: 1}
    assert stats.incomplete == {d1: 2, d2: 1}


@pytest.mark.parametrize("name,slug", [
    ("Café", "cafe"),
    ("Rock & Roll", "rock-and-roll"),
    ("  Side   Projects! ", "side-projects"),
    ("", ""),
])
def test_slugify(name, slug):
    assert slugify(name) == slug


def test_slugify_transliterates_non_latin_names():
    slug = slugify("Семья")
    assert slug and slug.isascii()
