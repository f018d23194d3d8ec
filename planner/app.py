from __future__ import annotations
import logging
import os
from contextlib import asynccontextmanager
from datetime import date
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from . import buckets as bucket_model
from . import tasks as task_model
from .actions import Redirect, dispatch
from .auth import (
    MAGIC_LINK_PARAM, UserOut, clear_session_cookie, create_login_request,
    create_session_token, ensure_user_account, is_safe_landing_page,
    require_user, set_session_cookie, to_user_out, validate_magic_link,
)
from .buckets import BucketOut
from .config import Settings
from .dates import calendar_bounds, get_calendar_weeks, is_day_key, today_key
from .db import Store, gen_id
from .deps import get_settings, get_store
from .errors import InvariantFailed
from .mail import send_magic_link_email
from .tasks import CalendarStats, TaskOut

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s:%(name)s: %(message)s"

CACHE_CONTROL = {
    # Long enough for link prefetching to help, short enough that a hover
    # without a visit doesn't leave stale data for a later click.
    "safe_prefetch": "max-age=3",
    # Never cached, even when prefetched.
    "none": "no-cache, max-age=0, must-revalidate",
}

DEFAULT_BUCKET_NAME = "Family"


class CalendarOut(BaseModel):
    day: str
    weeks: List[List[str]]
    stats: CalendarStats
    backlog: List[TaskOut]
    tasks: List[TaskOut]


class BucketsOut(BaseModel):
    buckets: List[BucketOut]
    unassigned: List[TaskOut]


class BucketWithTasksOut(BaseModel):
    bucket: BucketOut
    tasks: List[TaskOut]


async def form_payload(request: Request) -> Dict[str, str]:
    """Flat string payload of a form post (JSON objects are accepted too)."""
    if request.headers.get("content-type", "").startswith("application/json"):
        body = await request.json()
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="Expected an object")
        # same contract as a form: flat string fields, null means absent
        fields = {}
        for k, v in body.items():
            if v is None:
                continue
            if not isinstance(v, str):
                raise HTTPException(status_code=400, detail=f"Field {k} must be a string")
            fields[k] = v
        return fields
    form = await request.form()
    return {k: v for k, v in form.items() if isinstance(v, str)}


def action_response(result):
    if isinstance(result, Redirect):
        return RedirectResponse(result.location, status_code=status.HTTP_303_SEE_OTHER)
    return result


def day_param(day: str) -> str:
    if not is_day_key(day):
        raise InvariantFailed(f"invalid day {day!r}, use YYYY-MM-DD")
    return day


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.store.init()
        logger.info("Planner started")
        try:
            yield
        finally:
            app.state.store.close()

    app = FastAPI(title="Planner", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = Store(settings.database_url)
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=False, allow_methods=["*"], allow_headers=["*"])

    # --- Auth ---

    @app.post("/api/auth/login")
    def login(response: Response, payload: Dict[str, str] = Depends(form_payload), settings: Settings = Depends(get_settings)):
        email = (payload.get("email") or "").strip().lower()
        if "@" not in email:
            raise HTTPException(status_code=400, detail="Missing email")
        landing_page = payload.get("landingPage")
        if landing_page is None:
            raise HTTPException(status_code=400, detail="Missing landing page")
        if not is_safe_landing_page(landing_page):
            raise HTTPException(status_code=400, detail="Invalid landing page")
        link, pending = create_login_request(settings, email, landing_page)
        sent = send_magic_link_email(settings, email, link)
        if not sent and settings.smtp_host:
            raise HTTPException(status_code=502, detail="Could not send login email")
        response.set_cookie(
            key=settings.login_cookie, value=pending, max_age=settings.magic_link_ttl_seconds,
            httponly=True, samesite="lax", secure=settings.cookie_secure, path="/",
        )
        return "ok"

    @app.get("/auth/validate")
    def validate(request: Request, magic: Optional[str] = Query(default=None, alias=MAGIC_LINK_PARAM)):
        settings = get_settings(request)
        link = validate_magic_link(settings, magic, request.cookies.get(settings.login_cookie))
        with get_store(request).begin() as conn:
            user = ensure_user_account(conn, link.email)
        resp = RedirectResponse(link.landingPage, status_code=status.HTTP_303_SEE_OTHER)
        set_session_cookie(resp, settings, create_session_token(settings, user["id"]))
        resp.delete_cookie(key=settings.login_cookie, path="/")
        return resp

    @app.post("/api/auth/logout")
    def logout(response: Response, settings: Settings = Depends(get_settings)):
        clear_session_cookie(response, settings)
        return {"ok": True}

    @app.get("/api/auth/me", response_model=UserOut)
    def me(user=Depends(require_user)):
        return to_user_out(user)

    @app.get("/api/health")
    def health():
        return {"ok": True, "today": today_key()}

    # --- Calendar ---

    @app.get("/api/calendar")
    def calendar_today(user=Depends(require_user)):
        return RedirectResponse(f"/api/calendar/{today_key()}", status_code=status.HTTP_303_SEE_OTHER)

    @app.get("/api/calendar/{day}", response_model=CalendarOut)
    def calendar(day: str, response: Response, store: Store = Depends(get_store), user=Depends(require_user)):
        day = day_param(day)
        weeks = get_calendar_weeks(date.today())
        start, end = calendar_bounds(weeks)
        with store.connect() as conn:
            backlog = task_model.get_backlog(conn, user["id"])
            stats = task_model.get_calendar_stats(conn, user["id"], start, end)
            tasks = task_model.get_day_tasks(conn, user["id"], day)
        response.headers["Cache-Control"] = CACHE_CONTROL["none"]
        return CalendarOut(day=day, weeks=weeks, stats=stats, backlog=backlog, tasks=tasks)

    @app.get("/api/days/{day}", response_model=List[TaskOut])
    def day_tasks(day: str, response: Response, store: Store = Depends(get_store), user=Depends(require_user)):
        day = day_param(day)
        with store.connect() as conn:
            tasks = task_model.get_day_tasks(conn, user["id"], day)
        response.headers["Cache-Control"] = CACHE_CONTROL["safe_prefetch"]
        return tasks

    @app.post("/api/calendar/{day}")
    def calendar_action(day: str, payload: Dict[str, str] = Depends(form_payload), store: Store = Depends(get_store), user=Depends(require_user)):
        day = day_param(day)
        with store.begin() as conn:
            result = dispatch(conn, user["id"], payload, day=day)
        return action_response(result)

    # --- Buckets ---

    @app.get("/api/buckets", response_model=BucketsOut)
    def buckets(response: Response, store: Store = Depends(get_store), user=Depends(require_user)):
        with store.connect() as conn:
            out = BucketsOut(
                buckets=bucket_model.get_buckets(conn, user["id"]),
                unassigned=task_model.get_unassigned_tasks(conn, user["id"]),
            )
        response.headers["Cache-Control"] = CACHE_CONTROL["none"]
        return out

    @app.get("/api/buckets/recent")
    def recent_bucket(store: Store = Depends(get_store), user=Depends(require_user)):
        with store.begin() as conn:
            latest = bucket_model.get_recent_bucket(conn, user["id"])
            if latest is None:
                latest = bucket_model.create_bucket(conn, user["id"], gen_id(), DEFAULT_BUCKET_NAME)
        return RedirectResponse(f"/api/buckets/{latest.slug}", status_code=status.HTTP_303_SEE_OTHER)

    @app.get("/api/buckets/{slug}", response_model=BucketWithTasksOut)
    def bucket(slug: str, response: Response, store: Store = Depends(get_store), user=Depends(require_user)):
        with store.connect() as conn:
            b = bucket_model.get_bucket_by_slug(conn, user["id"], slug)
            if b is None:
                raise HTTPException(status_code=404, detail="Bucket not found")
            tasks = task_model.get_bucket_tasks(conn, user["id"], b.id)
        response.headers["Cache-Control"] = CACHE_CONTROL["none"]
        return BucketWithTasksOut(bucket=b, tasks=tasks)

    def run_action(payload: Dict[str, str], store: Store, user):
        with store.begin() as conn:
            result = dispatch(conn, user["id"], payload)
        return action_response(result)

    @app.post("/api/buckets")
    def buckets_action(payload: Dict[str, str] = Depends(form_payload), store: Store = Depends(get_store), user=Depends(require_user)):
        return run_action(payload, store, user)

    @app.post("/api/buckets/{slug}")
    def bucket_action(slug: str, payload: Dict[str, str] = Depends(form_payload), store: Store = Depends(get_store), user=Depends(require_user)):
        return run_action(payload, store, user)

    @app.post("/api/actions")
    def action(payload: Dict[str, str] = Depends(form_payload), store: Store = Depends(get_store), user=Depends(require_user)):
        return run_action(payload, store, user)

    front_dir = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "frontend")
    if os.path.isdir(front_dir):
        app.mount("/", StaticFiles(directory=front_dir, html=True), name="frontend")

    return app
