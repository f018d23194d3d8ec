from __future__ import annotations

from fastapi import Request

from .config import Settings
from .db import Store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> Store:
    return request.app.state.store

