from __future__ import annotations

from fastapi import FastAPI

from .config import Settings
from .core.app import create_app


def get_application() -> FastAPI:
    """Application factory for ASGI servers (`uvicorn --factory server.src.main:get_application`)."""
    return create_app(Settings())
