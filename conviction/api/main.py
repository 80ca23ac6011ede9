"""ASGI entrypoint: ``uvicorn conviction.api.main:app``."""

from __future__ import annotations

from .app import create_api_app


app = create_api_app()
