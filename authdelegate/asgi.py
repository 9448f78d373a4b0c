"""Asynchronous Server Gateway Interface entry-point."""

from typing import Optional

from fastapi import FastAPI

from . import config
from .app_logging import setup_logger
from .factory import create_app
from .options import load_options

_app: Optional[FastAPI] = None


def load_app() -> FastAPI:
    """Build the app from the options file named in the environment."""
    setup_logger(config.LOGLEVEL)
    with open(config.AUTHDELEGATE_CONFIG, 'rb') as f:
        configuration = load_options(f.read())
    return create_app(configuration, timeout=config.UPSTREAM_TIMEOUT or None)


async def application(scope, receive, send):
    """ASGI application; the options are loaded on first use."""
    global _app
    if _app is None:
        _app = load_app()
    await _app(scope, receive, send)
