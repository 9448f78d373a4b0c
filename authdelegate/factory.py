"""Provides an app factory for the auth delegate."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import Response
from starlette.routing import Route

from .dispatch import Dispatcher
from .domain import Configuration, UpstreamRule

logger = logging.getLogger(__name__)


def create_app(configuration: Configuration,
               timeout: Optional[float] = None,
               transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    """
    Initialize an instance of the auth delegate.

    Every path and method is handed to a single :class:`.Dispatcher` built
    from ``configuration``. The dispatcher is available as
    ``app.state.dispatcher``, and its connections are closed when the app
    shuts down.
    """
    dispatcher = Dispatcher(configuration, timeout=timeout,
                            transport=transport)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await dispatcher.aclose()

    # Any path may be forwarded, so none is reserved for documentation.
    app = FastAPI(
        title='authdelegate',
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan
    )
    app.state.dispatcher = dispatcher

    async def delegate(request: Request) -> Response:
        """Authenticate the request via the matching upstream."""
        return await dispatcher.handle(request)

    # A plain route with no method list, so that any verb is dispatched.
    app.router.routes.append(Route('/{path:path}', delegate, methods=None))

    for rule in configuration.rules:
        logger.info('upstream %s: %s', rule.url, _describe_rule(rule))
    return app


def _describe_rule(rule: UpstreamRule) -> str:
    if rule.match_header:
        return f'header {rule.match_header}'
    if rule.match_cookie:
        return f'cookie {rule.match_cookie}'
    return 'default'
