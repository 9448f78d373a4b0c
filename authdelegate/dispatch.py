"""
Selects an upstream auth service for each request, and forwards it there.

Rules are evaluated in the order in which the upstreams were configured:

- an upstream with a ``header_name`` accepts any request carrying that header,
  whatever its value (including the empty string);
- an upstream with a ``cookie_name`` accepts any request carrying that cookie,
  whatever its value;
- an upstream with neither accepts every request.

The first upstream that accepts the request gets it. If a request carries
both a header and a cookie for two different upstreams, the one listed first
wins. Requests that no upstream accepts are rejected with 401.

The forwarded request carries an ``X-Original-URI`` header. If the inbound
request already has one, for example because it was delegated by another
hop, it is passed through untouched.

The request path and query are joined onto the upstream URL, so an upstream
configured as ``http://auth.internal/oauth2/auth`` receives a request for
``/private/doc?id=1`` at ``/oauth2/auth/private/doc?id=1``. An upstream that
only cares about ``X-Original-URI`` should be configured without a path, or
be prepared to answer on any path beneath its own.
"""

import asyncio
import logging
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import Callable, Iterable, List, Optional, Tuple, AsyncIterator
from urllib.parse import urlunsplit

import httpx
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response, \
    StreamingResponse
from starlette import status

from .domain import Configuration, UpstreamRule

logger = logging.getLogger(__name__)

ORIGINAL_URI_HEADER = 'x-original-uri'
FORWARDED_FOR_HEADER = 'x-forwarded-for'

HOP_BY_HOP_HEADERS = frozenset([
    'connection',
    'keep-alive',
    'proxy-authenticate',
    'proxy-authorization',
    'proxy-connection',
    'te',
    'trailer',
    'trailers',
    'transfer-encoding',
    'upgrade',
])
"""Headers that apply to a single connection, and are never forwarded."""

RawHeaders = List[Tuple[bytes, bytes]]


class Delegate:
    """An upstream rule bound to its forwarding target."""

    def __init__(self, rule: UpstreamRule) -> None:
        self.rule = rule

    def __repr__(self) -> str:
        return f'Delegate({self.rule.url!r})'

    def accepts(self, request: Request) -> bool:
        """Determine whether ``request`` should go to this upstream."""
        if self.rule.match_header:
            return self.rule.match_header in request.headers
        if self.rule.match_cookie:
            return self.rule.match_cookie in request.cookies
        return True

    def target(self, request: Request) -> str:
        """
        Build the upstream URL for ``request``.

        The request path is joined onto the upstream's path, and the request
        query is appended to the upstream's query. Both are kept in their
        raw, still-encoded form.
        """
        address = self.rule.address
        path = _join_path(address.path, _raw_path(request))
        query = _raw_query(request)
        if address.query and query:
            query = f'{address.query}&{query}'
        elif address.query:
            query = address.query
        return urlunsplit((address.scheme, address.netloc, path, query, ''))


class Dispatcher:
    """
    Routes requests to the upstreams of a validated :class:`.Configuration`.

    The dispatcher holds no per-request state; a single instance serves all
    concurrent requests. Upstream connections are pooled in one
    :class:`httpx.AsyncClient`, which must be released with :meth:`aclose`.
    """

    def __init__(self, configuration: Configuration,
                 timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        """
        Build the dispatch table.

        Parameters
        ----------
        configuration : :class:`.Configuration`
        timeout : float or None
            Seconds to wait on an upstream. ``None`` waits indefinitely.
        transport : :class:`httpx.AsyncBaseTransport`
            Overrides the network transport; mainly useful for testing.

        """
        self.delegates = tuple(Delegate(rule) for rule in configuration.rules)
        self.timeout = httpx.Timeout(timeout)
        self.client = httpx.AsyncClient(
            transport=transport,
            timeout=self.timeout,
            follow_redirects=False,
            # Upstream Set-Cookie headers are relayed, never retained.
            cookies=CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))
        )

    def select(self, request: Request) -> Optional[Delegate]:
        """Get the first delegate that accepts ``request``, if any."""
        for delegate in self.delegates:
            if delegate.accepts(request):
                return delegate
        return None

    async def handle(self, request: Request) -> Response:
        """Forward ``request`` to its upstream, or reject it."""
        delegate = self.select(request)
        if delegate is None:
            logger.info('No upstream for %s; rejecting', _request_uri(request))
            return PlainTextResponse('unauthorized request',
                                     status_code=status.HTTP_401_UNAUTHORIZED)
        return await self.forward(delegate, request)

    async def forward(self, delegate: Delegate, request: Request) -> Response:
        """Send ``request`` to the upstream of ``delegate``, relay its reply."""
        headers = _forwarded_headers(request)
        original_uri = dict(headers).get(ORIGINAL_URI_HEADER.encode('latin-1'))
        if original_uri is None:
            original_uri = _request_uri(request).encode('latin-1')
            headers.append((ORIGINAL_URI_HEADER.encode('latin-1'),
                            original_uri))
        logger.info('auth %s via %s', original_uri.decode('latin-1'),
                    delegate.rule.url)

        outbound = httpx.Request(
            request.method,
            delegate.target(request),
            headers=headers,
            content=await request.body(),
            extensions={'timeout': self.timeout.as_dict()}
        )
        try:
            upstream = await self._send(outbound, request.receive)
        except httpx.TimeoutException as e:
            logger.error('Upstream %s timed out: %s', delegate.rule.url, e)
            return PlainTextResponse('upstream timed out',
                                     status_code=status.HTTP_504_GATEWAY_TIMEOUT)
        except httpx.HTTPError as e:
            logger.error('Upstream %s failed: %s', delegate.rule.url, e)
            return PlainTextResponse('upstream unavailable',
                                     status_code=status.HTTP_502_BAD_GATEWAY)
        if upstream is None:
            logger.info('Client went away while waiting on %s',
                        delegate.rule.url)
            return Response(status_code=499)

        response = StreamingResponse(_relay(upstream),
                                     status_code=upstream.status_code,
                                     background=BackgroundTask(upstream.aclose))
        response.raw_headers = _relayed_headers(upstream.headers.raw)
        return response

    async def _send(self, outbound: httpx.Request,
                    receive: Callable) -> Optional[httpx.Response]:
        """
        Send ``outbound`` unless the inbound client disconnects first.

        Returns ``None`` if the client disconnected, in which case the
        upstream request is cancelled and its connection released.
        """
        sending = asyncio.ensure_future(self.client.send(outbound, stream=True))
        watching = asyncio.ensure_future(_wait_for_disconnect(receive))
        try:
            await asyncio.wait({sending, watching},
                               return_when=asyncio.FIRST_COMPLETED)
        finally:
            watching.cancel()
            await asyncio.wait({watching})
            if not sending.done():
                sending.cancel()
                await asyncio.wait({sending})
        if sending.cancelled():
            return None
        return sending.result()

    async def aclose(self) -> None:
        """Close the pooled upstream connections."""
        await self.client.aclose()


async def _wait_for_disconnect(receive: Callable) -> None:
    while True:
        message = await receive()
        if message['type'] == 'http.disconnect':
            return


async def _relay(upstream: httpx.Response) -> AsyncIterator[bytes]:
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
    finally:
        await upstream.aclose()


def _join_path(base: str, path: str) -> str:
    """Join two URL paths with exactly one slash between them."""
    if not base:
        return path or '/'
    if base.endswith('/') and path.startswith('/'):
        return base + path[1:]
    if not base.endswith('/') and not path.startswith('/'):
        return f'{base}/{path}'
    return base + path


def _raw_path(request: Request) -> str:
    raw_path = request.scope.get('raw_path')
    if raw_path:
        # Some servers leave the query string on raw_path.
        return raw_path.split(b'?', 1)[0].decode('latin-1')
    return request.url.path


def _raw_query(request: Request) -> str:
    return request.scope.get('query_string', b'').decode('latin-1')


def _request_uri(request: Request) -> str:
    """The request target as the client sent it: path plus query."""
    query = _raw_query(request)
    return f'{_raw_path(request)}?{query}' if query else _raw_path(request)


def _connection_tokens(raw: Iterable[Tuple[bytes, bytes]]) -> frozenset:
    """Header names listed in ``Connection`` are hop-by-hop as well."""
    return frozenset(
        token.strip().lower().decode('latin-1')
        for name, value in raw if name.lower() == b'connection'
        for token in value.split(b',') if token.strip()
    )


def _forwarded_headers(request: Request) -> RawHeaders:
    """Copy the inbound headers that belong on the upstream request."""
    raw = request.headers.raw
    excluded = HOP_BY_HOP_HEADERS | _connection_tokens(raw) | {'host'}
    headers = [(name, value) for name, value in raw
               if name.lower().decode('latin-1') not in excluded]

    if request.client is not None and request.client.host:
        client_host = request.client.host.encode('latin-1')
        forwarded_for = [value for name, value in headers
                         if name.lower() == FORWARDED_FOR_HEADER.encode()]
        headers = [(name, value) for name, value in headers
                   if name.lower() != FORWARDED_FOR_HEADER.encode()]
        headers.append((FORWARDED_FOR_HEADER.encode('latin-1'),
                        b', '.join(forwarded_for + [client_host])))
    return headers


def _relayed_headers(raw: Iterable[Tuple[bytes, bytes]]) -> RawHeaders:
    """Copy the upstream response headers that belong on our response."""
    raw = list(raw)
    excluded = HOP_BY_HOP_HEADERS | _connection_tokens(raw)
    return [(name.lower(), value) for name, value in raw
            if name.lower().decode('latin-1') not in excluded]
