"""Testing helpers."""

from typing import Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import httpx

from ..domain import Configuration, UpstreamRule


def make_configuration(*upstreams: Tuple[str, str, str]) -> Configuration:
    """Build a configuration from ``(url, header_name, cookie_name)``."""
    return Configuration(
        port=8080,
        rules=tuple(
            UpstreamRule(url=url, address=urlsplit(url), match_header=header,
                         match_cookie=cookie)
            for url, header, cookie in upstreams
        )
    )


def reply(status_code: int, body: bytes = b'',
          headers: Optional[List[Tuple[str, str]]] = None) -> httpx.Response:
    """A streamed upstream response, as a real transport would return."""
    return httpx.Response(status_code, headers=headers,
                          stream=httpx.ByteStream(body))


class FakeUpstreams:
    """
    Stands in for the network, answering on behalf of several upstreams.

    Each upstream is identified by its host, and answers with a fixed status.
    Every request that reaches an upstream is recorded in :attr:`received`.
    """

    def __init__(self, statuses: Dict[str, int]) -> None:
        self.statuses = statuses
        self.received: List[httpx.Request] = []
        self.transport = httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.received.append(request)
        return reply(self.statuses[request.url.host])

    @property
    def hosts(self) -> List[str]:
        return [request.url.host for request in self.received]

