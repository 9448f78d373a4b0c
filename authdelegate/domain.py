"""Defines the auth delegate's options and dispatch table."""

from typing import NamedTuple, Optional, List, Tuple
from urllib.parse import SplitResult

from pydantic import BaseModel, StrictInt, StrictStr


class UpstreamOptions(BaseModel):
    """One entry of the ``upstreams`` list, as it appears in the options."""

    url: Optional[StrictStr] = None
    """Unparsed upstream URL."""

    header_name: Optional[StrictStr] = None
    """Header whose presence sends a request to this upstream."""

    cookie_name: Optional[StrictStr] = None
    """Cookie whose presence sends a request to this upstream."""


class AuthDelegateOptions(BaseModel):
    """Raw, unvalidated options document."""

    port: Optional[StrictInt] = None
    """Port on which to listen for requests."""

    ssl_cert: Optional[StrictStr] = None
    """Path to the server's SSL certificate."""

    ssl_key: Optional[StrictStr] = None
    """Path to the key for ``ssl_cert``."""

    upstreams: Optional[List[UpstreamOptions]] = None
    """
    Upstream auth services, in priority order.

    A request is sent to the first upstream whose header or cookie it
    carries. An upstream that defines neither is the default, and must be
    the final item.
    """


class UpstreamRule(NamedTuple):
    """A validated upstream together with the condition that selects it."""

    url: str
    """The upstream URL as configured."""

    address: SplitResult
    """Parsed form of :attr:`url`; computed once during validation."""

    match_header: str = ''
    """If set, requests carrying this header are sent to this upstream."""

    match_cookie: str = ''
    """If set, requests carrying this cookie are sent to this upstream."""

    @property
    def is_default(self) -> bool:
        """A rule with neither a header nor a cookie matches everything."""
        return not (self.match_header or self.match_cookie)


class Configuration(NamedTuple):
    """Validated auth delegate configuration."""

    port: int
    rules: Tuple[UpstreamRule, ...]
    """Upstream rules; position in the tuple is match priority."""

    ssl_cert: str = ''
    ssl_key: str = ''

    @property
    def use_tls(self) -> bool:
        """Whether to listen with TLS rather than plaintext."""
        return bool(self.ssl_cert and self.ssl_key)
