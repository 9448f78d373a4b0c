"""
Parses and validates the auth delegate options.

The options are a JSON document, for example:

.. code-block:: json

   {
     "port": 443,
     "ssl_cert": "/etc/ssl/authdelegate.crt",
     "ssl_key": "/etc/ssl/authdelegate.key",
     "upstreams": [
       {"url": "https://sessions.internal/auth", "cookie_name": "_session"},
       {"url": "http://127.0.0.1:8080/auth", "header_name": "X-Signature"},
       {"url": "https://fallback.internal/auth"}
     ]
   }

Validation never stops at the first problem. Every message is collected and
reported together (see :class:`.InvalidOptions`), so that an operator can fix
a broken deployment in one pass.
"""

import os
import stat
import logging
from collections import Counter
from typing import Dict, List, Optional, Union
from urllib.parse import urlsplit

from pydantic import ValidationError

from .domain import AuthDelegateOptions, UpstreamOptions, UpstreamRule, \
    Configuration
from .exceptions import InvalidOptions, OptionsParseError

logger = logging.getLogger(__name__)

HTTP_SCHEMES = ('http', 'https')
MAX_PORT = 65535


def load_options(config: bytes) -> Configuration:
    """
    Parse an options document and validate it.

    Parameters
    ----------
    config : bytes
        Raw JSON, as read from the options file.

    Returns
    -------
    :class:`.Configuration`

    Raises
    ------
    :class:`.OptionsParseError`
        If ``config`` is not JSON, or if a field has the wrong type.
    :class:`.InvalidOptions`
        If the options parsed but did not pass :func:`validate`.

    """
    try:
        options = AuthDelegateOptions.model_validate_json(config)
    except ValidationError as e:
        raise OptionsParseError(
            'JSON parsing failed: ' + _describe(e)
        ) from e
    result = validate(options)
    if isinstance(result, InvalidOptions):
        raise result
    return result


def validate(options: AuthDelegateOptions) \
        -> Union[Configuration, InvalidOptions]:
    """
    Check ``options`` and build the dispatch configuration.

    Returns the :class:`.Configuration` if every check passes. Otherwise
    returns (does not raise) an :class:`.InvalidOptions` carrying all of the
    messages, in the order port, TLS, upstreams.
    """
    messages: List[str] = []
    _validate_port(options, messages)
    _validate_ssl(options, messages)
    rules = _validate_upstreams(options, messages)

    if messages:
        return InvalidOptions(messages)

    logger.debug('Validated %i upstream rules', len(rules))
    return Configuration(
        port=options.port,
        rules=tuple(rules),
        ssl_cert=options.ssl_cert or '',
        ssl_key=options.ssl_key or ''
    )


def _describe(error: ValidationError) -> str:
    """Flatten a pydantic error into a single line."""
    parts = []
    for err in error.errors():
        location = '.'.join(str(loc) for loc in err['loc'])
        parts.append(f'{location}: {err["msg"]}' if location else err['msg'])
    return '; '.join(parts)


def _validate_port(options: AuthDelegateOptions, messages: List[str]) -> None:
    if options.port is None or options.port <= 0:
        messages.append('port must be specified and greater than zero')
    elif options.port > MAX_PORT:
        messages.append(f'port must not be greater than {MAX_PORT}')


def _check_existence_and_permission(path: str, option_name: str,
                                    messages: List[str]) -> None:
    try:
        info = os.stat(path)
    except (FileNotFoundError, NotADirectoryError):
        messages.append(f'{option_name} does not exist: {path}')
    except PermissionError:
        messages.append(f'{option_name} permission is denied: {path}')
    except OSError as e:
        messages.append(f'{option_name} cannot be checked: {path}: '
                        f'{e.strerror}')
    else:
        if not stat.S_ISREG(info.st_mode):
            messages.append(f'{option_name} is not a regular file: {path}')
        elif not os.access(path, os.R_OK):
            messages.append(f'{option_name} permission is denied: {path}')


def _validate_ssl(options: AuthDelegateOptions, messages: List[str]) -> None:
    cert_specified = bool(options.ssl_cert)
    key_specified = bool(options.ssl_key)
    if not (cert_specified or key_specified):
        return
    if not (cert_specified and key_specified):
        messages.append('ssl-cert and ssl-key must both be specified, '
                        'or neither must be')

    if cert_specified:
        _check_existence_and_permission(options.ssl_cert, 'ssl-cert',
                                        messages)
    if key_specified:
        _check_existence_and_permission(options.ssl_key, 'ssl-key', messages)


def _validate_upstreams(options: AuthDelegateOptions,
                        messages: List[str]) -> List[UpstreamRule]:
    upstreams = options.upstreams or []
    if not upstreams:
        messages.append('no upstreams defined')
        return []

    rules = []
    for upstream in upstreams:
        rule = _validate_upstream(upstream, messages)
        if rule is not None:
            rules.append(rule)

    # Cookie names are case-sensitive; header names are not.
    _validate_name_counts(
        'cookie names',
        [upstream.cookie_name for upstream in upstreams if upstream.cookie_name],
        messages
    )
    _validate_name_counts(
        'header names',
        [upstream.header_name for upstream in upstreams if upstream.header_name],
        messages,
        fold_case=True
    )
    _validate_default_upstreams(upstreams, messages)
    return rules


def _validate_upstream(upstream: UpstreamOptions,
                       messages: List[str]) -> Optional[UpstreamRule]:
    """Check a single upstream, returning its rule if it is usable."""
    url = upstream.url or ''
    header_name = upstream.header_name or ''
    cookie_name = upstream.cookie_name or ''
    found = len(messages)

    try:
        address = urlsplit(url)
        address.port    # Raises ValueError if the port is not a number.
    except ValueError as e:
        messages.append(f'upstream URL failed to parse: {e}')
        address = None
    else:
        if not address.scheme:
            messages.append(f'upstream scheme not specified: {url}')
        elif address.scheme not in HTTP_SCHEMES:
            messages.append(f'invalid upstream scheme: {url}')
        elif not address.hostname:
            messages.append(f'upstream host not specified: {url}')

    if header_name and cookie_name:
        messages.append(f'both header_name and cookie_name defined: {url}')

    if address is None or len(messages) != found:
        return None
    return UpstreamRule(url=url, address=address, match_header=header_name,
                        match_cookie=cookie_name)


def _validate_name_counts(category: str, names: List[str],
                          messages: List[str], fold_case: bool = False) -> None:
    spellings: Dict[str, str] = {}
    counts: Counter = Counter()
    for name in names:
        key = name.lower() if fold_case else name
        spellings.setdefault(key, name)
        counts[key] += 1

    repeated = sorted(spellings[key] for key, n in counts.items() if n > 1)
    if repeated:
        messages.append(f'repeated {category}: ' + ', '.join(repeated))


def _validate_default_upstreams(upstreams: List[UpstreamOptions],
                                messages: List[str]) -> None:
    defaults = [
        (position, upstream) for position, upstream in enumerate(upstreams)
        if not (upstream.header_name or upstream.cookie_name)
    ]
    if not defaults:
        return
    if len(defaults) > 1:
        messages.append('multiple upstreams without header_name '
                        'or cookie_name')
        return

    position, upstream = defaults[0]
    if position != len(upstreams) - 1:
        messages.append('upstream without header_name or cookie_name not '
                        f'last in upstream list: {upstream.url or ""}')
