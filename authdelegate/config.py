"""Runtime configuration for the auth delegate service."""

import os

AUTHDELEGATE_CONFIG = os.environ.get('AUTHDELEGATE_CONFIG',
                                     '/etc/authdelegate/config.json')
"""Path to the JSON file describing the port, TLS material and upstreams."""

UPSTREAM_TIMEOUT = float(os.environ.get('UPSTREAM_TIMEOUT', '30'))
"""Seconds to wait on an upstream auth service. ``0`` disables the timeout."""

LOGLEVEL = os.environ.get('LOGLEVEL', 'INFO')

BIND_HOST = os.environ.get('BIND_HOST', '0.0.0.0')
"""Address on which the service listens; the port comes from the options."""
