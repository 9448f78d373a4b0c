"""Command-line entry point: load the options, then serve."""

import sys
import logging
from typing import NoReturn, Optional

import click
import uvicorn

from . import config
from .app_logging import setup_logger
from .exceptions import ConfigurationError
from .factory import create_app
from .options import load_options

logger = logging.getLogger(__name__)


def _exit_with_error(operation: str, config_path: str, error: str) -> NoReturn:
    click.echo(f'Error {operation} {config_path}: {error}', err=True)
    sys.exit(1)


@click.command()
@click.argument('config_path', type=click.Path(dir_okay=False))
@click.option('--timeout', type=float, default=None,
              help='Seconds to wait on an upstream; 0 waits indefinitely.')
@click.option('--log-level', default=None, help='Root log level.')
def serve(config_path: str, timeout: Optional[float],
          log_level: Optional[str]) -> None:
    """Delegate auth requests to the upstreams listed in CONFIG_PATH."""
    setup_logger(log_level or config.LOGLEVEL)
    try:
        with open(config_path, 'rb') as f:
            raw = f.read()
    except OSError as e:
        _exit_with_error('reading', config_path, e.strerror or str(e))

    try:
        configuration = load_options(raw)
    except ConfigurationError as e:
        _exit_with_error('parsing', config_path, str(e))

    if timeout is None:
        timeout = config.UPSTREAM_TIMEOUT
    app = create_app(configuration, timeout=timeout or None)

    logger.info('port %i: awaiting auth delegation requests',
                configuration.port)
    uvicorn.run(
        app,
        host=config.BIND_HOST,
        port=configuration.port,
        ssl_certfile=configuration.ssl_cert or None,
        ssl_keyfile=configuration.ssl_key or None,
        log_config=None
    )


if __name__ == '__main__':
    serve()
