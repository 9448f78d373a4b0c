import logging
from typing import Union

from pythonjsonlogger import jsonlogger

_HANDLER_NAME = 'authdelegate'


def setup_logger(level: Union[int, str] = logging.INFO) -> None:
    """Send JSON-formatted records from every logger to stderr."""
    logger = logging.getLogger()
    if not any(handler.get_name() == _HANDLER_NAME
               for handler in logger.handlers):
        logHandler = logging.StreamHandler()
        logHandler.set_name(_HANDLER_NAME)
        formatter = jsonlogger.JsonFormatter(
            '%(asctime)s %(levelname)s %(name)s %(message)s',
            rename_fields={'levelname': 'level', 'asctime': 'timestamp'}
        )
        logHandler.setFormatter(formatter)
        logger.addHandler(logHandler)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
