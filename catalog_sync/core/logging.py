# catalog_sync/core/logging.py
import logging
import sys
from typing import Optional
import colorlog

# Drivers are noisy at DEBUG; the pipeline's own logs carry the context
_CAPPED_LOGGERS = ("pymongo", "sqlalchemy.engine", "asyncio", "urllib3")

_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"


def configure_logging(level=logging.INFO, *, color: Optional[bool] = None, process: str = "api"):
    """
    Single stdout handler on the root logger.
    Colors only on a terminal unless forced: the worker usually runs under a supervisor
    that captures stdout, where escape codes end up in the log files.
    """
    if color is None:
        color = sys.stdout.isatty()

    prefix = f"{process} "
    if color:
        formatter = colorlog.ColoredFormatter(
            "%(log_color)s" + prefix + _FORMAT.replace(" %(message)s", "%(reset)s %(message)s"),
            datefmt="%H:%M:%S",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "bold_red",
            },
        )
    else:
        formatter = logging.Formatter(prefix + _FORMAT, datefmt="%Y-%m-%dT%H:%M:%S")

    handler = colorlog.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    logging.getLogger("uvicorn.error").setLevel(level)
    logging.getLogger("uvicorn.access").setLevel(level)
    for name in _CAPPED_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
