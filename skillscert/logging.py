"""
Logging configuration: root handler on stdout, uvicorn and skillscert
loggers at the same level. Services log provider and storage failures with
logger.exception (skillscert/services/purchases.py, notifications.py).
"""
import logging
import sys


def setup_logging(
    level: int | str = logging.INFO,
    format_string: str | None = None,
) -> None:
    if format_string is None:
        format_string = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=format_string,
        stream=sys.stdout,
        force=True,
    )
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        log = logging.getLogger(name)
        if level is not None:
            log.setLevel(level)
    logging.getLogger("skillscert").setLevel(level)
    # Stripe's own logger is chatty at INFO (one line per request)
    logging.getLogger("stripe").setLevel(logging.WARNING)
