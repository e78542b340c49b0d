import logging
from typing import Optional, Union


_LOGGING_CONFIGURED = False

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    """Configure basic logging for the audit engine.

    This should be called once (e.g., from main.py). Accepts either a
    numeric level or a level name such as "DEBUG" (as read from
    AUDIT_LOG_LEVEL). Subsequent calls are no-ops.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(level=level, format=LOG_FORMAT)
    # Playwright's driver chatter is rarely useful in audit logs.
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    _LOGGING_CONFIGURED = True
    logging.getLogger(__name__).info("Logging configured at level %s", logging.getLevelName(level))


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Convenience helper to get a logger with the audit configuration applied."""
    return logging.getLogger(name if name is not None else __name__)
