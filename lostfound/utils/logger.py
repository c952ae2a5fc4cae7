import logging

from lostfound.config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s [%(levelname)s] in %(module)s: %(message)s"

_configured = False


def setup_logging(level: str = LOG_LEVEL) -> None:
    """Configure the package logger once. Safe to call on every app start."""
    global _configured
    if _configured:
        return
    _configured = True

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger("lostfound")
    root.setLevel(level.upper())
    root.addHandler(handler)
    root.propagate = False
