import logging
import sys

from apps.api.app.core.config import settings

_LOGGER_INITIALIZED = False


def init_logging(level: str | None = None) -> None:
    """
    Configures the root logger once with a stdout handler.
    Safe to call repeatedly (app reloads, test clients).
    """
    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel((level or settings.LOG_LEVEL or "INFO").upper())
    root.addHandler(handler)

    _LOGGER_INITIALIZED = True
