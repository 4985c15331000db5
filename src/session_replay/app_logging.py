"""Logging configuration helpers."""

import logging

_NOISY_LOGGERS = ("httpx", "httpcore", "hpack")


def configure_logging(level: int | str = logging.INFO) -> None:
    """Configure the ``session_replay`` logger with a single stream handler.

    ``level`` accepts a logging constant or its name (``"DEBUG"``). HTTP
    client loggers are held at WARNING since every uploaded chunk and
    flushed event batch would otherwise log a request line.
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level}")
        level = resolved
    logger = logging.getLogger("session_replay")
    logger.setLevel(level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s: %(name)s: %(message)s")
    )
    logger.addHandler(handler)
    logger.propagate = False
