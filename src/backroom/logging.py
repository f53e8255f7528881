import logging
import os
import sys
from typing import List, Optional


PACKAGE_LOGGER = "backroom"
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _coerce_level(value: Optional[object]) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip():
        resolved = logging.getLevelName(value.strip().upper())
        if isinstance(resolved, int):
            return resolved
    return logging.INFO


def _handlers(level: int) -> List[logging.Handler]:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    log_file = os.environ.get("LOG_FILE")
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
        except OSError:
            sys.stderr.write(f"LOG_FILE {log_file!r} could not be opened; logging to stderr only\n")
    for h in handlers:
        h.setLevel(level)
        h.setFormatter(formatter)
    return handlers


def configure(level: Optional[object] = None) -> logging.Logger:
    """Set up the package logger once; later calls only change the level.

    The level comes from the argument, else LOG_LEVEL, else INFO. Module
    loggers are children of ``backroom`` and inherit its handlers.
    """
    root = logging.getLogger(PACKAGE_LOGGER)
    resolved = _coerce_level(level if level is not None else os.environ.get("LOG_LEVEL"))
    if not getattr(root, "_backroom_configured", False):
        for h in _handlers(resolved):
            root.addHandler(h)
        # Avoid duplicate lines when uvicorn or pytest install a root handler
        root.propagate = False
        setattr(root, "_backroom_configured", True)
    root.setLevel(resolved)
    for h in root.handlers:
        h.setLevel(resolved)
    return root


def get_logger(name: str) -> logging.Logger:
    """Return ``backroom.<name>``, configuring the package logger on first use."""
    configure_once = not getattr(logging.getLogger(PACKAGE_LOGGER), "_backroom_configured", False)
    if configure_once:
        configure()
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")
