import logging
from typing import Optional, Union


def resolve_level(level: Union[int, str, None], default: int = logging.INFO) -> int:
    """Map a level name or number to a logging level; unknown names fall back to ``default``."""
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        candidate = logging.getLevelName(level.strip().upper())
        if isinstance(candidate, int):
            return candidate
    return default


def setup_logging(level: Union[int, str, None] = logging.INFO, log_format: Optional[str] = None) -> None:
    """
    Configure process-wide logging with a consistent format.

    Intended to be called once from the entrypoint; components receive their
    own loggers and never configure handlers. Subsequent calls are ignored if
    handlers exist.
    """
    if logging.getLogger().handlers:
        return

    fmt = log_format or "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=resolve_level(level), format=fmt)
