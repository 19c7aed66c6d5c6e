from .logger import setup_logging, get_logger, ContextLogger
from .utcnow import utcnow, to_utc_naive, to_iso

__all__ = [
    # Logger
    "setup_logging",
    "get_logger",
    "ContextLogger",

    # Time
    "utcnow",
    "to_utc_naive",
    "to_iso",
]
