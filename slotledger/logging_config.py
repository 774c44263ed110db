import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """Send slotledger logs to stdout. Safe to call more than once."""
    logger = logging.getLogger("slotledger")
    logger.setLevel(level.upper())
    if not any(getattr(h, "_slotledger", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._slotledger = True
        logger.addHandler(handler)
