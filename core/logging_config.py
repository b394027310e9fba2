"""Process-wide logging setup for the booking apps."""

import logging
from datetime import datetime

from utils import IST_TIMEZONE

_LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
_HANDLER_NAME = "dealer_booking"


class ISTFormatter(logging.Formatter):
    """Stamps records in IST regardless of the server's local zone."""

    def formatTime(self, record, datefmt=None):
        stamp = datetime.fromtimestamp(record.created, IST_TIMEZONE)
        return stamp.strftime(datefmt or "%Y-%m-%d %H:%M:%S IST")


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """Attaches one stream handler to the root logger. Safe to call on every Streamlit rerun."""
    root = logging.getLogger()
    root.setLevel(level)
    if not any(h.get_name() == _HANDLER_NAME for h in root.handlers):
        handler = logging.StreamHandler()
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(ISTFormatter(_LOG_FORMAT))
        root.addHandler(handler)
    # SQLAlchemy echoes every statement at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    return root
