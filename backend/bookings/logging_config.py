"""
Logging setup for the API and worker processes.

Library code only creates loggers (`logging.getLogger(__name__)` plus the
`bookings.admin` and `bookings.push` channels); handlers and levels are
configured here, once per process.
"""

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger("bookings.admin").setLevel(logging.INFO)
    logging.getLogger("bookings.push").setLevel(logging.INFO)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
