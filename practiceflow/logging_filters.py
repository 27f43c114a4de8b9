import logging

from .middleware import get_current_request_id


class RequestIDFilter(logging.Filter):
    """Adds ``request_id`` to every record so the formatters can print it."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = get_current_request_id()
        return True
