from __future__ import annotations

import logging
from contextvars import ContextVar


_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)
_job_id: ContextVar[str | None] = ContextVar("job_id", default=None)


def set_request_id(value: str | None) -> None:
    _request_id.set(value)


def get_request_id() -> str | None:
    return _request_id.get()


def set_job_id(value: str | None) -> None:
    _job_id.set(value)


def get_job_id() -> str | None:
    return _job_id.get()


class ContextFilter(logging.Filter):
    """Stamps job_id / request_id on every record ("-" when unset)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.job_id = get_job_id() or "-"
        record.request_id = get_request_id() or "-"
        return True


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [job=%(job_id)s]: %(message)s"


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, ContextFilter) for f in handler.filters):
            handler.addFilter(ContextFilter())
