import logging
import os

from .request_context import feed_key_var, request_id_var


def _stamp(record: logging.LogRecord) -> None:
    if not hasattr(record, "request_id"):
        record.request_id = request_id_var.get() or "-"
    if not hasattr(record, "feed_key"):
        record.feed_key = feed_key_var.get() or "-"


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        record.feed_key = feed_key_var.get() or "-"
        return True


class SafeFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        _stamp(record)
        return super().format(record)


LOG_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s "
    "request_id=%(request_id)s feed=%(feed_key)s %(message)s"
)


def setup_logging() -> None:
    level = os.getenv("FITNESS_LOG_LEVEL", "INFO").upper()
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    # Records created outside a request or feed still carry both fields.
    old_factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = old_factory(*args, **kwargs)
        _stamp(record)
        return record

    logging.setLogRecordFactory(record_factory)
    logging.basicConfig(level=level, format=LOG_FORMAT)

    root = logging.getLogger()
    root.addFilter(ContextFilter())

    formatter = SafeFormatter(LOG_FORMAT)
    for handler in root.handlers:
        handler.setFormatter(formatter)
        handler.addFilter(ContextFilter())
