from contextvars import ContextVar
from contextlib import contextmanager


request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
feed_key_var: ContextVar[str | None] = ContextVar("feed_key", default=None)


def format_key(key) -> str:
    if isinstance(key, tuple):
        return "/".join(str(part) for part in key)
    return str(key)


@contextmanager
def feed_context(key):
    token = feed_key_var.set(format_key(key) if key is not None else None)
    try:
        yield
    finally:
        feed_key_var.reset(token)
