import contextvars
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

LOG_FORMAT = (
    "%(asctime)s | %(levelname)s | %(name)s | req=%(request_id)s "
    "| seg=%(segment_id)s | rev=%(revision_id)s | %(message)s"
)
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

LOG_REQUEST_ID: contextvars.ContextVar[str | None] = contextvars.ContextVar("log_request_id", default=None)
LOG_SEGMENT_ID: contextvars.ContextVar[str | None] = contextvars.ContextVar("log_segment_id", default=None)
LOG_REVISION_ID: contextvars.ContextVar[str | None] = contextvars.ContextVar("log_revision_id", default=None)


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = LOG_REQUEST_ID.get() or "-"
        record.segment_id = LOG_SEGMENT_ID.get() or "-"
        record.revision_id = LOG_REVISION_ID.get() or "-"
        return True


@contextmanager
def log_context(
    request_id: str | None = None,
    segment_id: str | None = None,
    revision_id: str | None = None,
) -> Iterator[None]:
    tokens = []
    if request_id is not None:
        tokens.append((LOG_REQUEST_ID, LOG_REQUEST_ID.set(request_id)))
    if segment_id is not None:
        tokens.append((LOG_SEGMENT_ID, LOG_SEGMENT_ID.set(segment_id)))
    if revision_id is not None:
        tokens.append((LOG_REVISION_ID, LOG_REVISION_ID.set(revision_id)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def configure_logging(
    level: str | int = logging.INFO,
    log_file: str | None = None,
    enable_console: bool = True,
    force: bool = False,
) -> logging.Logger:
    root = logging.getLogger()
    if getattr(root, "_studio_logging_configured", False) and not force:
        return root

    if force:
        for handler in list(root.handlers):
            root.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    handlers: list[logging.Handler] = []
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    if enable_console:
        handlers.append(logging.StreamHandler())

    # Filters sit on handlers so records propagated from child loggers get the fields too.
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(ContextFilter())
        root.addHandler(handler)

    root.setLevel(level.upper() if isinstance(level, str) else level)
    logging.captureWarnings(True)
    root._studio_logging_configured = True  # type: ignore[attr-defined]
    return root
