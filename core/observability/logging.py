"""
Correlated logging for invoice intake.

Every record emitted while a correlation scope is open carries the ids of
the work in progress:
- operation_id / attachment_id / filename: the attachment being ingested
- fiscal_uuid: the CFDI (Folio Fiscal) once it is known
- batch_id: the sweep that scheduled the attachment
- flavor / stage: which orchestrator and which pipeline step

Usage:
    from core.observability.logging import get_logger, with_correlation

    logger = get_logger(__name__)

    with with_correlation(operation_id="op-001", attachment_id="att-9"):
        logger.info("Fetching attachment", extra_fields={"size_bytes": 48211})
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional


@dataclass(frozen=True)
class CorrelationContext:
    """Ids bound to the current unit of work."""
    operation_id: Optional[str] = None
    attachment_id: Optional[str] = None
    filename: Optional[str] = None
    fiscal_uuid: Optional[str] = None
    batch_id: Optional[str] = None
    flavor: Optional[str] = None
    stage: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}

    def bind(self, **ids: Optional[str]) -> "CorrelationContext":
        return replace(self, **{key: value for key, value in ids.items() if value is not None})


_current: ContextVar[CorrelationContext] = ContextVar("cfdi_correlation", default=CorrelationContext())


def get_correlation_context() -> CorrelationContext:
    return _current.get()


@contextmanager
def with_correlation(**ids: Optional[str]) -> Iterator[CorrelationContext]:
    """Bind ids for the duration of the block; nested scopes add to the outer one."""
    token = _current.set(_current.get().bind(**ids))
    try:
        yield _current.get()
    finally:
        _current.reset(token)


def _timestamp(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: base fields, correlation ids, then extra_fields.

    {"timestamp": "2025-03-15T16:22:11.042Z", "level": "INFO",
     "logger": "reconciliation.engine", "message": "Created invoice A123 (MXN 580.00)",
     "operation_id": "op-001", "fiscal_uuid": "5FB2822E-...", "line_items": 1}
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": _timestamp(record).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **get_correlation_context().to_dict(),
            **getattr(record, "extra_fields", {}),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=False)


class HumanReadableFormatter(logging.Formatter):
    """Console lines with the short ids in brackets.

    2025-03-15 16:22:11 WARNING assignment.invoices [op-001/att-9/5FB2822E] Could not fetch ...
    """

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_correlation_context()
        ids = [
            value[:width]
            for value, width in (
                (ctx.operation_id, 12),
                (ctx.attachment_id, 12),
                (ctx.fiscal_uuid, 8),
            )
            if value
        ]
        line = "{} {:<7} {} [{}] {}".format(
            _timestamp(record).strftime("%Y-%m-%d %H:%M:%S"),
            record.levelname,
            record.name,
            "/".join(ids) or "-",
            record.getMessage(),
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class CorrelatedLogger(logging.LoggerAdapter):
    """Adapter accepting `extra_fields=` on every call.

    The fields land on the record as `record.extra_fields`, which
    StructuredFormatter merges into the JSON line.
    """

    def __init__(self, logger: logging.Logger):
        super().__init__(logger, {})

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra["extra_fields"] = kwargs.pop("extra_fields", None) or {}
        kwargs["extra"] = extra
        return msg, kwargs


# Package loggers whose level follows configure_logging()
PACKAGE_LOGGERS = ("extraction", "client_resolver", "reconciliation", "assignment", "storage")

_loggers: Dict[str, CorrelatedLogger] = {}
_handler: Optional[logging.Handler] = None


def configure_logging(level: int = logging.INFO, json_format: bool = False, force: bool = False):
    """Install the console handler on the root logger.

    A second call is a no-op unless `force` is set, in which case the handler
    installed earlier is replaced (the CLI does this after reading config).
    """
    global _handler

    if _handler is not None and not force:
        return

    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)
    _handler = handler

    for name in PACKAGE_LOGGERS:
        logging.getLogger(name).setLevel(level)

    # PyMuPDF is chatty on malformed PDFs
    logging.getLogger("fitz").setLevel(logging.WARNING)


def get_logger(name: str) -> CorrelatedLogger:
    if name not in _loggers:
        configure_logging()
        _loggers[name] = CorrelatedLogger(logging.getLogger(name))
    return _loggers[name]


def log_stage_complete(stage: str, duration_ms: Optional[float] = None, **fields):
    """Emit the per-stage completion line the orchestrators end each attachment with."""
    extra = {"duration_ms": round(duration_ms, 2)} if duration_ms is not None else {}
    extra.update(fields)
    get_logger(f"assignment.{stage}").info(f"Stage completed: {stage}", extra_fields=extra)


def log_batch_event(event: str, **fields):
    get_logger("assignment.batch").info(event, extra_fields=fields)
