"""Structured JSON logging with operation context.

Call :func:`setup_logging` once at process startup to configure the root
logger.  Controller operations run inside :func:`operation_scope`, which
binds a fresh operation ID plus the account, disk or node it acts on, so
every log line emitted while serving one request carries them.
"""

from __future__ import annotations

import datetime
import json
import logging
import sys
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Generator

# Record attributes that may also arrive through ``extra=`` on a single call.
CONTEXT_FIELDS = ("account", "disk", "disk_uri", "disk_hash", "node", "sku")

operation_id_var: ContextVar[str] = ContextVar(
    "operation_id",
    default="",
)
operation_name_var: ContextVar[str] = ContextVar("operation_name", default="")
operation_context_var: ContextVar[dict[str, str] | None] = ContextVar(
    "operation_context",
    default=None,
)


def get_operation_id() -> str:
    """Return the current operation ID (empty outside an operation)."""
    return operation_id_var.get()


def get_operation_context() -> dict[str, str]:
    return dict(operation_context_var.get() or {})


@contextmanager
def operation_scope(name: str, **context: str) -> Generator[str, None, None]:
    """Bind an operation ID and *context* fields for the duration of the block.

    Nested scopes keep the outer ID and operation name so a whole request
    shares one value; their *context* is merged over the outer one.
    """
    merged = {**get_operation_context(), **context}
    context_token = operation_context_var.set(merged)
    try:
        current = operation_id_var.get()
        if current:
            yield current
            return
        op_id = f"{name}-{uuid.uuid4().hex[:12]}"
        id_token = operation_id_var.set(op_id)
        name_token = operation_name_var.set(name)
        try:
            yield op_id
        finally:
            operation_name_var.reset(name_token)
            operation_id_var.reset(id_token)
    finally:
        operation_context_var.reset(context_token)


class OperationContextFilter(logging.Filter):
    """Inject ``operation_id``, ``operation`` and bound context into every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.operation_id = get_operation_id()
        record.operation = operation_name_var.get()
        for field, value in get_operation_context().items():
            if not hasattr(record, field):
                setattr(record, field, value)
        return True


class BlobDiskJsonFormatter(logging.Formatter):
    """Format log records as single-line JSON objects.

    Output schema::

        {
            "timestamp": "2025-06-15T12:34:56.789012+00:00",
            "level": "INFO",
            "logger": "blobdisk.pool",
            "message": "Storage account pvc1234001 was created",
            "operation": "create_disk",
            "operation_id": "create_disk-0123456789ab",
            "context": {"disk": "data-1", "sku": "Premium_LRS", "account": "pvc1234001"},
            "exception": null
        }

    ``context`` only holds the :data:`CONTEXT_FIELDS` present on the record.
    """

    def format(self, record: logging.LogRecord) -> str:
        exc_text: str | None = None
        if record.exc_info and record.exc_info[0] is not None:
            exc_text = "".join(
                traceback.format_exception(*record.exc_info),
            )

        context = {
            field: getattr(record, field) for field in CONTEXT_FIELDS if hasattr(record, field)
        }
        payload: dict[str, Any] = {
            "timestamp": (
                datetime.datetime.fromtimestamp(
                    record.created,
                    tz=datetime.UTC,
                ).isoformat()
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "operation": getattr(record, "operation", ""),
            "operation_id": getattr(record, "operation_id", ""),
            "context": context,
            "exception": exc_text,
        }
        return json.dumps(payload, default=str)


def setup_logging(level: int | str = logging.INFO, *, json_output: bool = True) -> None:
    """Configure the root logger.

    Parameters
    ----------
    level:
        Minimum log level (default ``logging.INFO``).
    json_output:
        Emit JSON lines; plain text is easier to read in a terminal.
    """
    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if json_output:
        handler.setFormatter(BlobDiskJsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s [%(operation_id)s] %(message)s"),
        )
    handler.addFilter(OperationContextFilter())

    root.addHandler(handler)
