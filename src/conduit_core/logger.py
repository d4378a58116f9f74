"""JSON logging for the coordination core and chain adapters."""

from __future__ import annotations

import json
import logging
from collections.abc import MutableMapping
from datetime import datetime, timezone
from typing import Any

_CONTEXT_FIELDS = ("agent_id", "task_id", "escrow_id", "method", "tx_ref", "backend")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "module": getattr(record, "module_name", record.name),
            "message": record.getMessage(),
        }
        for name in _CONTEXT_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


class _ContextAdapter(logging.LoggerAdapter):
    """Keeps per-call ``extra`` fields next to the module name."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs


def _install_handler(root: logging.Logger, handler: logging.Handler) -> None:
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)


def get_logger(module_name: str) -> logging.LoggerAdapter:
    """Return a logger under the ``conduit`` namespace with the JSON formatter attached."""
    logger = logging.getLogger(f"conduit.{module_name}")
    root = logging.getLogger("conduit")
    if not root.handlers:
        _install_handler(root, logging.StreamHandler())
        root.setLevel(logging.WARNING)
    return _ContextAdapter(logger, {"module_name": module_name})


def configure_logging(level: int = logging.INFO, handler: logging.Handler | None = None) -> None:
    """Set the level for every conduit logger, optionally swapping the handler."""
    root = logging.getLogger("conduit")
    if handler is not None:
        for existing in list(root.handlers):
            root.removeHandler(existing)
        _install_handler(root, handler)
    elif not root.handlers:
        _install_handler(root, logging.StreamHandler())
    root.setLevel(level)
