"""Logging helpers.

Library modules only create loggers via ``logging.getLogger(__name__)``;
handlers are installed by the CLI (or the embedding process) through
``configure_logging``. Diagnostic dumps (graph, layers, locks) take an
optional logger argument so the core stays testable without output capture.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

ROOT_LOGGER = "blueprint_scheduler"

# Structured extras copied into JSON records when present.
_EXTRA_KEYS = ("event", "plan_id", "blueprint_id", "layer", "resource", "code")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        for k in _EXTRA_KEYS:
            v = getattr(record, k, None)
            if v is not None:
                base[k] = v

        if record.exc_info:
            base["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(base, ensure_ascii=True, sort_keys=True)


def configure_logging(
    level: str = "WARNING",
    *,
    json_format: bool = False,
    stream: Optional[Any] = None,
) -> logging.Logger:
    """Install a single stream handler on the package root logger.

    Calling it again replaces the previous handler rather than stacking them.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"unknown log level: {level}")
    logger.setLevel(numeric)

    for h in list(logger.handlers):
        if getattr(h, "_blueprint_scheduler", False):
            logger.removeHandler(h)

    handler = logging.StreamHandler(stream)
    handler._blueprint_scheduler = True  # type: ignore[attr-defined]
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    logger.addHandler(handler)
    return logger
