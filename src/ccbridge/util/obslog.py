from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, TextIO


_CONFIGURED: Dict[str, bool] = {}

# Correlation keys copied from `extra={...}` into the JSON payload.
_EXTRA_KEYS = ("session_id", "approval_id", "instruction_id", "update_id", "hook", "chat_id")


def _utc_ts_iso(ts: float) -> str:
    try:
        return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")
    except Exception:
        return ""


class JsonlFormatter(logging.Formatter):
    """One JSON object per line; extra correlation fields via `logger.*(..., extra={...})`."""

    def __init__(self, *, component: str):
        super().__init__()
        self._component = str(component or "").strip() or "ccbridge"

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": _utc_ts_iso(getattr(record, "created", 0.0) or 0.0),
            "level": str(getattr(record, "levelname", "") or ""),
            "logger": str(getattr(record, "name", "") or ""),
            "component": self._component,
            "msg": record.getMessage(),
        }

        for k in _EXTRA_KEYS:
            v = getattr(record, k, None)
            if v is None:
                continue
            sv = str(v).strip()
            if sv:
                payload[k] = sv

        if record.exc_info:
            try:
                payload["exc"] = self.formatException(record.exc_info)
            except Exception:
                payload["exc"] = "exception"

        try:
            return json.dumps(payload, ensure_ascii=False)
        except Exception:
            return '{"component":"%s","level":"%s","msg":"(log serialization failed)"}' % (
                self._component,
                payload.get("level", "INFO"),
            )


def _parse_level(level: str, default: int = logging.INFO) -> int:
    s = str(level or "").strip().upper()
    if not s:
        return default
    value = getattr(logging, s, default)
    return value if isinstance(value, int) else default


def setup_root_json_logging(
    *,
    component: str,
    level: str = "INFO",
    stream: Optional[TextIO] = None,
    path: Optional[Path] = None,
    force: bool = False,
) -> None:
    """Configure root logging once per process.

    Writes JSONL to `path` when given (hooks: stdout is reserved for the hook
    reply), otherwise to `stream` or stderr.
    """
    key = f"root:{component}"
    if _CONFIGURED.get(key) and not force:
        return
    _CONFIGURED[key] = True

    root = logging.getLogger()
    root.setLevel(_parse_level(level))

    if force:
        for h in list(root.handlers):
            root.removeHandler(h)

    for h in list(root.handlers):
        if isinstance(getattr(h, "formatter", None), JsonlFormatter):
            h.setLevel(_parse_level(level))
            return

    handler: logging.Handler
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
    else:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(_parse_level(level))
    handler.setFormatter(JsonlFormatter(component=component))
    root.addHandler(handler)
