"""Global settings for ccbridge.

Settings are stored in ~/.ccbridge/settings.yaml and hold tunables only:
- listener: long-poll window, error backoff, maintenance cadence
- sessions / approvals / questions: ages, timeouts, poll intervals
- telegram: name of the env var carrying the bot token

Credentials and runtime state (chat id, cursor, default session) live in the
Store, not here.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml  # type: ignore

from ..paths import ensure_home
from ..util.conv import coerce_float, coerce_int
from ..util.fs import atomic_write_text


@dataclass
class ListenerSettings:
    poll_timeout: int = 25
    backoff_floor: float = 1.0
    backoff_cap: float = 60.0
    cleanup_interval: float = 3600.0
    approval_retention: float = 7200.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ListenerSettings":
        base = cls()
        floor = coerce_float(d.get("backoff_floor"), default=base.backoff_floor)
        cap = coerce_float(d.get("backoff_cap"), default=base.backoff_cap)
        return cls(
            poll_timeout=max(0, coerce_int(d.get("poll_timeout"), default=base.poll_timeout)),
            backoff_floor=max(0.0, floor),
            backoff_cap=max(floor, cap),
            cleanup_interval=coerce_float(d.get("cleanup_interval"), default=base.cleanup_interval),
            approval_retention=coerce_float(d.get("approval_retention"), default=base.approval_retention),
        )


@dataclass
class WaitSettings:
    """Timeout and poll interval for a blocking wait (approvals, questions)."""
    timeout: float
    poll_interval: float = 1.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any], *, timeout: float) -> "WaitSettings":
        return cls(
            timeout=coerce_float(d.get("timeout"), default=timeout),
            poll_interval=max(0.05, coerce_float(d.get("poll_interval"), default=1.0)),
        )


@dataclass
class BridgeSettings:
    listener: ListenerSettings = field(default_factory=ListenerSettings)
    stale_after: float = 86400.0
    approvals: WaitSettings = field(default_factory=lambda: WaitSettings(timeout=60.0))
    questions: WaitSettings = field(default_factory=lambda: WaitSettings(timeout=300.0))
    token_env: str = "CCBRIDGE_BOT_TOKEN"
    log_level: str = "INFO"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "listener": {
                "poll_timeout": self.listener.poll_timeout,
                "backoff_floor": self.listener.backoff_floor,
                "backoff_cap": self.listener.backoff_cap,
                "cleanup_interval": self.listener.cleanup_interval,
                "approval_retention": self.listener.approval_retention,
            },
            "sessions": {"stale_after": self.stale_after},
            "approvals": {"timeout": self.approvals.timeout, "poll_interval": self.approvals.poll_interval},
            "questions": {"timeout": self.questions.timeout, "poll_interval": self.questions.poll_interval},
            "telegram": {"token_env": self.token_env},
            "log_level": self.log_level,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "BridgeSettings":
        def section(name: str) -> Dict[str, Any]:
            v = d.get(name)
            return v if isinstance(v, dict) else {}

        token_env = str(section("telegram").get("token_env") or "").strip()
        return cls(
            listener=ListenerSettings.from_dict(section("listener")),
            stale_after=coerce_float(section("sessions").get("stale_after"), default=86400.0),
            approvals=WaitSettings.from_dict(section("approvals"), timeout=60.0),
            questions=WaitSettings.from_dict(section("questions"), timeout=300.0),
            token_env=token_env or "CCBRIDGE_BOT_TOKEN",
            log_level=str(d.get("log_level") or "INFO").strip() or "INFO",
        )


def _settings_path() -> Path:
    return ensure_home() / "settings.yaml"


def load_settings_doc() -> Dict[str, Any]:
    """Raw settings document; unreadable or malformed files count as empty."""
    p = _settings_path()
    if not p.exists():
        return {}
    try:
        doc = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        return doc if isinstance(doc, dict) else {}
    except Exception:
        return {}


def load_settings() -> BridgeSettings:
    return BridgeSettings.from_dict(load_settings_doc())


def save_settings(settings: BridgeSettings) -> None:
    atomic_write_text(_settings_path(), yaml.safe_dump(settings.to_dict(), allow_unicode=True, sort_keys=False))
