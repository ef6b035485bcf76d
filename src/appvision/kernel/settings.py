"""Process-local settings for appvision.

Settings live in <APPVISION_HOME>/settings.yaml and are overridden by
environment variables:

- APPVISION_SHARED_DATA: shared data directory (both processes must agree)
- APPVISION_HISTORY_MAX_FILES / APPVISION_HISTORY_RETENTION_DAYS
- APPVISION_CLEANUP_ON_STARTUP / APPVISION_AUTO_CLEANUP
- APPVISION_TARGET_APP: current capture target
- APPVISION_LOG_LEVEL
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml  # type: ignore

from ..paths import ensure_home
from ..util.conv import coerce_bool, coerce_float, coerce_int
from ..util.fs import atomic_write_text


@dataclass(frozen=True)
class AppSettings:
    shared_data_dir: str = ""
    target_app: str = ""

    history_max_files: int = 10
    history_retention_days: int = 7
    cleanup_on_startup: bool = True
    auto_cleanup: bool = True

    heartbeat_interval_s: float = 5.0
    heartbeat_timeout_s: float = 30.0
    capture_timeout_s: float = 15.0
    poll_interval_s: float = 0.5
    stale_lock_s: float = 60.0

    suggestion_poll_interval_s: float = 2.0
    suggestion_auto_clear_s: float = 300.0

    log_level: str = "INFO"


def _settings_path(home: Optional[Path] = None) -> Path:
    return (home or ensure_home()) / "settings.yaml"


def load_settings_doc(home: Optional[Path] = None) -> Dict[str, Any]:
    """Load the raw settings.yaml document ({} if missing or unreadable)."""
    p = _settings_path(home)
    if not p.exists():
        return {}
    try:
        doc = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError):
        return {}
    return doc if isinstance(doc, dict) else {}


def save_settings_doc(doc: Dict[str, Any], home: Optional[Path] = None) -> None:
    p = _settings_path(home)
    atomic_write_text(p, yaml.safe_dump(doc, allow_unicode=True, sort_keys=False))


def _section(doc: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    v = doc.get(key)
    return v if isinstance(v, dict) else {}


def resolve_settings(doc: Mapping[str, Any], env: Optional[Mapping[str, str]] = None) -> AppSettings:
    """Merge defaults < settings document < environment."""
    e = os.environ if env is None else env
    d = AppSettings()
    history = _section(doc, "history")
    timeouts = _section(doc, "timeouts")
    heartbeat = _section(doc, "heartbeat")
    suggestions = _section(doc, "suggestions")
    locks = _section(doc, "locks")

    def pick(env_key: str, value: Any) -> Any:
        raw = e.get(env_key)
        if raw is not None and str(raw).strip():
            return raw
        return value

    return AppSettings(
        shared_data_dir=str(doc.get("shared_data_dir") or ""),
        target_app=str(pick("APPVISION_TARGET_APP", doc.get("target_app")) or "").strip(),
        history_max_files=coerce_int(
            pick("APPVISION_HISTORY_MAX_FILES", history.get("max_files")), default=d.history_max_files
        ),
        history_retention_days=coerce_int(
            pick("APPVISION_HISTORY_RETENTION_DAYS", history.get("retention_days")),
            default=d.history_retention_days,
        ),
        cleanup_on_startup=coerce_bool(
            pick("APPVISION_CLEANUP_ON_STARTUP", history.get("cleanup_on_startup")), default=d.cleanup_on_startup
        ),
        auto_cleanup=coerce_bool(pick("APPVISION_AUTO_CLEANUP", history.get("auto_cleanup")), default=d.auto_cleanup),
        heartbeat_interval_s=coerce_float(heartbeat.get("interval_s"), default=d.heartbeat_interval_s, minimum=0.1),
        heartbeat_timeout_s=coerce_float(timeouts.get("heartbeat_s"), default=d.heartbeat_timeout_s),
        capture_timeout_s=coerce_float(timeouts.get("capture_s"), default=d.capture_timeout_s),
        poll_interval_s=coerce_float(timeouts.get("poll_interval_s"), default=d.poll_interval_s, minimum=0.01),
        stale_lock_s=coerce_float(locks.get("stale_after_s"), default=d.stale_lock_s),
        suggestion_poll_interval_s=coerce_float(
            suggestions.get("poll_interval_s"), default=d.suggestion_poll_interval_s, minimum=0.05
        ),
        suggestion_auto_clear_s=coerce_float(suggestions.get("auto_clear_s"), default=d.suggestion_auto_clear_s),
        log_level=str(pick("APPVISION_LOG_LEVEL", doc.get("log_level")) or d.log_level),
    )


def load_settings(home: Optional[Path] = None) -> AppSettings:
    return resolve_settings(load_settings_doc(home))


def set_target_app(name: str, home: Optional[Path] = None) -> None:
    """Persist the capture target the fulfiller uses for automatic requests."""
    doc = load_settings_doc(home)
    doc["target_app"] = str(name or "").strip()
    save_settings_doc(doc, home)
