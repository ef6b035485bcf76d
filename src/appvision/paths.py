from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


SLOTS = ("automatic", "manual")


def appvision_home() -> Path:
    env = os.environ.get("APPVISION_HOME", "").strip()
    if env:
        return Path(env).expanduser().resolve()
    return (Path.home() / ".appvision").resolve()


def ensure_home() -> Path:
    home = appvision_home()
    home.mkdir(parents=True, exist_ok=True)
    return home


def shared_data_dir(configured: str = "") -> Path:
    """Root of the directory both processes exchange files through."""
    env = os.environ.get("APPVISION_SHARED_DATA", "").strip()
    if env:
        return Path(env).expanduser().resolve()
    if str(configured or "").strip():
        return Path(str(configured).strip()).expanduser().resolve()
    return appvision_home() / "shared-data"


def _check_slot(slot: str) -> str:
    s = str(slot or "").strip()
    if s not in SLOTS:
        raise ValueError(f"unknown capture slot: {slot!r}")
    return s


@dataclass(frozen=True)
class SharedPaths:
    root: Path

    @property
    def heartbeat_path(self) -> Path:
        return self.root / "heartbeat" / "app-status.json"

    @property
    def flags_dir(self) -> Path:
        return self.root / "flags"

    @property
    def request_path(self) -> Path:
        return self.flags_dir / "capture-request.flag"

    @property
    def lock_path(self) -> Path:
        return self.flags_dir / "processing.lock"

    @property
    def suggestion_flag_path(self) -> Path:
        return self.flags_dir / "suggestion_flag.json"

    @property
    def suggestions_dir(self) -> Path:
        return self.root / "suggestions"

    @property
    def suggestion_payload_path(self) -> Path:
        return self.suggestions_dir / "ai_suggestions.json"

    @property
    def template_cache_path(self) -> Path:
        return self.suggestions_dir / "template_cache.yaml"

    @property
    def manual_done_path(self) -> Path:
        return self.root / "manual" / "manual_capture_done.json"

    def slot_dir(self, slot: str) -> Path:
        return self.root / _check_slot(slot)

    def current_dir(self, slot: str) -> Path:
        return self.slot_dir(slot) / "current"

    def current_image_path(self, slot: str) -> Path:
        return self.current_dir(slot) / "screenshot.png"

    def current_metadata_path(self, slot: str) -> Path:
        return self.current_dir(slot) / "metadata.json"

    def history_dir(self, slot: str) -> Path:
        return self.slot_dir(slot) / "history"

    def ensure_dirs(self) -> None:
        for d in (self.heartbeat_path.parent, self.flags_dir, self.suggestions_dir):
            d.mkdir(parents=True, exist_ok=True)
        for slot in SLOTS:
            self.current_dir(slot).mkdir(parents=True, exist_ok=True)
            self.history_dir(slot).mkdir(parents=True, exist_ok=True)


@dataclass(frozen=True)
class DaemonPaths:
    home: Path

    @property
    def daemon_dir(self) -> Path:
        return self.home / "daemon"

    @property
    def pid_path(self) -> Path:
        return self.daemon_dir / "appvisiond.pid"

    @property
    def presentation_log_path(self) -> Path:
        return self.daemon_dir / "presentation.jsonl"

    @property
    def presentation_lock_path(self) -> Path:
        return self.daemon_dir / "presentation.lock"


def default_daemon_paths() -> DaemonPaths:
    return DaemonPaths(home=ensure_home())
