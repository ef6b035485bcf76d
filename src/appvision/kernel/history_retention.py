from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .settings import AppSettings

logger = logging.getLogger("appvision.retention")

_DAY_S = 24 * 60 * 60


@dataclass(frozen=True)
class HistoryRetentionPolicy:
    max_files: int = 10
    max_age_days: int = 7
    enabled: bool = True

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "HistoryRetentionPolicy":
        return cls(
            max_files=max(0, int(settings.history_max_files)),
            max_age_days=max(0, int(settings.history_retention_days)),
            enabled=bool(settings.auto_cleanup),
        )


def _history_entries(history_dir: Path, suffix: str) -> List[tuple]:
    entries = []
    try:
        candidates = list(history_dir.iterdir())
    except FileNotFoundError:
        return []
    for p in candidates:
        if not p.is_file() or p.suffix.lower() != suffix:
            continue
        try:
            entries.append((p.stat().st_mtime, p))
        except FileNotFoundError:
            continue
    return entries


def apply_retention(
    history_dir: Path,
    policy: HistoryRetentionPolicy,
    *,
    now: Optional[float] = None,
    suffix: str = ".png",
) -> List[Path]:
    """Delete history entries beyond `max_files` (newest kept) or older than `max_age_days`.

    Returns the deleted paths. Entries that vanish or cannot be deleted are
    logged and skipped.
    """
    if not policy.enabled:
        return []
    entries = _history_entries(history_dir, suffix)
    entries.sort(key=lambda e: e[0], reverse=True)

    ts_now = time.time() if now is None else float(now)
    max_age_s = float(policy.max_age_days) * _DAY_S

    deleted: List[Path] = []
    for idx, (mtime, p) in enumerate(entries):
        if idx < policy.max_files and (ts_now - mtime) <= max_age_s:
            continue
        try:
            p.unlink()
            deleted.append(p)
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("failed to delete history entry: %s", e, extra={"path": str(p)})
    if deleted:
        logger.info("history retention removed %d file(s)", len(deleted), extra={"path": str(history_dir)})
    return deleted
