"""Result store: per-slot "current" pair plus bounded history.

Layout under the shared root:

    {automatic|manual}/current/screenshot.png
    {automatic|manual}/current/metadata.json
    {automatic|manual}/history/*.png
    manual/manual_capture_done.json

Writers replace files atomically. The image goes first and the metadata
last, so a reader that finds metadata for its request also finds the image.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from ..contracts.v1 import CaptureMetadata
from ..paths import SLOTS, SharedPaths
from ..util.fs import atomic_write_bytes, atomic_write_json, read_text, unlink_quiet
from ..util.time import compact_stamp_ms, to_utc_iso, utc_now, utc_now_iso
from .history_retention import HistoryRetentionPolicy, apply_retention

logger = logging.getLogger("appvision.result_store")


@dataclass(frozen=True)
class CurrentResult:
    image_path: Path
    metadata: CaptureMetadata


class ResultStore:
    def __init__(self, paths: SharedPaths, *, retention: Optional[HistoryRetentionPolicy] = None) -> None:
        self.paths = paths
        self.retention = retention or HistoryRetentionPolicy()

    def write_current(self, slot: str, image: bytes, metadata: CaptureMetadata) -> Path:
        image_path = self.paths.current_image_path(slot)
        atomic_write_bytes(image_path, image)
        atomic_write_json(self.paths.current_metadata_path(slot), metadata.model_dump(by_alias=True, exclude_none=True))
        logger.debug("current result written", extra={"slot": slot, "request_id": metadata.request_id})
        return image_path

    def write_history(self, slot: str, image: bytes, file_name: str) -> Path:
        name = Path(str(file_name or "")).name
        if not name:
            raise ValueError("history file name is empty")
        path = self.paths.history_dir(slot) / name
        atomic_write_bytes(path, image)
        self.apply_retention(slot)
        return path

    def apply_retention(self, slot: str, *, now: Optional[float] = None) -> List[Path]:
        return apply_retention(self.paths.history_dir(slot), self.retention, now=now)

    def cleanup_on_startup(self) -> int:
        removed = 0
        for slot in SLOTS:
            removed += len(self.apply_retention(slot))
        return removed

    def read_metadata(self, slot: str) -> Optional[CaptureMetadata]:
        try:
            raw = read_text(self.paths.current_metadata_path(slot))
            if not raw or not raw.strip():
                return None
            return CaptureMetadata.model_validate(json.loads(raw))
        except (ValueError, ValidationError):
            logger.warning("unreadable current metadata", extra={"slot": slot})
            return None

    def read_current(self, slot: str) -> Optional[CurrentResult]:
        """The current pair, or None unless both image and metadata are present."""
        image_path = self.paths.current_image_path(slot)
        if not image_path.exists():
            return None
        metadata = self.read_metadata(slot)
        if metadata is None:
            return None
        return CurrentResult(image_path=image_path, metadata=metadata)

    def history(self, slot: str) -> List[Path]:
        d = self.paths.history_dir(slot)
        if not d.exists():
            return []
        files = [p for p in d.iterdir() if p.is_file() and p.suffix.lower() == ".png"]
        files.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        return files

    # Manual-capture marker: presence only.

    def mark_manual_capture_done(self) -> None:
        atomic_write_json(
            self.paths.manual_done_path,
            {"created": utc_now_iso(), "description": "Manual capture has been performed at least once"},
        )

    def has_manual_capture_done(self) -> bool:
        return self.paths.manual_done_path.exists()

    def clear_manual_capture_done(self) -> bool:
        return unlink_quiet(self.paths.manual_done_path)

    def save_capture(
        self,
        slot: str,
        image: bytes,
        *,
        kind: str,
        source_name: str,
        app_name: str = "unknown",
        request_id: Optional[str] = None,
        save_to_history: bool = True,
        now: Optional[datetime] = None,
    ) -> CaptureMetadata:
        """Store one capture: history first (optional), then the current pair."""
        if not image:
            raise ValueError("capture produced no image data")
        ts = now or utc_now()
        file_name = f"{compact_stamp_ms(ts)}.png"
        if save_to_history:
            file_path = self.write_history(slot, image, file_name)
        else:
            file_path = self.paths.current_image_path(slot)
        metadata = CaptureMetadata(
            timestamp=to_utc_iso(ts),
            type=kind,
            source_name=source_name,
            app_name=app_name or "unknown",
            file_name=file_name,
            file_path=str(file_path),
            size=len(image),
            format="png",
            request_id=request_id,
        )
        self.write_current(slot, image, metadata)
        return metadata
