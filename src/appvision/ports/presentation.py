"""Presentation port: notifications the core sends towards the UI."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from ..contracts.v1 import CaptureMetadata, PresentationEvent, PresentationKind
from ..util.file_lock import locked
from ..util.time import utc_now_iso

logger = logging.getLogger("appvision.presentation")


class PresentationPort(Protocol):
    def capture_completed(self, *, request_id: Optional[str], path: str, metadata: CaptureMetadata) -> None: ...

    def capture_failed(self, *, request_id: Optional[str], reason: str) -> None: ...

    def suggestions_updated(
        self, *, suggestion_id: str, suggestions: List[Dict[str, Any]], metadata: Dict[str, Any]
    ) -> None: ...

    def suggestions_cleared(self, *, suggestion_id: Optional[str]) -> None: ...


class JsonlPresentation:
    """Headless presentation: appends each notification to a JSONL file.

    A UI shell can tail the file; without one, the log is the record of what
    the user would have seen.
    """

    def __init__(self, log_path: Path, lock_path: Path) -> None:
        self.log_path = log_path
        self.lock_path = lock_path

    def _emit(self, kind: PresentationKind, data: Dict[str, Any]) -> None:
        ev = PresentationEvent(ts=utc_now_iso(), kind=kind, data=data)
        line = json.dumps(ev.model_dump(), ensure_ascii=False)
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with locked(self.lock_path):
                with self.log_path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError:
            logger.exception("failed to append presentation event", extra={"op": kind})

    def capture_completed(self, *, request_id: Optional[str], path: str, metadata: CaptureMetadata) -> None:
        logger.info("capture completed", extra={"request_id": request_id, "path": path})
        self._emit(
            "capture.completed",
            {"request_id": request_id, "path": path, "metadata": metadata.model_dump(by_alias=True, exclude_none=True)},
        )

    def capture_failed(self, *, request_id: Optional[str], reason: str) -> None:
        logger.warning("capture failed: %s", reason, extra={"request_id": request_id})
        self._emit("capture.failed", {"request_id": request_id, "reason": reason})

    def suggestions_updated(
        self, *, suggestion_id: str, suggestions: List[Dict[str, Any]], metadata: Dict[str, Any]
    ) -> None:
        logger.info("suggestions updated (%d)", len(suggestions), extra={"suggestion_id": suggestion_id})
        self._emit(
            "suggestions.updated",
            {"suggestion_id": suggestion_id, "suggestions": suggestions, "metadata": metadata},
        )

    def suggestions_cleared(self, *, suggestion_id: Optional[str]) -> None:
        logger.info("suggestions cleared", extra={"suggestion_id": suggestion_id})
        self._emit("suggestions.cleared", {"suggestion_id": suggestion_id})
