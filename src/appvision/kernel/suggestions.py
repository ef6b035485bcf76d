"""Suggestion delivery: suggestions/ai_suggestions.json + flags/suggestion_flag.json.

    hidden -> ready (producer) -> processing -> displayed (consumer) -> hidden

The payload is always written before the flag flips to ready; a consumer
that sees ready can rely on the payload being there. Status transitions made
by the consumer rewrite the flag only when it still carries the batch id the
consumer is working on. The check and the rewrite are not atomic: the id guard
narrows the window in which a producer publishing a newer batch can be
overwritten, it does not close it.
"""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import yaml  # type: ignore
from pydantic import ValidationError

from ..contracts.v1 import FORMAT_VERSION, DisplayStatus, SuggestionData, SuggestionFlag
from ..paths import SharedPaths
from ..util.fs import atomic_write_json, atomic_write_text, read_text, unlink_quiet
from ..util.time import compact_stamp_ms, to_utc_iso, utc_now

logger = logging.getLogger("appvision.suggestions")

TEMPLATE_RESOURCE = "suggestion-template.yaml"


class SuggestionPayloadError(ValueError):
    """The producer was handed content that cannot become a suggestion payload."""


@dataclass(frozen=True)
class PublishedBatch:
    suggestion_id: str
    payload_path: Path
    flag_path: Path
    timestamp: str


def load_packaged_template() -> str:
    import importlib.resources

    files = importlib.resources.files("appvision.resources")
    return (files / TEMPLATE_RESOURCE).read_text(encoding="utf-8")


def parse_payload(content: str) -> Dict[str, Any]:
    """Decode producer content (a JSON object as text)."""
    if not str(content or "").strip():
        raise SuggestionPayloadError("Suggestion content is empty. Pass the suggestions as a JSON object.")
    try:
        doc = json.loads(content)
    except ValueError as e:
        raise SuggestionPayloadError(f"Suggestion content is not valid JSON: {e}") from e
    if not isinstance(doc, dict):
        raise SuggestionPayloadError("Suggestion content must be a JSON object with a 'suggestions' list.")
    return doc


class SuggestionChannel:
    def __init__(self, paths: SharedPaths, *, clock: Callable[[], datetime] = utc_now) -> None:
        self.paths = paths
        self._clock = clock

    def _new_id(self, now: datetime) -> str:
        return f"suggestion_{compact_stamp_ms(now)}_{uuid.uuid4().hex[:6]}"

    # ------------------------------------------------------------------
    # Producer
    # ------------------------------------------------------------------

    def publish(self, data: Dict[str, Any], *, auto_clear: bool = True) -> PublishedBatch:
        """Write payload, then flag. Returns the id of the new batch."""
        if not isinstance(data, dict):
            raise SuggestionPayloadError("suggestion data must be a mapping")
        now = self._clock()
        ts = to_utc_iso(now)
        suggestion_id = self._new_id(now)

        meta = data.get("metadata")
        payload = dict(data)
        payload["metadata"] = {
            **(meta if isinstance(meta, dict) else {}),
            "timestamp": ts,
            "suggestion_id": suggestion_id,
            "format_version": FORMAT_VERSION,
        }
        payload_path = self.paths.suggestion_payload_path
        atomic_write_json(payload_path, payload)

        flag = SuggestionFlag(
            suggestion_ready=True,
            last_update=ts,
            suggestion_id=suggestion_id,
            display_status="ready",
            auto_clear=bool(auto_clear),
            file_path=str(payload_path),
        )
        self.write_flag(flag)
        logger.info("suggestion batch published", extra={"suggestion_id": suggestion_id})
        return PublishedBatch(
            suggestion_id=suggestion_id,
            payload_path=payload_path,
            flag_path=self.paths.suggestion_flag_path,
            timestamp=ts,
        )

    def reset(self) -> int:
        """Clear payload, template cache and flag; leave a hidden reset flag. Returns files removed."""
        cleared = 0
        for p in (
            self.paths.suggestion_payload_path,
            self.paths.template_cache_path,
            self.paths.suggestion_flag_path,
        ):
            if unlink_quiet(p):
                cleared += 1
        ts = to_utc_iso(self._clock())
        self.write_flag(
            SuggestionFlag(
                suggestion_ready=False,
                last_update=ts,
                suggestion_id=None,
                display_status="hidden",
                auto_clear=True,
                template_reset=True,
                reset_timestamp=ts,
            )
        )
        logger.info("suggestion system reset (%d files cleared)", cleared, extra={"op": "reset"})
        return cleared

    def template(self) -> str:
        """Suggestion template text: cached copy, else the packaged one (then cached)."""
        try:
            cached = read_text(self.paths.template_cache_path)
        except ValueError:
            logger.warning("undecodable template cache; restoring packaged template")
            cached = None
        if cached and cached.strip():
            return cached
        text = load_packaged_template()
        yaml.safe_load(text)
        atomic_write_text(self.paths.template_cache_path, text)
        return text

    # ------------------------------------------------------------------
    # Flag access (shared by producer and consumer)
    # ------------------------------------------------------------------

    def read_flag(self) -> Optional[SuggestionFlag]:
        try:
            raw = read_text(self.paths.suggestion_flag_path)
            if not raw or not raw.strip():
                return None
            return SuggestionFlag.model_validate_json(raw)
        except (ValueError, ValidationError):
            logger.warning("unreadable suggestion flag", extra={"path": str(self.paths.suggestion_flag_path)})
            return None

    def write_flag(self, flag: SuggestionFlag) -> None:
        doc = flag.model_dump(exclude_none=True)
        doc.setdefault("suggestion_id", None)
        atomic_write_json(self.paths.suggestion_flag_path, doc)

    def update_status(
        self,
        suggestion_id: str,
        status: DisplayStatus,
        *,
        ready: Optional[bool] = None,
    ) -> bool:
        """Set display_status for batch `suggestion_id`; no-op (False) if the flag has moved on."""
        flag = self.read_flag()
        if flag is None or flag.suggestion_id != suggestion_id:
            return False
        changes: Dict[str, Any] = {"display_status": status, "last_update": to_utc_iso(self._clock())}
        if ready is not None:
            changes["suggestion_ready"] = bool(ready)
        self.write_flag(flag.model_copy(update=changes))
        logger.debug("suggestion status -> %s", status, extra={"suggestion_id": suggestion_id})
        return True

    def read_payload(self) -> Optional[SuggestionData]:
        """Validated payload, or None if missing or invalid (logged)."""
        try:
            raw = read_text(self.paths.suggestion_payload_path)
            if raw is None:
                logger.warning(
                    "suggestion payload not found", extra={"path": str(self.paths.suggestion_payload_path)}
                )
                return None
            return SuggestionData.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.warning("invalid suggestion payload: %s", e)
            return None
