"""Consumer side of the suggestion delivery flag.

A batch is acted on once: when the flag says ready and carries an id other
than the last one handled. Auto-clear timers are keyed by batch id and do
nothing if a newer batch has arrived by the time they fire.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional, Tuple

from pydantic import ValidationError

from ..contracts.v1 import SuggestionFlag
from ..kernel.change_source import FileChange, FileChangeSource
from ..kernel.suggestions import SuggestionChannel
from ..ports.presentation import PresentationPort

logger = logging.getLogger("appvision.suggestion_monitor")

AUTO_CLEAR_S = 300.0
POLL_INTERVAL_S = 2.0


class SuggestionMonitor:
    def __init__(
        self,
        channel: SuggestionChannel,
        presentation: PresentationPort,
        *,
        auto_clear_s: float = AUTO_CLEAR_S,
        poll_interval_s: float = POLL_INTERVAL_S,
        watch_interval_s: float = 0.2,
    ) -> None:
        self.channel = channel
        self.presentation = presentation
        self.auto_clear_s = float(auto_clear_s)
        self.source = FileChangeSource(
            channel.paths.suggestion_flag_path,
            poll_interval_s=poll_interval_s,
            watch_interval_s=watch_interval_s,
        )
        self.current_id: Optional[str] = None
        self._timers: Dict[str, asyncio.Task] = {}
        self._waiting_on: Optional[Tuple[str, str]] = None

    async def run(self, stop: asyncio.Event) -> None:
        self.channel.paths.flags_dir.mkdir(parents=True, exist_ok=True)
        self.channel.paths.suggestions_dir.mkdir(parents=True, exist_ok=True)
        logger.info("suggestion monitor started")
        try:
            async for change in self.source.changes(stop):
                try:
                    await self.handle_change(change)
                except Exception:
                    logger.exception("suggestion flag handling failed")
        finally:
            self.cancel_timers()
            logger.info("suggestion monitor stopped")

    def cancel_timers(self) -> None:
        for task in list(self._timers.values()):
            task.cancel()
        self._timers.clear()

    async def handle_change(self, change: FileChange) -> bool:
        """Returns True when a new batch was delivered."""
        if not change.exists:
            return False
        try:
            flag = SuggestionFlag.model_validate_json(change.content or b"")
        except ValidationError:
            logger.warning("unreadable suggestion flag", extra={"path": str(change.path)})
            return False
        return await self.handle_flag(flag)

    async def handle_flag(self, flag: SuggestionFlag) -> bool:
        sid = flag.suggestion_id
        if not (flag.suggestion_ready and flag.display_status == "ready" and sid):
            return False
        if sid == self.current_id:
            return False

        data = self.channel.read_payload()
        if data is not None and data.metadata is not None and data.metadata.suggestion_id not in ("", sid):
            # Payload of another batch; its own flag write is still to come.
            other = data.metadata.suggestion_id
            if self._waiting_on != (sid, other):
                self._waiting_on = (sid, other)
                logger.warning("payload belongs to %s, waiting for its flag", other, extra={"suggestion_id": sid})
            self.source.forget(wait_for_poll=True)
            return False

        self._waiting_on = None
        self.current_id = sid
        if data is None:
            logger.warning("discarding suggestion batch without a valid payload", extra={"suggestion_id": sid})
            self.channel.update_status(sid, "hidden", ready=False)
            return False

        self.channel.update_status(sid, "processing")
        self.presentation.suggestions_updated(
            suggestion_id=sid,
            suggestions=data.items_as_dicts(),
            metadata=data.metadata.model_dump() if data.metadata is not None else {},
        )
        self.channel.update_status(sid, "displayed")
        logger.info("suggestions displayed (%d)", len(data.suggestions), extra={"suggestion_id": sid})

        if flag.auto_clear:
            self.schedule_auto_clear(sid)
        return True

    def schedule_auto_clear(self, suggestion_id: str) -> asyncio.Task:
        old = self._timers.pop(suggestion_id, None)
        if old is not None:
            old.cancel()
        task = asyncio.ensure_future(self._auto_clear_after(suggestion_id, self.auto_clear_s))
        self._timers[suggestion_id] = task
        return task

    async def _auto_clear_after(self, suggestion_id: str, delay_s: float) -> None:
        try:
            await asyncio.sleep(delay_s)
            self.auto_clear(suggestion_id)
        finally:
            if self._timers.get(suggestion_id) is asyncio.current_task():
                del self._timers[suggestion_id]

    def auto_clear(self, suggestion_id: str) -> bool:
        """Hide batch `suggestion_id` unless a newer one has taken its place."""
        if self.current_id != suggestion_id:
            logger.debug("stale auto-clear ignored", extra={"suggestion_id": suggestion_id})
            return False
        if not self.channel.update_status(suggestion_id, "hidden", ready=False):
            logger.debug("flag moved on, auto-clear ignored", extra={"suggestion_id": suggestion_id})
            return False
        self.presentation.suggestions_cleared(suggestion_id=suggestion_id)
        logger.info("suggestions auto-cleared", extra={"suggestion_id": suggestion_id})
        return True
