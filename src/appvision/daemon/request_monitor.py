"""Fulfiller side of the capture request mailbox.

Watches flags/capture-request.flag through a FileChangeSource (which also
reports a request that was already waiting at startup), claims it under the
processing lock, captures the selected target and writes the automatic slot
of the result store. The request file is removed on every outcome; the
requester learns about success only through the result store.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable

from ..contracts.v1 import CaptureRequest
from ..kernel.change_source import FileChangeSource
from ..kernel.mailbox import CaptureMailbox
from ..kernel.result_store import ResultStore
from ..ports.capture import (
    EMPTY_CAPTURE_MESSAGE,
    CaptureError,
    CapturePort,
    TargetNotFoundError,
    display_index,
    is_fullscreen_target,
    target_not_found_message,
)
from ..ports.presentation import PresentationPort

logger = logging.getLogger("appvision.request_monitor")

NO_TARGET_MESSAGE = (
    "No capture target is selected. Choose an application or display "
    "(for example with 'appvisiond select \"screen 1\"') and try again."
)

# process_pending() outcomes
FULFILLED = "fulfilled"
FAILED = "failed"
BUSY = "busy"
EMPTY = "empty"


class RequestMonitor:
    def __init__(
        self,
        mailbox: CaptureMailbox,
        store: ResultStore,
        capture: CapturePort,
        presentation: PresentationPort,
        *,
        target_provider: Callable[[], str],
        poll_interval_s: float = 2.0,
        watch_interval_s: float = 0.2,
    ) -> None:
        self.mailbox = mailbox
        self.store = store
        self.capture = capture
        self.presentation = presentation
        self.target_provider = target_provider
        self.source = FileChangeSource(
            mailbox.paths.request_path,
            poll_interval_s=poll_interval_s,
            watch_interval_s=watch_interval_s,
        )
        self._processing = False

    async def run(self, stop: asyncio.Event) -> None:
        self.mailbox.paths.flags_dir.mkdir(parents=True, exist_ok=True)
        logger.info("request monitor started", extra={"path": str(self.mailbox.paths.request_path)})
        async for change in self.source.changes(stop):
            if not change.exists:
                continue
            try:
                outcome = await self.process_pending()
            except Exception:
                logger.exception("request processing failed")
                outcome = FAILED
            if outcome == BUSY:
                # Re-report the same request once the lock is free.
                self.source.forget()
        logger.info("request monitor stopped")

    async def process_pending(self) -> str:
        if self._processing:
            logger.warning("already processing a request, skipping")
            return BUSY
        self._processing = True
        try:
            if not self.mailbox.paths.request_path.exists():
                return EMPTY
            if self.mailbox.is_locked():
                return BUSY
            async with self.mailbox.claim_and_read() as request:
                if request is None:
                    return FAILED
                return await self.fulfill(request)
        finally:
            self._processing = False

    async def fulfill(self, request: CaptureRequest) -> str:
        """Capture for a claimed request. The request file is gone when this returns."""
        rid = request.request_id
        try:
            target = str(self.target_provider() or "").strip()
            if is_fullscreen_target(target):
                # An unintended full-screen capture is worse than a failed request.
                logger.info("no target selected, cancelling automatic capture", extra={"request_id": rid})
                self.presentation.capture_failed(request_id=rid, reason=NO_TARGET_MESSAGE)
                return FAILED

            try:
                shot = await asyncio.to_thread(self.capture.capture_target_app, target)
            except TargetNotFoundError:
                self.presentation.capture_failed(request_id=rid, reason=target_not_found_message(target))
                return FAILED
            except CaptureError as e:
                self.presentation.capture_failed(request_id=rid, reason=str(e))
                return FAILED
            if not shot.data:
                self.presentation.capture_failed(request_id=rid, reason=EMPTY_CAPTURE_MESSAGE)
                return FAILED

            metadata = self.store.save_capture(
                "automatic",
                shot.data,
                kind="screen" if display_index(target) is not None else "window",
                source_name=shot.source_name,
                app_name=target,
                request_id=rid,
                save_to_history=request.save_to_history,
            )
            self.presentation.capture_completed(
                request_id=rid,
                path=str(self.store.paths.current_image_path("automatic")),
                metadata=metadata,
            )
            logger.info("automatic capture stored", extra={"request_id": rid, "target": target})
            return FULFILLED
        except OSError as e:
            logger.exception("failed to store capture", extra={"request_id": rid})
            self.presentation.capture_failed(request_id=rid, reason=f"Failed to save the capture: {e}")
            return FAILED
        finally:
            self.mailbox.delete_request()
