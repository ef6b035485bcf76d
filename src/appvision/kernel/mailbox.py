"""Capture request mailbox: flags/capture-request.flag + flags/processing.lock.

Single slot, at most one outstanding request:

    empty -> requested -> claimed -> fulfilled (-> empty)
                          claimed -> empty            (failure; not re-queued)

The requester (command server) deposits a request and then only watches the
result store; it never waits on the request or lock files. The fulfiller
(interactive process) claims the request by creating the processing lock,
reads it, performs the capture, writes the result, deletes the request and
releases the lock.

The lock is advisory and enforced by check-then-act, which assumes a single
fulfiller process. Locks and requests carry timestamps; a lock older than
`stale_lock_s` or a request older than `capture_timeout_s` is treated as
abandoned by a crashed peer.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Optional

from pydantic import ValidationError

from ..contracts.v1 import AnalysisType, CaptureRequest, ProcessingLock
from ..paths import SharedPaths
from ..util.fs import atomic_write_json, read_text, unlink_quiet
from ..util.time import parse_utc_iso, to_utc_iso, utc_now
from .heartbeat import LivenessChannel
from .result_store import CurrentResult, ResultStore

logger = logging.getLogger("appvision.mailbox")

CAPTURE_TIMEOUT_S = 15.0
POLL_INTERVAL_S = 0.5
STALE_LOCK_S = 60.0
READ_MAX_RETRIES = 5
READ_RETRY_DELAY_S = 0.1


class MailboxError(RuntimeError):
    code = "mailbox_error"


class AppNotRunningError(MailboxError):
    code = "app_not_running"


class CaptureInProgressError(MailboxError):
    code = "capture_in_progress"


class RequestWriteError(MailboxError):
    code = "write_failed"


class CaptureTimeoutError(MailboxError):
    code = "capture_timeout"


class CaptureMailbox:
    def __init__(
        self,
        paths: SharedPaths,
        *,
        liveness: LivenessChannel,
        capture_timeout_s: float = CAPTURE_TIMEOUT_S,
        poll_interval_s: float = POLL_INTERVAL_S,
        stale_lock_s: float = STALE_LOCK_S,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.paths = paths
        self.liveness = liveness
        self.capture_timeout_s = float(capture_timeout_s)
        self.poll_interval_s = max(0.01, float(poll_interval_s))
        self.stale_lock_s = float(stale_lock_s)
        self._clock = clock
        self._last_request_id = 0

    # ------------------------------------------------------------------
    # Processing lock
    # ------------------------------------------------------------------

    def read_lock(self) -> Optional[ProcessingLock]:
        try:
            raw = read_text(self.paths.lock_path)
        except ValueError:
            raw = ""
        if raw is None:
            return None
        try:
            return ProcessingLock.model_validate_json(raw)
        except ValidationError:
            # Present but unreadable: treat as held, with an unknown age.
            return ProcessingLock(timestamp="")

    def _lock_is_stale(self, lock: ProcessingLock, now: datetime) -> bool:
        if self.stale_lock_s <= 0:
            return False
        ts = parse_utc_iso(lock.timestamp)
        if ts is None:
            # Unreadable lock: fall back to the file's mtime.
            try:
                age = time.time() - self.paths.lock_path.stat().st_mtime
            except FileNotFoundError:
                return True
            return age >= self.stale_lock_s
        return (now - ts).total_seconds() >= self.stale_lock_s

    def is_locked(self, *, now: Optional[datetime] = None) -> bool:
        """True while a fresh (non-abandoned) processing lock exists."""
        lock = self.read_lock()
        if lock is None:
            return False
        return not self._lock_is_stale(lock, now or self._clock())

    def acquire_lock(self, lock_type: str = "auto-capture") -> bool:
        now = self._clock()
        lock = self.read_lock()
        if lock is not None:
            if not self._lock_is_stale(lock, now):
                return False
            logger.warning("taking over abandoned processing lock (pid=%s, ts=%s)", lock.pid, lock.timestamp)
        marker = ProcessingLock(timestamp=to_utc_iso(now), type=lock_type, pid=os.getpid())
        atomic_write_json(self.paths.lock_path, marker.model_dump())
        return True

    def release_lock(self) -> None:
        try:
            unlink_quiet(self.paths.lock_path)
        except OSError:
            logger.exception("failed to remove processing lock")

    # ------------------------------------------------------------------
    # Request record
    # ------------------------------------------------------------------

    def _next_request_id(self) -> str:
        ms = int(self._clock().timestamp() * 1000)
        if ms <= self._last_request_id:
            ms = self._last_request_id + 1
        self._last_request_id = ms
        return str(ms)

    def read_request(self) -> Optional[CaptureRequest]:
        try:
            raw = read_text(self.paths.request_path)
            if raw is None or not raw.strip():
                return None
            return CaptureRequest.model_validate(json.loads(raw))
        except (ValueError, ValidationError):
            return None

    def outstanding_request(self, *, now: Optional[datetime] = None) -> Optional[CaptureRequest]:
        """The deposited request if it is still within the capture timeout."""
        request = self.read_request()
        if request is None:
            return None
        ts = parse_utc_iso(request.timestamp)
        if ts is None:
            return None
        age = ((now or self._clock()) - ts).total_seconds()
        return request if age < self.capture_timeout_s else None

    def delete_request(self) -> bool:
        return unlink_quiet(self.paths.request_path)

    async def submit(self, *, analysis_type: AnalysisType = "basic", save_to_history: bool = True) -> CaptureRequest:
        """Deposit a capture request (requester side).

        A second submission while a fresh request is outstanding is rejected;
        an expired request left behind by a dead requester is superseded.
        """
        if not self.liveness.is_alive():
            raise AppNotRunningError(
                "The capture application is not running. Start the appvision app and try again."
            )
        if self.is_locked():
            raise CaptureInProgressError("A screen capture is already being processed. Please wait and retry.")
        pending = self.outstanding_request()
        if pending is not None:
            raise CaptureInProgressError(
                f"Capture request {pending.request_id} is still outstanding. Please wait and retry."
            )

        request = CaptureRequest(
            request_id=self._next_request_id(),
            analysis_type=analysis_type,
            save_to_history=save_to_history,
            timestamp=to_utc_iso(self._clock()),
        )
        self.paths.flags_dir.mkdir(parents=True, exist_ok=True)
        atomic_write_json(self.paths.request_path, request.model_dump(by_alias=True))
        await asyncio.sleep(0)

        written = read_text(self.paths.request_path)
        if not written or not written.strip():
            raise RequestWriteError("Failed to write the capture request file.")
        logger.info("capture request submitted", extra={"request_id": request.request_id})
        return request

    async def poll_for_result(
        self,
        store: ResultStore,
        slot: str = "automatic",
        *,
        request_id: Optional[str] = None,
        timeout_s: Optional[float] = None,
        interval_s: Optional[float] = None,
    ) -> CurrentResult:
        """Wait until the slot's current pair exists (and belongs to `request_id`, if given)."""
        timeout = self.capture_timeout_s if timeout_s is None else float(timeout_s)
        interval = self.poll_interval_s if interval_s is None else max(0.01, float(interval_s))
        deadline = time.monotonic() + timeout
        while True:
            current = store.read_current(slot)
            if current is not None and (request_id is None or current.metadata.request_id == request_id):
                return current
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise CaptureTimeoutError(
                    "Capture timed out. Check that the appvision app is running and a capture target is selected."
                )
            await asyncio.sleep(min(interval, remaining))

    # ------------------------------------------------------------------
    # Fulfiller side
    # ------------------------------------------------------------------

    async def _read_with_retry(self, max_retries: int, retry_delay_s: float) -> Optional[CaptureRequest]:
        path = self.paths.request_path
        attempts = max(1, int(max_retries))
        for attempt in range(1, attempts + 1):
            try:
                raw = read_text(path)
            except ValueError as e:
                raw = ""
                problem = f"undecodable request: {e}"
            else:
                problem = "request file is empty"
            if raw is None:
                logger.warning("request file does not exist", extra={"attempt": attempt})
                return None
            if raw.strip():
                try:
                    return CaptureRequest.model_validate(json.loads(raw))
                except (ValueError, ValidationError) as e:
                    problem = f"unparseable request: {e}"
            if attempt < attempts:
                logger.warning("%s, retrying", problem, extra={"attempt": attempt})
                await asyncio.sleep(retry_delay_s)
                continue
            logger.error("%s after %d attempts; discarding request", problem, attempts, extra={"attempt": attempt})
            self.delete_request()
        return None

    @asynccontextmanager
    async def claim_and_read(
        self,
        *,
        lock_type: str = "auto-capture",
        max_retries: int = READ_MAX_RETRIES,
        retry_delay_s: float = READ_RETRY_DELAY_S,
    ) -> AsyncIterator[Optional[CaptureRequest]]:
        """Create the processing lock and read the request, tolerating a writer that has not flushed yet.

        Yields the request, or None when the lock is held elsewhere or the
        request could not be read. A lock taken here is removed on every exit
        path of the `async with` block.
        """
        if not self.acquire_lock(lock_type):
            logger.warning("processing lock is held; skipping claim")
            yield None
            return
        try:
            yield await self._read_with_retry(max_retries, retry_delay_s)
        finally:
            self.release_lock()
