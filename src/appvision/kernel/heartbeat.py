"""Liveness channel: heartbeat/app-status.json.

One writer (the interactive process) overwrites the record every few seconds
and once more on graceful shutdown. Readers judge freshness only; there is no
acknowledgement and no locking, last write wins.
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from datetime import datetime
from typing import Callable, Dict, Optional

from pydantic import ValidationError

from .. import __version__
from ..contracts.v1 import HeartbeatRecord, HeartbeatStatus
from ..paths import SharedPaths
from ..util.fs import atomic_write_json, read_text
from ..util.time import parse_utc_iso, to_utc_iso, utc_now

logger = logging.getLogger("appvision.heartbeat")

HEARTBEAT_INTERVAL_S = 5.0
HEARTBEAT_TIMEOUT_S = 30.0

DEFAULT_SERVICES: Dict[str, bool] = {
    "screenCapture": True,
    "imageAnalysis": True,
    "fileMonitoring": True,
}


class LivenessChannel:
    def __init__(
        self,
        paths: SharedPaths,
        *,
        interval_s: float = HEARTBEAT_INTERVAL_S,
        timeout_s: float = HEARTBEAT_TIMEOUT_S,
        services: Optional[Dict[str, bool]] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.paths = paths
        self.interval_s = float(interval_s)
        self.timeout_s = float(timeout_s)
        self.services = dict(DEFAULT_SERVICES if services is None else services)
        self._clock = clock
        self._started = time.monotonic()

    # ------------------------------------------------------------------
    # Writer side
    # ------------------------------------------------------------------

    def publish(self, status: HeartbeatStatus = "active", *, reason: Optional[str] = None) -> HeartbeatRecord:
        record = HeartbeatRecord(
            timestamp=to_utc_iso(self._clock()),
            status=status,
            pid=os.getpid(),
            uptime=round(time.monotonic() - self._started, 3),
            version=__version__,
            services=self.services if status == "active" else {},
            reason=reason,
        )
        atomic_write_json(self.paths.heartbeat_path, record.model_dump(exclude_none=True))
        logger.debug("heartbeat written", extra={"op": status})
        return record

    def shutdown(self) -> None:
        try:
            self.publish("shutdown", reason="graceful_shutdown")
        except OSError:
            logger.exception("failed to write shutdown heartbeat")

    async def run(self, stop: asyncio.Event) -> None:
        """Publish until `stop` is set. Write failures are logged and retried next tick."""
        while not stop.is_set():
            try:
                self.publish("active")
            except OSError:
                logger.exception("heartbeat write failed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval_s)
            except asyncio.TimeoutError:
                pass

    # ------------------------------------------------------------------
    # Reader side
    # ------------------------------------------------------------------

    def read(self) -> Optional[HeartbeatRecord]:
        try:
            raw = read_text(self.paths.heartbeat_path)
        except (OSError, ValueError):
            return None
        if not raw or not raw.strip():
            return None
        try:
            return HeartbeatRecord.model_validate_json(raw)
        except ValidationError:
            return None

    def age_s(self, now: Optional[datetime] = None) -> Optional[float]:
        record = self.read()
        if record is None:
            return None
        ts = parse_utc_iso(record.timestamp)
        if ts is None:
            return None
        return ((now or self._clock()) - ts).total_seconds()

    def is_alive(self, timeout_s: Optional[float] = None, *, now: Optional[datetime] = None) -> bool:
        """True only for an active record strictly newer than now - timeout."""
        limit = self.timeout_s if timeout_s is None else float(timeout_s)
        record = self.read()
        if record is None or record.status != "active":
            return False
        ts = parse_utc_iso(record.timestamp)
        if ts is None:
            return False
        age = ((now or self._clock()) - ts).total_seconds()
        return age < limit
