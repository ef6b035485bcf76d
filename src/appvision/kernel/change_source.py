"""Single logical change stream for one file.

Two triggers feed it:

- a watch: cheap stat() signature checks (inode, size, mtime) every
  `watch_interval_s`; a differing signature prompts a content read
- a timer: every `poll_interval_s` the content is read regardless of the
  signature, which covers missed or coalesced notifications

Both paths go through the same dedup: an event is yielded only when the
content hash differs from the last one yielded. The first check happens
immediately, so a file that already exists when watching starts is
reported once.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional, Tuple

from ..util.fs import read_bytes

logger = logging.getLogger("appvision.change_source")

_Signature = Optional[Tuple[int, int, int]]


@dataclass(frozen=True)
class FileChange:
    path: Path
    content: Optional[bytes]  # None: the file does not exist
    digest: str
    trigger: str  # "startup" | "watch" | "poll"

    @property
    def exists(self) -> bool:
        return self.content is not None

    def text(self) -> str:
        return (self.content or b"").decode("utf-8", errors="replace")


def _digest(content: Optional[bytes]) -> str:
    if content is None:
        return "absent"
    return hashlib.sha256(content).hexdigest()


class FileChangeSource:
    def __init__(
        self,
        path: Path,
        *,
        poll_interval_s: float = 2.0,
        watch_interval_s: float = 0.2,
    ) -> None:
        self.path = path
        self.poll_interval_s = max(0.01, float(poll_interval_s))
        self.watch_interval_s = max(0.005, float(watch_interval_s))
        self._last_digest: Optional[str] = None
        self._last_signature: _Signature = None

    def _signature(self) -> _Signature:
        try:
            st = self.path.stat()
        except FileNotFoundError:
            return None
        return (int(getattr(st, "st_ino", 0) or 0), int(st.st_size), int(st.st_mtime_ns))

    def _read(self) -> Optional[bytes]:
        try:
            return read_bytes(self.path)
        except OSError as e:
            logger.warning("read failed: %s", e, extra={"path": str(self.path)})
            return None

    def check(self, trigger: str = "poll") -> Optional[FileChange]:
        """Read now; return a change if the content differs from the last one reported."""
        self._last_signature = self._signature()
        content = self._read()
        digest = _digest(content)
        if digest == self._last_digest:
            return None
        self._last_digest = digest
        return FileChange(path=self.path, content=content, digest=digest, trigger=trigger)

    def forget(self, *, wait_for_poll: bool = False) -> None:
        """Drop dedup state so the current content is reported again on the next check.

        With `wait_for_poll`, the stat signature is kept: an unchanged file is
        re-reported by the next regular poll rather than the next watch tick.
        """
        self._last_digest = None
        if not wait_for_poll:
            self._last_signature = None

    async def changes(self, stop: asyncio.Event) -> AsyncIterator[FileChange]:
        change = self.check("startup")
        if change is not None:
            yield change

        next_poll = time.monotonic() + self.poll_interval_s
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.watch_interval_s)
                break
            except asyncio.TimeoutError:
                pass

            trigger = ""
            if self._signature() != self._last_signature:
                trigger = "watch"
            now = time.monotonic()
            if now >= next_poll:
                next_poll = now + self.poll_interval_s
                trigger = trigger or "poll"
            if not trigger:
                continue

            change = self.check(trigger)
            if change is not None:
                yield change
