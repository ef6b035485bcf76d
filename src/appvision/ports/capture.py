"""Capture port: the only place pixels come from.

The core calls `capture_full_screen()` / `capture_target_app(name)` and
receives PNG bytes plus a human-readable source name. `MssCapturePort` is the
bundled backend (optional `mss` dependency); the interactive process may
inject any other implementation of `CapturePort`.
"""
from __future__ import annotations

import logging
import re
from typing import NamedTuple, Optional, Protocol

logger = logging.getLogger("appvision.capture")

try:  # pragma: no cover - optional dependency
    import mss  # type: ignore
    from mss import tools as mss_tools  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    mss = None  # type: ignore
    mss_tools = None  # type: ignore


FULLSCREEN_TARGETS = ("", "fullscreen")

_DISPLAY_RE = re.compile(r"^(?:screen|display|monitor)\s*(\d+)$", re.IGNORECASE)


class CaptureError(RuntimeError):
    """Capture could not produce an image. The message is shown to the user."""


class TargetNotFoundError(CaptureError):
    pass


class CaptureUnsupportedError(CaptureError):
    pass


class CapturedImage(NamedTuple):
    data: bytes
    source_name: str


class CapturePort(Protocol):
    def capture_full_screen(self) -> CapturedImage: ...

    def capture_target_app(self, name: str) -> CapturedImage: ...


def is_fullscreen_target(name: Optional[str]) -> bool:
    return str(name or "").strip().lower() in FULLSCREEN_TARGETS


def display_index(name: str) -> Optional[int]:
    """1-based monitor number for targets like "screen 2" / "display 1", else None."""
    m = _DISPLAY_RE.match(str(name or "").strip())
    if not m:
        return None
    n = int(m.group(1))
    return n if n >= 1 else None


def target_not_found_message(name: str) -> str:
    return (
        f"Target application '{name}' was not found. "
        "Its window title may have changed; refresh the application list and select it again."
    )


EMPTY_CAPTURE_MESSAGE = (
    "Capture failed (empty image). This source is not supported by the capture backend."
)


class MssCapturePort:
    """Monitor capture through mss. Window capture by application name is not available."""

    def __init__(self, *, monitor_index: int = 1) -> None:
        self.monitor_index = int(monitor_index)

    @staticmethod
    def available() -> bool:
        return mss is not None and mss_tools is not None

    def _grab(self, index: int) -> CapturedImage:
        if not self.available():
            raise CaptureUnsupportedError("Screen capture backend is not available (install the 'mss' package).")
        assert mss is not None and mss_tools is not None  # for type checkers
        with mss.mss() as sct:
            monitors = sct.monitors
            # monitors[0] is the union of all displays.
            if index < 0 or index >= len(monitors):
                raise TargetNotFoundError(f"Display {index} was not found ({len(monitors) - 1} available).")
            shot = sct.grab(monitors[index])
            data = mss_tools.to_png(shot.rgb, shot.size)
        if not data:
            raise CaptureUnsupportedError(EMPTY_CAPTURE_MESSAGE)
        name = "All displays" if index == 0 else f"Screen {index}"
        return CapturedImage(data=bytes(data), source_name=name)

    def capture_full_screen(self) -> CapturedImage:
        return self._grab(0)

    def capture_target_app(self, name: str) -> CapturedImage:
        if is_fullscreen_target(name):
            return self.capture_full_screen()
        idx = display_index(name)
        if idx is not None:
            return self._grab(idx)
        logger.warning("window capture requested but unsupported", extra={"target": name})
        raise CaptureUnsupportedError(
            f"Capturing the application window '{name}' is not supported by the mss backend. "
            "Select a display (for example 'screen 1') instead."
        )
