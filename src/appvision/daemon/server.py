"""Interactive-side process: heartbeat, request fulfiller, suggestion consumer.

Everything runs on one asyncio loop. Blocking capture calls are pushed to a
worker thread; all mailbox and flag I/O stays on the loop.
"""
from __future__ import annotations

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Optional

from ..contracts.v1 import CaptureMetadata
from ..kernel.heartbeat import LivenessChannel
from ..kernel.history_retention import HistoryRetentionPolicy
from ..kernel.mailbox import CaptureMailbox
from ..kernel.result_store import ResultStore
from ..kernel.settings import AppSettings, load_settings
from ..kernel.suggestions import SuggestionChannel
from ..paths import DaemonPaths, SharedPaths, default_daemon_paths, shared_data_dir
from ..ports.capture import CaptureError, CapturePort, MssCapturePort, display_index, is_fullscreen_target
from ..ports.presentation import JsonlPresentation, PresentationPort
from ..util.fs import atomic_write_text
from .request_monitor import RequestMonitor
from .suggestion_monitor import SuggestionMonitor

logger = logging.getLogger("appvision.daemon")


def _write_pid(pid_path: Path) -> None:
    pid_path.parent.mkdir(parents=True, exist_ok=True)
    atomic_write_text(pid_path, str(os.getpid()) + "\n")


def read_pid(paths: Optional[DaemonPaths] = None) -> int:
    p = paths or default_daemon_paths()
    try:
        txt = p.pid_path.read_text(encoding="utf-8").strip()
    except OSError:
        return 0
    return int(txt) if txt.isdigit() else 0


class AppRuntime:
    def __init__(
        self,
        shared: SharedPaths,
        *,
        settings: Optional[AppSettings] = None,
        capture: Optional[CapturePort] = None,
        presentation: Optional[PresentationPort] = None,
        daemon_paths: Optional[DaemonPaths] = None,
        watch_interval_s: float = 0.2,
    ) -> None:
        self.shared = shared
        self.settings = settings or AppSettings()
        self.daemon_paths = daemon_paths
        s = self.settings

        self.liveness = LivenessChannel(shared, interval_s=s.heartbeat_interval_s, timeout_s=s.heartbeat_timeout_s)
        self.store = ResultStore(shared, retention=HistoryRetentionPolicy.from_settings(s))
        self.mailbox = CaptureMailbox(
            shared,
            liveness=self.liveness,
            capture_timeout_s=s.capture_timeout_s,
            poll_interval_s=s.poll_interval_s,
            stale_lock_s=s.stale_lock_s,
        )
        self.suggestions = SuggestionChannel(shared)
        self.capture: CapturePort = capture or MssCapturePort()
        if presentation is None:
            dp = daemon_paths or default_daemon_paths()
            presentation = JsonlPresentation(dp.presentation_log_path, dp.presentation_lock_path)
        self.presentation: PresentationPort = presentation

        self.requests = RequestMonitor(
            self.mailbox,
            self.store,
            self.capture,
            self.presentation,
            target_provider=self.current_target,
            watch_interval_s=watch_interval_s,
        )
        self.suggestion_monitor = SuggestionMonitor(
            self.suggestions,
            self.presentation,
            auto_clear_s=s.suggestion_auto_clear_s,
            poll_interval_s=s.suggestion_poll_interval_s,
            watch_interval_s=watch_interval_s,
        )

    def current_target(self) -> str:
        """Selected capture target; re-read from settings so `select` applies without restart."""
        if self.daemon_paths is None:
            return self.settings.target_app
        return load_settings(self.daemon_paths.home).target_app

    def startup(self) -> None:
        self.shared.ensure_dirs()
        if self.settings.cleanup_on_startup:
            removed = self.store.cleanup_on_startup()
            if removed:
                logger.info("startup cleanup removed %d history files", removed)

    async def run(self, stop: asyncio.Event) -> None:
        self.startup()
        tasks = [
            asyncio.ensure_future(self.liveness.run(stop)),
            asyncio.ensure_future(self.requests.run(stop)),
            asyncio.ensure_future(self.suggestion_monitor.run(stop)),
        ]
        try:
            await stop.wait()
        finally:
            await asyncio.gather(*tasks, return_exceptions=True)
            self.liveness.shutdown()
            logger.info("runtime stopped")

    async def manual_capture(self, target: Optional[str] = None) -> CaptureMetadata:
        """User-initiated capture into the manual slot. Full screen is allowed here."""
        name = self.current_target() if target is None else str(target).strip()
        if is_fullscreen_target(name):
            shot = await asyncio.to_thread(self.capture.capture_full_screen)
            kind = "fullscreen"
        else:
            shot = await asyncio.to_thread(self.capture.capture_target_app, name)
            kind = "screen" if display_index(name) is not None else "window"
        if not shot.data:
            raise CaptureError("Capture failed (empty image).")
        metadata = self.store.save_capture(
            "manual",
            shot.data,
            kind=kind,
            source_name=shot.source_name,
            app_name=name or "fullscreen",
        )
        self.store.mark_manual_capture_done()
        self.presentation.capture_completed(
            request_id=None,
            path=str(self.shared.current_image_path("manual")),
            metadata=metadata,
        )
        return metadata


def build_runtime(daemon_paths: Optional[DaemonPaths] = None) -> AppRuntime:
    dp = daemon_paths or default_daemon_paths()
    settings = load_settings(dp.home)
    shared = SharedPaths(root=shared_data_dir(settings.shared_data_dir))
    return AppRuntime(shared, settings=settings, daemon_paths=dp)


def serve_forever(paths: Optional[DaemonPaths] = None) -> int:
    p = paths or default_daemon_paths()
    p.daemon_dir.mkdir(parents=True, exist_ok=True)
    runtime = build_runtime(p)

    async def _main() -> None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, stop.set)
            except (NotImplementedError, RuntimeError):
                # Windows event loops have no signal handlers; Ctrl+C still raises KeyboardInterrupt.
                pass
        await runtime.run(stop)

    _write_pid(p.pid_path)
    logger.info("appvisiond started", extra={"path": str(runtime.shared.root)})
    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        runtime.liveness.shutdown()
    finally:
        try:
            p.pid_path.unlink()
        except FileNotFoundError:
            pass
    return 0
