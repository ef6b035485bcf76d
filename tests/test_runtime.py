import asyncio
import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock

PNG = b"\x89PNG\r\n\x1a\n" + b"\x02" * 8


class TestPresentationLog(unittest.TestCase):
    def test_events_append_as_jsonl(self) -> None:
        from appvision.contracts.v1 import CaptureMetadata, PresentationEvent
        from appvision.ports.presentation import JsonlPresentation

        with tempfile.TemporaryDirectory() as td:
            log = Path(td) / "daemon" / "presentation.jsonl"
            pres = JsonlPresentation(log, Path(td) / "daemon" / "presentation.lock")
            md = CaptureMetadata(timestamp="2024-01-01T00:00:00Z", type="screen", size=3)
            pres.capture_completed(request_id="1", path="/tmp/x.png", metadata=md)
            pres.capture_failed(request_id="2", reason="No capture target is selected.")
            pres.suggestions_cleared(suggestion_id="suggestion_1")

            lines = log.read_text(encoding="utf-8").splitlines()
            self.assertEqual(len(lines), 3)
            events = [PresentationEvent.model_validate(json.loads(line)) for line in lines]
            self.assertEqual([e.kind for e in events], ["capture.completed", "capture.failed", "suggestions.cleared"])
            self.assertEqual(events[0].data["metadata"]["size"], 3)
            self.assertEqual(events[1].data["reason"], "No capture target is selected.")


class TestAppRuntime(unittest.IsolatedAsyncioTestCase):
    def _runtime(self, root: str, **settings):
        from appvision.daemon.server import AppRuntime
        from appvision.kernel.settings import AppSettings
        from appvision.paths import SharedPaths
        from appvision.ports.capture import CapturedImage

        capture = Mock()
        capture.capture_full_screen.return_value = CapturedImage(data=PNG, source_name="All displays")
        capture.capture_target_app.return_value = CapturedImage(data=PNG, source_name="Screen 1")
        presentation = Mock()
        rt = AppRuntime(
            SharedPaths(root=Path(root)),
            settings=AppSettings(**settings),
            capture=capture,
            presentation=presentation,
            watch_interval_s=0.01,
        )
        return rt, capture, presentation

    async def test_manual_capture_without_target_is_fullscreen(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            rt, capture, presentation = self._runtime(td)
            md = await rt.manual_capture()

            capture.capture_full_screen.assert_called_once()
            self.assertEqual(md.type, "fullscreen")
            self.assertTrue(rt.store.has_manual_capture_done())
            self.assertIsNotNone(rt.store.read_current("manual"))
            self.assertIsNone(rt.store.read_current("automatic"))
            presentation.capture_completed.assert_called_once()

    async def test_manual_capture_of_display(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            rt, capture, _ = self._runtime(td, target_app="screen 1")
            md = await rt.manual_capture()
            capture.capture_target_app.assert_called_once_with("screen 1")
            self.assertEqual(md.type, "screen")

    async def test_run_publishes_heartbeat_and_shuts_down(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            rt, _, _ = self._runtime(td, heartbeat_interval_s=0.01)
            stop = asyncio.Event()
            task = asyncio.ensure_future(rt.run(stop))
            await asyncio.sleep(0.05)
            self.assertTrue(rt.liveness.is_alive())
            self.assertTrue(rt.shared.request_path.parent.is_dir())
            stop.set()
            await asyncio.wait_for(task, timeout=2.0)

            record = rt.liveness.read()
            assert record is not None
            self.assertEqual(record.status, "shutdown")
            self.assertFalse(rt.liveness.is_alive())


if __name__ == "__main__":
    unittest.main()
