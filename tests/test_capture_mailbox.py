import asyncio
import json
import tempfile
import unittest
from datetime import timedelta
from pathlib import Path


class TestCaptureMailbox(unittest.IsolatedAsyncioTestCase):
    def _setup(self, root: str, **kw):
        from appvision.kernel.heartbeat import LivenessChannel
        from appvision.kernel.mailbox import CaptureMailbox
        from appvision.paths import SharedPaths

        paths = SharedPaths(root=Path(root))
        liveness = LivenessChannel(paths)
        return paths, liveness, CaptureMailbox(paths, liveness=liveness, **kw)

    async def test_submit_requires_live_app(self) -> None:
        from appvision.kernel.mailbox import AppNotRunningError

        with tempfile.TemporaryDirectory() as td:
            paths, _, mailbox = self._setup(td)
            with self.assertRaises(AppNotRunningError) as cm:
                await mailbox.submit()
            self.assertEqual(cm.exception.code, "app_not_running")
            self.assertFalse(paths.request_path.exists())

    async def test_submit_writes_request_record(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            paths, liveness, mailbox = self._setup(td)
            liveness.publish()

            req = await mailbox.submit(analysis_type="basic", save_to_history=True)
            doc = json.loads(paths.request_path.read_text(encoding="utf-8"))
            self.assertEqual(doc.get("requestId"), req.request_id)
            self.assertEqual(doc.get("analysisType"), "basic")
            self.assertIs(doc.get("saveToHistory"), True)
            self.assertTrue(doc.get("timestamp"))
            self.assertTrue(req.request_id.isdigit())

    async def test_second_submission_is_rejected_while_outstanding(self) -> None:
        from appvision.kernel.mailbox import CaptureInProgressError

        with tempfile.TemporaryDirectory() as td:
            paths, liveness, mailbox = self._setup(td)
            liveness.publish()
            first = await mailbox.submit()
            with self.assertRaises(CaptureInProgressError):
                await mailbox.submit()
            doc = json.loads(paths.request_path.read_text(encoding="utf-8"))
            self.assertEqual(doc.get("requestId"), first.request_id)

    async def test_expired_request_is_superseded(self) -> None:
        from appvision.util.time import utc_now

        with tempfile.TemporaryDirectory() as td:
            paths, liveness, mailbox = self._setup(td, capture_timeout_s=15)
            liveness.publish()
            paths.flags_dir.mkdir(parents=True, exist_ok=True)
            old = (utc_now() - timedelta(seconds=60)).isoformat().replace("+00:00", "Z")
            paths.request_path.write_text(
                json.dumps({"requestId": "1", "analysisType": "basic", "saveToHistory": True, "timestamp": old}),
                encoding="utf-8",
            )
            req = await mailbox.submit()
            self.assertNotEqual(req.request_id, "1")

    async def test_fresh_lock_blocks_and_stale_lock_does_not(self) -> None:
        from appvision.kernel.mailbox import CaptureInProgressError
        from appvision.util.time import utc_now

        with tempfile.TemporaryDirectory() as td:
            paths, liveness, mailbox = self._setup(td, stale_lock_s=60)
            liveness.publish()
            self.assertTrue(mailbox.acquire_lock())
            self.assertTrue(mailbox.is_locked())
            with self.assertRaises(CaptureInProgressError) as cm:
                await mailbox.submit()
            self.assertEqual(cm.exception.code, "capture_in_progress")

            stale = (utc_now() - timedelta(seconds=120)).isoformat().replace("+00:00", "Z")
            paths.lock_path.write_text(json.dumps({"timestamp": stale, "type": "auto-capture", "pid": 1}), encoding="utf-8")
            self.assertFalse(mailbox.is_locked())
            await mailbox.submit()
            self.assertTrue(paths.request_path.exists())

    async def test_request_ids_are_monotonic(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            _, _, mailbox = self._setup(td)
            ids = [int(mailbox._next_request_id()) for _ in range(5)]
            self.assertEqual(ids, sorted(set(ids)))

    async def test_claim_releases_lock_on_exception(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            paths, liveness, mailbox = self._setup(td)
            liveness.publish()
            await mailbox.submit()

            with self.assertRaises(RuntimeError):
                async with mailbox.claim_and_read() as req:
                    self.assertIsNotNone(req)
                    self.assertTrue(paths.lock_path.exists())
                    raise RuntimeError("boom")
            self.assertFalse(paths.lock_path.exists())

    async def test_claim_skips_when_lock_held(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            paths, liveness, mailbox = self._setup(td)
            liveness.publish()
            await mailbox.submit()
            mailbox.acquire_lock("manual")

            async with mailbox.claim_and_read() as req:
                self.assertIsNone(req)
            # The other holder's lock stays in place.
            self.assertTrue(paths.lock_path.exists())

    async def test_claim_retries_empty_read(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            paths, _, mailbox = self._setup(td)
            paths.flags_dir.mkdir(parents=True, exist_ok=True)
            paths.request_path.write_text("", encoding="utf-8")

            async def _late_writer() -> None:
                await asyncio.sleep(0.03)
                paths.request_path.write_text(
                    json.dumps({"requestId": "1700000000000", "analysisType": "basic", "saveToHistory": True}),
                    encoding="utf-8",
                )

            writer = asyncio.ensure_future(_late_writer())
            async with mailbox.claim_and_read(max_retries=10, retry_delay_s=0.01) as req:
                self.assertIsNotNone(req)
                assert req is not None
                self.assertEqual(req.request_id, "1700000000000")
            await writer
            self.assertFalse(paths.lock_path.exists())

    async def test_claim_gives_up_after_retries(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            paths, _, mailbox = self._setup(td)
            paths.flags_dir.mkdir(parents=True, exist_ok=True)
            paths.request_path.write_text("   ", encoding="utf-8")

            async with mailbox.claim_and_read(max_retries=3, retry_delay_s=0.001) as req:
                self.assertIsNone(req)
            self.assertFalse(paths.lock_path.exists())
            self.assertFalse(paths.request_path.exists())

    async def test_undecodable_request_is_discarded(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            paths, _, mailbox = self._setup(td)
            paths.flags_dir.mkdir(parents=True, exist_ok=True)
            paths.request_path.write_bytes(b"\xff\xfe")

            self.assertIsNone(mailbox.read_request())
            async with mailbox.claim_and_read(max_retries=2, retry_delay_s=0.001) as req:
                self.assertIsNone(req)
            self.assertFalse(paths.lock_path.exists())
            self.assertFalse(paths.request_path.exists())

    async def test_undecodable_leftovers_do_not_block_submit(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            paths, liveness, mailbox = self._setup(td)
            liveness.publish()
            paths.flags_dir.mkdir(parents=True, exist_ok=True)
            paths.request_path.write_bytes(b"\xff\xfe")

            request = await mailbox.submit()
            self.assertEqual(mailbox.read_request(), request)

    async def test_undecodable_lock_counts_as_held(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            paths, _, mailbox = self._setup(td)
            paths.flags_dir.mkdir(parents=True, exist_ok=True)
            paths.lock_path.write_bytes(b"\xff\xfe")

            self.assertIsNotNone(mailbox.read_lock())
            self.assertTrue(mailbox.is_locked())

    async def test_claim_without_request(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            paths, _, mailbox = self._setup(td)
            async with mailbox.claim_and_read() as req:
                self.assertIsNone(req)
            self.assertFalse(paths.lock_path.exists())

    async def test_poll_times_out(self) -> None:
        from appvision.kernel.mailbox import CaptureTimeoutError
        from appvision.kernel.result_store import ResultStore

        with tempfile.TemporaryDirectory() as td:
            paths, _, mailbox = self._setup(td)
            store = ResultStore(paths)
            with self.assertRaises(CaptureTimeoutError) as cm:
                await mailbox.poll_for_result(store, "automatic", timeout_s=0.05, interval_s=0.01)
            self.assertEqual(cm.exception.code, "capture_timeout")

    async def test_poll_waits_for_matching_request(self) -> None:
        from appvision.kernel.result_store import ResultStore

        with tempfile.TemporaryDirectory() as td:
            paths, _, mailbox = self._setup(td)
            store = ResultStore(paths)
            store.save_capture("automatic", b"old", kind="screen", source_name="Screen 1", request_id="1")

            async def _fulfil() -> None:
                await asyncio.sleep(0.03)
                store.save_capture("automatic", b"new", kind="screen", source_name="Screen 1", request_id="2")

            task = asyncio.ensure_future(_fulfil())
            result = await mailbox.poll_for_result(store, "automatic", request_id="2", timeout_s=1.0, interval_s=0.01)
            await task
            self.assertEqual(result.metadata.request_id, "2")
            self.assertEqual(result.image_path.read_bytes(), b"new")


if __name__ == "__main__":
    unittest.main()
