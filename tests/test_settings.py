import os
import tempfile
import unittest
from pathlib import Path


class TestSettings(unittest.TestCase):
    def test_defaults(self) -> None:
        from appvision.kernel.settings import resolve_settings

        s = resolve_settings({}, env={})
        self.assertEqual(s.history_max_files, 10)
        self.assertEqual(s.history_retention_days, 7)
        self.assertTrue(s.cleanup_on_startup)
        self.assertTrue(s.auto_cleanup)
        self.assertEqual(s.heartbeat_timeout_s, 30.0)
        self.assertEqual(s.capture_timeout_s, 15.0)
        self.assertEqual(s.poll_interval_s, 0.5)
        self.assertEqual(s.suggestion_auto_clear_s, 300.0)
        self.assertEqual(s.target_app, "")

    def test_document_then_environment(self) -> None:
        from appvision.kernel.settings import resolve_settings

        doc = {
            "target_app": "Editor",
            "history": {"max_files": 3, "retention_days": "2", "auto_cleanup": "false"},
            "timeouts": {"capture_s": 20},
            "locks": {"stale_after_s": 5},
        }
        s = resolve_settings(doc, env={})
        self.assertEqual(s.target_app, "Editor")
        self.assertEqual(s.history_max_files, 3)
        self.assertEqual(s.history_retention_days, 2)
        self.assertFalse(s.auto_cleanup)
        self.assertEqual(s.capture_timeout_s, 20.0)
        self.assertEqual(s.stale_lock_s, 5.0)

        env = {
            "APPVISION_TARGET_APP": "screen 1",
            "APPVISION_HISTORY_MAX_FILES": "8",
            "APPVISION_CLEANUP_ON_STARTUP": "0",
            "APPVISION_AUTO_CLEANUP": "yes",
        }
        s = resolve_settings(doc, env=env)
        self.assertEqual(s.target_app, "screen 1")
        self.assertEqual(s.history_max_files, 8)
        self.assertFalse(s.cleanup_on_startup)
        self.assertTrue(s.auto_cleanup)

    def test_invalid_values_fall_back(self) -> None:
        from appvision.kernel.settings import resolve_settings

        s = resolve_settings({"history": {"max_files": "many", "retention_days": -4}}, env={})
        self.assertEqual(s.history_max_files, 10)
        self.assertEqual(s.history_retention_days, 0)

    def test_select_target_persists(self) -> None:
        from appvision.kernel.settings import load_settings, load_settings_doc, set_target_app

        old = os.environ.pop("APPVISION_TARGET_APP", None)
        try:
            with tempfile.TemporaryDirectory() as td:
                home = Path(td)
                set_target_app("  screen 2 ", home)
                self.assertEqual(load_settings_doc(home).get("target_app"), "screen 2")
                self.assertEqual(load_settings(home).target_app, "screen 2")
                self.assertTrue((home / "settings.yaml").exists())
        finally:
            if old is not None:
                os.environ["APPVISION_TARGET_APP"] = old

    def test_shared_data_dir_resolution(self) -> None:
        from appvision.paths import shared_data_dir

        old_home = os.environ.get("APPVISION_HOME")
        old_shared = os.environ.pop("APPVISION_SHARED_DATA", None)
        try:
            with tempfile.TemporaryDirectory() as td:
                os.environ["APPVISION_HOME"] = td
                self.assertEqual(shared_data_dir(), Path(td).resolve() / "shared-data")
                configured = str(Path(td) / "elsewhere")
                self.assertEqual(shared_data_dir(configured), Path(configured).resolve())
                os.environ["APPVISION_SHARED_DATA"] = str(Path(td) / "env")
                self.assertEqual(shared_data_dir(configured), (Path(td) / "env").resolve())
        finally:
            if old_home is None:
                os.environ.pop("APPVISION_HOME", None)
            else:
                os.environ["APPVISION_HOME"] = old_home
            if old_shared is None:
                os.environ.pop("APPVISION_SHARED_DATA", None)
            else:
                os.environ["APPVISION_SHARED_DATA"] = old_shared


if __name__ == "__main__":
    unittest.main()
