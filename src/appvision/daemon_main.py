from __future__ import annotations

import argparse
import asyncio
import json
from typing import Optional

from .daemon.server import build_runtime, read_pid, serve_forever
from .kernel.settings import load_settings, set_target_app
from .paths import default_daemon_paths
from .ports.capture import CaptureError
from .util.obslog import setup_root_json_logging


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="appvisiond", description="appvision interactive-side process")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("run", help="Run in foreground (heartbeat, capture requests, suggestions)")
    sub.add_parser("status", help="Liveness as seen by the command server")
    p_select = sub.add_parser("select", help="Select the capture target ('fullscreen' clears it)")
    p_select.add_argument("name", help="Application name or 'screen N'")
    p_capture = sub.add_parser("capture", help="Manual capture into the manual slot")
    p_capture.add_argument("--target", default=None, help="Override the selected target for this capture")

    args = parser.parse_args(argv)
    paths = default_daemon_paths()
    settings = load_settings(paths.home)
    setup_root_json_logging(component="appvisiond", level=settings.log_level)

    if args.cmd == "run":
        return int(serve_forever(paths))

    if args.cmd == "status":
        runtime = build_runtime(paths)
        alive = runtime.liveness.is_alive()
        age = runtime.liveness.age_s()
        print(json.dumps({
            "alive": alive,
            "heartbeat_age_s": None if age is None else round(age, 3),
            "pid": read_pid(paths),
            "shared_data_dir": str(runtime.shared.root),
            "target_app": settings.target_app,
        }, ensure_ascii=False))
        return 0 if alive else 1

    if args.cmd == "select":
        set_target_app(args.name, paths.home)
        print(f"appvisiond: target set to {args.name!r}")
        return 0

    if args.cmd == "capture":
        runtime = build_runtime(paths)
        runtime.startup()
        try:
            metadata = asyncio.run(runtime.manual_capture(args.target))
        except CaptureError as e:
            print(f"appvisiond: capture failed: {e}")
            return 1
        print(json.dumps(metadata.model_dump(by_alias=True, exclude_none=True), ensure_ascii=False))
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main())
