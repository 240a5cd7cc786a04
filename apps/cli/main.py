from __future__ import annotations

import argparse
import os
import signal
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from pydantic import ValidationError

from cmdwatch.core.errors import ConfigError, DetectionError
from cmdwatch.core.logging_ import setup_logging
from cmdwatch.core.watch.watcher import Watcher
from cmdwatch.shared.config import WatchConfig, describe_validation_error
from cmdwatch.shared.paths import log_path
from cmdwatch.shared.store import ConfigStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cmdwatch",
        description="Watches a directory tree and re-runs a shell command when matching files change",
    )
    parser.add_argument("--dir", default="./", help="directory to watch (default: current directory)")
    parser.add_argument("--cmd", default="", help="shell command to run")
    parser.add_argument("--only", default=None, help="regex matched against file paths (default: .*)")
    parser.add_argument("--interval", type=float, default=None, help="poll interval in seconds (default: 1)")
    parser.add_argument("--quiet", type=float, default=None, help="seconds to ignore changes after a restart (default: 3)")
    parser.add_argument("--shell", default=None, help="shell used to run the command (default: sh)")
    parser.add_argument("--config", type=Path, default=None, help="JSON config file with default settings")
    parser.add_argument("--strict", action="store_true", help="exit when a poll cycle cannot read the tree")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument("--no-log-file", action="store_true", help="log to the console only")
    return parser


def resolve_root(raw: str) -> Path:
    path = Path(raw)
    if not path.is_absolute():
        path = Path(os.getcwd()) / path
    path = Path(os.path.abspath(path))
    if not path.is_dir():
        raise ConfigError(f"{path} is not a directory")
    return path


def load_config(args: argparse.Namespace) -> WatchConfig:
    settings = ConfigStore(args.config).load()

    overrides: dict[str, Any] = {}
    if args.only is not None:
        overrides["only"] = args.only
    if args.interval is not None:
        overrides["poll_interval_s"] = args.interval
    if args.quiet is not None:
        overrides["quiet_period_s"] = args.quiet
    if args.shell is not None:
        overrides["shell"] = args.shell
    if args.strict:
        overrides["fail_on_detect_error"] = True
    if args.verbose:
        overrides["log_level"] = "DEBUG"
    if args.no_log_file:
        overrides["log_to_file"] = False

    try:
        return WatchConfig.from_settings(settings, resolve_root(args.dir), args.cmd, **overrides)
    except ValidationError as e:
        raise ConfigError(describe_validation_error(e)) from e


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.dir or not args.cmd:
        print("Both --dir and --cmd flags are required.")
        parser.print_usage()
        return 1

    try:
        cfg = load_config(args)
        setup_logging(cfg.log_level, log_path() if cfg.log_to_file else None)
    except ConfigError as e:
        print(e)
        return 1
    except OSError as e:
        print(f"Cannot open log file: {e}")
        return 1

    watcher = Watcher(cfg)

    def signal_handler(sig, frame):
        print(f"Received signal: {signal.Signals(sig).name}. Exiting...")
        watcher.stop()

    signal.signal(signal.SIGINT, signal_handler)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, signal_handler)

    try:
        watcher.run()
    except DetectionError:
        # already logged by the watcher
        return 1

    print("Program terminated.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
