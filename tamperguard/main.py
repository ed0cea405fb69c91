#!/usr/bin/env python3
"""
TamperGuard - CLI entry point.

Exposed as the 'tamperguard' console command via pyproject.toml.
One process monitors one root:  tamperguard monitor /etc
"""

import argparse
import logging
import signal
import sys
from pathlib import Path

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def setup_logging(level_name: str = "info", verbose: bool = False) -> None:
    """Configure diagnostic logging to stderr (stdout carries the audit trail)."""
    level = logging.DEBUG if verbose else _LOG_LEVELS.get(level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
        force=True,
    )


def resolve_root(args: argparse.Namespace) -> str:
    from tamperguard.core.monitor import decode_instance_name, normalize_root

    if args.instance:
        return decode_instance_name(args.watch_dir)
    return normalize_root(args.watch_dir)


def cmd_init_baseline(config, root: str) -> None:
    """Record the current state of root as the baseline and exit."""
    from tamperguard.core.alerts import AuditLog
    from tamperguard.core.monitor import TamperMonitor, service_id_for
    from tamperguard.core.notifier import DispatchSettings, NotificationDispatcher

    dispatcher = NotificationDispatcher(
        AuditLog(service_id_for(root), log_format=config.log_format),
        DispatchSettings(alerts_enabled=False),
    )
    monitor = TamperMonitor(config, root, dispatcher=dispatcher)
    count = monitor.establish_baseline()
    monitor.store.close()
    logging.getLogger(__name__).info("Baseline saved for %s (%d files)", root, count)


def cmd_monitor(config, root: str) -> None:
    """Run the monitor with graceful shutdown on SIGINT/SIGTERM."""
    from tamperguard.core.monitor import TamperMonitor

    shutdown = {"stop": False}

    def stop_event() -> bool:
        return shutdown["stop"]

    def on_signal(_signum, _frame) -> None:
        shutdown["stop"] = True

    signal.signal(signal.SIGINT, on_signal)
    signal.signal(signal.SIGTERM, on_signal)

    monitor = TamperMonitor(config, root, stop_event=stop_event)
    monitor.run()


def _add_common_args(parser: argparse.ArgumentParser, default_config: str) -> None:
    """Add --config so it works after the subcommand (e.g. tamperguard monitor -c x.yml /etc)."""
    parser.add_argument(
        "-c",
        "--config",
        type=str,
        default=default_config,
        help="Path to config.yml (default: %(default)s)",
    )
    parser.add_argument(
        "--instance",
        action="store_true",
        help="Treat WATCH_DIR as a service instance name (etc_ssh -> /etc/ssh)",
    )
    parser.add_argument("watch_dir", metavar="WATCH_DIR", help="Directory to monitor")


def build_parser() -> argparse.ArgumentParser:
    from tamperguard.core.config_loader import DEFAULT_CONFIG_PATH

    default_config = str(DEFAULT_CONFIG_PATH)
    parser = argparse.ArgumentParser(
        prog="tamperguard",
        description="File tampering detection - verify watched paths against known-good digests.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_monitor = sub.add_parser("monitor", help="Start continuous monitoring of WATCH_DIR")
    _add_common_args(p_monitor, default_config)

    p_init = sub.add_parser("init-baseline", help="Record the current state of WATCH_DIR and exit")
    _add_common_args(p_init, default_config)
    return parser


def main(argv=None) -> int:
    """CLI logic."""
    from tamperguard.core.config_loader import load_config
    from tamperguard.core.hash_store import StoreError

    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)
    log = logging.getLogger(__name__)

    try:
        root = resolve_root(args)
    except ValueError as e:
        log.error("%s", e)
        return 1

    config = load_config(Path(args.config))
    setup_logging(config.log_level, verbose=args.verbose)

    try:
        if args.command == "init-baseline":
            cmd_init_baseline(config, root)
        elif args.command == "monitor":
            cmd_monitor(config, root)
    except StoreError as e:
        log.critical("Hash store unusable, terminating: %s", e)
        return 1
    except OSError as e:
        log.error("Cannot monitor %s: %s", root, e)
        return 1
    return 0


def cli() -> None:
    """Entry point for the tamperguard console command."""
    sys.exit(main())


if __name__ == "__main__":
    cli()
