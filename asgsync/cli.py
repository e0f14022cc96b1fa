from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from threading import Event
from types import FrameType

from . import __version__, db
from .config import AppConfig, load_config
from .errors import ConfigError, ProviderError
from .gateway import NginxGateway
from .providers import CloudProvider, create_provider
from .reconciler import Reconciler
from .runtime import RuntimeState
from .settings import settings

logger = logging.getLogger("asgsync")


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def setup_logging(level_name: str, log_file: str | None = None) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # Per-request lines from the SDKs drown out the sync log.
    for noisy in ("botocore", "azure", "httpx", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def build(config: AppConfig, dry_run: bool = False) -> tuple[CloudProvider, NginxGateway, Reconciler]:
    provider = create_provider(config)
    gateway = NginxGateway(
        config.common.api_endpoint,
        custom_headers=config.common.custom_headers,
        api_version=config.common.api_version,
        timeout_s=settings.api_timeout_s,
    )
    reconciler = Reconciler(
        provider,
        gateway,
        runtime=RuntimeState(),
        interval_s=config.common.sync_interval,
        dry_run=dry_run or settings.dry_run,
    )
    return provider, gateway, reconciler


def _cmd_run(args: argparse.Namespace, config: AppConfig) -> int:
    _, gateway, reconciler = build(config, dry_run=args.dry_run)
    db.init_db()

    stopped = Event()

    def _shutdown(signum: int, frame: FrameType | None) -> None:
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        stopped.set()

    reconciler.start()
    try:
        if args.status_port:
            import uvicorn

            from .api import create_app

            # uvicorn installs its own SIGINT/SIGTERM handlers and returns on shutdown.
            uvicorn.run(create_app(reconciler), host=args.status_host, port=args.status_port, log_level="warning")
        else:
            signal.signal(signal.SIGTERM, _shutdown)
            signal.signal(signal.SIGINT, _shutdown)
            stopped.wait()
    finally:
        reconciler.stop(timeout=settings.api_timeout_s * 2)
        gateway.close()
    return 0


def _cmd_once(args: argparse.Namespace, config: AppConfig) -> int:
    _, gateway, reconciler = build(config, dry_run=args.dry_run)
    db.init_db()
    with gateway:
        results = reconciler.run_once()
    _print([r.to_dict() for r in results])
    return 0 if all(r.ok for r in results) else 1


def _cmd_validate(args: argparse.Namespace, config: AppConfig) -> int:
    provider = create_provider(config)
    report = []
    rc = 0
    for u in provider.list_upstreams():
        entry = {"upstream": u.name, "kind": u.kind, "scaling_group": u.scaling_group}
        try:
            entry["exists"] = provider.group_exists(u.scaling_group)
        except ProviderError as e:
            entry["error"] = str(e)
            rc = 1
        if entry.get("exists") is False:
            logger.warning("Scaling group %s of upstream %s doesn't exist", u.scaling_group, u.name)
        report.append(entry)
    _print(report)
    return rc


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="asgsync", description="Sync NGINX Plus upstreams with cloud scaling groups")
    p.add_argument("--config_path", default=settings.config_path, help="Path to the config file")
    p.add_argument("--log_path", default=None, help="Also write the log to this file")
    p.add_argument("--log-level", default=settings.log_level)
    sub = p.add_subparsers(dest="cmd", required=True)

    s_run = sub.add_parser("run", help="Run the sync loop")
    s_run.add_argument("--status-port", type=int, default=0, help="Serve the status API on this port")
    s_run.add_argument("--status-host", default="127.0.0.1")
    s_run.add_argument("--dry-run", action="store_true", help="Log changes without applying them")

    s_once = sub.add_parser("once", help="Run a single sync pass and print the results")
    s_once.add_argument("--dry-run", action="store_true", help="Log changes without applying them")

    sub.add_parser("validate", help="Validate the config and check that every scaling group exists")

    s_ev = sub.add_parser("events", help="Show the event journal")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--upstream", default=None)

    sub.add_parser("version", help="Print the version")

    args = p.parse_args(argv)

    if args.cmd == "version":
        print(__version__)
        return 0

    if args.cmd == "events":
        _print(db.latest_events(limit=args.limit, upstream=args.upstream))
        return 0

    setup_logging(args.log_level, args.log_path)

    try:
        config = load_config(args.config_path)
        if args.cmd == "run":
            return _cmd_run(args, config)
        if args.cmd == "once":
            return _cmd_once(args, config)
        if args.cmd == "validate":
            return _cmd_validate(args, config)
    except ConfigError as e:
        logger.error("%s", e)
        return 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
