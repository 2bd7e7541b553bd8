#!/usr/bin/env python3
"""
Offline Sync - command line interface

Usage:
    python -m offline_sync status               # Show queue and connection status
    python -m offline_sync drain                # Drain the pending queue once
    python -m offline_sync full-sync            # Push pending changes, pull remote state
    python -m offline_sync clear                # Drop every pending operation
    python -m offline_sync dead-letters         # List dropped operations
    python -m offline_sync serve                # Run the status API
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from .config import SyncSettings, get_settings
from .connectivity import ConnectivityMonitor, HttpReachabilityProbe
from .coordinator import SyncCoordinator, create_coordinator, sync_session
from .exceptions import SyncError
from .models import EntityType

logger = logging.getLogger("offline_sync")


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def create_probe(settings: SyncSettings, monitor: ConnectivityMonitor) -> HttpReachabilityProbe:
    """Reachability probe configured from settings."""
    return HttpReachabilityProbe(
        monitor,
        settings.probe_url,
        interval=settings.probe_interval,
        timeout=settings.probe_timeout,
        interface=settings.probe_interface,
        is_expensive=settings.probe_expensive,
        is_constrained=settings.probe_constrained,
    )


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


# =============================================================================
# Commands
# =============================================================================

async def _with_coordinator(settings: SyncSettings, action) -> int:
    monitor = ConnectivityMonitor()
    probe = create_probe(settings, monitor)
    try:
        await probe.check_once()
        async with sync_session(settings, connectivity=monitor) as coordinator:
            return await action(coordinator)
    finally:
        await probe.stop()


async def cmd_status(coordinator: SyncCoordinator) -> int:
    _print_json(coordinator.status())
    return 0


async def cmd_drain(coordinator: SyncCoordinator) -> int:
    result = await coordinator.process_pending_queue()
    _print_json(result.to_dict())
    return 0 if result.success else 1


def cmd_full_sync(entity_types: Optional[list[EntityType]]):
    async def run(coordinator: SyncCoordinator) -> int:
        result = await coordinator.perform_full_sync(entity_types)
        _print_json(result.to_dict())
        return 0 if result.success else 1
    return run


async def cmd_clear(coordinator: SyncCoordinator) -> int:
    count = coordinator.clear_pending_queue()
    print(f"Cleared {count} pending operation(s)")
    return 0


def cmd_dead_letters(clear: bool):
    async def run(coordinator: SyncCoordinator) -> int:
        if clear:
            print(f"Cleared {coordinator.clear_dead_letters()} dead letter(s)")
        else:
            _print_json([op.to_dict() for op in coordinator.dead_letters])
        return 0
    return run


def cmd_serve(settings: SyncSettings, host: Optional[str], port: Optional[int]) -> int:
    import uvicorn

    from .api import create_app

    monitor = ConnectivityMonitor()
    coordinator = create_coordinator(settings, connectivity=monitor)
    app = create_app(coordinator, probe=create_probe(settings, monitor))
    uvicorn.run(
        app,
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_level="debug" if settings.debug else "info",
    )
    return 0


def _parse_entity_types(value: str) -> list[EntityType]:
    try:
        return [EntityType(v.strip()) for v in value.split(",") if v.strip()]
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="offline-sync",
        description="Offline sync engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("status", help="Show queue and connection status")
    subparsers.add_parser("drain", help="Drain the pending queue once")

    full = subparsers.add_parser("full-sync", help="Push pending changes and pull remote state")
    full.add_argument(
        "--types",
        type=_parse_entity_types,
        default=None,
        help="Comma-separated entity types to pull (default: all configured)",
    )

    subparsers.add_parser("clear", help="Drop every pending operation")

    dead = subparsers.add_parser("dead-letters", help="List operations that were given up on")
    dead.add_argument("--clear", action="store_true", help="Forget them instead of listing")

    serve = subparsers.add_parser("serve", help="Run the sync status API")
    serve.add_argument("--host", default=None, help="Bind address (default: from settings)")
    serve.add_argument("--port", type=int, default=None, help="Port (default: from settings)")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(args.verbose or settings.debug)

    try:
        if args.command == "serve":
            return cmd_serve(settings, args.host, args.port)

        actions = {
            "status": cmd_status,
            "drain": cmd_drain,
            "full-sync": cmd_full_sync(getattr(args, "types", None)),
            "clear": cmd_clear,
            "dead-letters": cmd_dead_letters(getattr(args, "clear", False)),
        }
        return asyncio.run(_with_coordinator(settings, actions[args.command]))
    except KeyboardInterrupt:
        return 130
    except SyncError as e:
        logger.error(f"Sync failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
