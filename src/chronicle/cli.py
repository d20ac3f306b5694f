"""
CLI entry point.

Commands:
- init: Create the data directory and database schema
- compress [days]: Fold aged events into episodes for every entity
- context <entity_id>: Print the assembled context bundle as JSON
- purge: Delete expired memories and response cache rows
- maintain: Run compression and cache cleanup on an interval until stopped

Flags:
- --debug: Enable debug logging to file
"""

import asyncio
import json
import logging
import signal
import sys
from datetime import timedelta

from chronicle.core.config import Settings, get_settings
from chronicle.core.logging import get_logger, setup_logging
from chronicle.core.scheduler import MaintenanceScheduler
from chronicle.core.service import NarrativeMemoryService

USAGE = """Usage: chronicle [--debug] <command>
Commands: init, compress [days], context <entity_id>, purge, maintain
Flags: --debug (enable debug logging to data/chronicle.log)"""


def main() -> int:
    """Main entry point."""
    settings = get_settings()

    # Parse --debug flag (enables verbose DEBUG traces)
    debug_mode = "--debug" in sys.argv
    if debug_mode:
        sys.argv.remove("--debug")

    log_level = logging.DEBUG if debug_mode else logging.INFO
    log_file = settings.data_dir / "chronicle.log"
    setup_logging(level=log_level, log_file=log_file)
    logger = get_logger("cli")

    logger.info(f"Logging to {log_file}" + (" (debug mode)" if debug_mode else ""))

    if len(sys.argv) < 2:
        print(USAGE)
        return 1

    command, args = sys.argv[1], sys.argv[2:]

    if command == "init":
        return asyncio.run(_init(settings))

    if command == "compress":
        try:
            days = float(args[0]) if args else None
        except ValueError:
            print(f"Invalid number of days: {args[0]}")
            return 1
        return asyncio.run(_compress(settings, days))

    if command == "context":
        if not args or not args[0].isdigit():
            print("Usage: chronicle context <entity_id>")
            return 1
        return asyncio.run(_context(settings, int(args[0])))

    if command == "purge":
        return asyncio.run(_purge(settings))

    if command == "maintain":
        return asyncio.run(_maintain(settings))

    print(f"Unknown command: {command}")
    return 1


async def _init(settings: Settings) -> int:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    async with NarrativeMemoryService(settings):
        pass
    print(f"Initialized: {settings.db_path}")
    return 0


async def _compress(settings: Settings, days: float | None) -> int:
    async with NarrativeMemoryService.from_settings(settings) as service:
        created = await service.compress_all_aged(days)
    print(f"Created {created} episode(s)")
    return 0


async def _context(settings: Settings, entity_id: int) -> int:
    async with NarrativeMemoryService(settings) as service:
        bundle = await service.assemble_context(entity_id)
    print(json.dumps(bundle.to_dict(), indent=2, ensure_ascii=False))
    return 0


async def _purge(settings: Settings) -> int:
    async with NarrativeMemoryService(settings) as service:
        memories = await service.purge_expired_memories()
        purged = await service.purge_expired_cache()
    print(f"Purged {memories} expired memory row(s), {purged} expired cache row(s)")
    return 0


async def _maintain(settings: Settings) -> int:
    """Run background maintenance until SIGINT/SIGTERM."""
    logger = get_logger("cli.maintain")
    shutdown = asyncio.Event()

    def handle_shutdown_signal(signum: int, frame: object | None) -> None:
        sig_name = signal.Signals(signum).name
        logger.info(f"Received {sig_name}, initiating graceful shutdown")
        shutdown.set()

    signal.signal(signal.SIGINT, handle_shutdown_signal)
    signal.signal(signal.SIGTERM, handle_shutdown_signal)

    scheduler = MaintenanceScheduler()
    async with NarrativeMemoryService.from_settings(settings) as service:
        scheduler.schedule_maintenance(
            service, timedelta(minutes=settings.maintenance_interval_minutes)
        )
        await scheduler.start()
        print("Maintenance running. Press Ctrl+C to stop.")
        try:
            while not shutdown.is_set():
                await asyncio.sleep(0.5)
        finally:
            await scheduler.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
