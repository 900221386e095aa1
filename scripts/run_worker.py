#!/usr/bin/env python3
"""
Standalone dispatch worker — for cron or a separate worker service.

Usage:
    python scripts/run_worker.py                 # process one batch and exit
    python scripts/run_worker.py --loop          # keep polling
    python scripts/run_worker.py --loop --interval 30

Each run is independent: all state lives in the job store, so a killed
process can simply be started again.
"""
import asyncio
import os
import sys
import argparse

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog

logger = structlog.get_logger()


async def run(loop: bool = False, interval: int = None) -> int:
    from dotenv import load_dotenv
    load_dotenv()

    from config.settings import load_settings
    settings = load_settings()

    from channels.whatsapp_adapter import WhatsAppCloudClient
    from database.session import close_db, init_db
    from database.store_factory import create_stores
    from job_queue.errors import StorageError
    from job_queue.worker import DispatchWorker

    stores = create_stores({"store_backend": settings.database.store_backend})
    if stores.backend == "sql":
        await init_db()

    provider = WhatsAppCloudClient.from_config(settings.whatsapp)
    worker = DispatchWorker(
        stores.jobs, stores.contacts, provider, settings.dispatch,
        language_code=settings.whatsapp.language_code,
    )
    interval = interval or settings.worker.loop_interval_seconds
    exit_code = 0

    try:
        while True:
            try:
                result = await worker.run_once()
                print(result.model_dump_json())
            except StorageError as e:
                logger.error("worker_run_failed", error=str(e))
                exit_code = 1
            if not loop:
                break
            await asyncio.sleep(interval)
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("worker_stopped")
    finally:
        await provider.close()
        if stores.backend == "sql":
            await close_db()
    return exit_code


def main():
    parser = argparse.ArgumentParser(description="Run the welcome dispatch worker")
    parser.add_argument("--loop", action="store_true", help="Keep polling instead of exiting")
    parser.add_argument("--interval", type=int, default=None, help="Seconds between runs with --loop")
    args = parser.parse_args()

    sys.exit(asyncio.run(run(loop=args.loop, interval=args.interval)))


if __name__ == "__main__":
    main()
