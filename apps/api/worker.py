"""Standalone generation worker: polls queued jobs on a fixed interval."""

import asyncio
import logging

from config import settings
from services.dispatcher import run_dispatch_loop
from services.runtime import build_runtime

logger = logging.getLogger(__name__)


async def run_worker() -> None:
    runtime = build_runtime()
    try:
        recovered = await runtime.dispatcher.recover_stalled(settings.GENERATION_STALL_MINUTES)
        if recovered:
            logger.info("Recovered %s stalled generations after startup", recovered)
        await run_dispatch_loop(runtime.dispatcher, settings.GENERATION_WORKER_INTERVAL_SECONDS)
    finally:
        await runtime.aclose()


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
