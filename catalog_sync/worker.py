# catalog_sync/worker.py
"""
Standalone projection worker: `python -m catalog_sync.worker`.
Consumes the change log until SIGINT/SIGTERM, then drains in-flight work and exits.
"""
import asyncio
import logging
import signal

from catalog_sync.core.config import get_settings
from catalog_sync.core.logging import configure_logging
from catalog_sync.core.runtime import start_runtime

logger = logging.getLogger(__name__)


async def main() -> None:
    settings = get_settings()
    configure_logging(level=logging.DEBUG if settings.DEBUG else logging.INFO, process="worker")

    runtime = await start_runtime(settings, pipeline=True)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, runtime.stop.set)

    logger.info("worker running; send SIGINT/SIGTERM to stop")
    # also exit when the pipeline ends by itself (leader lock lost, Redis missing)
    stopper = asyncio.create_task(runtime.stop.wait())
    pipeline = [t for t in runtime.tasks if t.get_name() == "pipeline"]
    await asyncio.wait([stopper, *pipeline], return_when=asyncio.FIRST_COMPLETED)
    stopper.cancel()
    await runtime.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
