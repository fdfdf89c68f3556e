# catalog_sync/core/lifespan.py
from contextlib import asynccontextmanager
from fastapi import FastAPI
from catalog_sync.core.config import get_settings
from catalog_sync.core.runtime import start_runtime


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    # --- Startup ---
    # The pipeline runs in-process only when enabled; otherwise use `python -m catalog_sync.worker`
    app.state.runtime = await start_runtime(settings, pipeline=settings.PIPELINE_ENABLED)

    # Application runs
    yield

    # --- Shutdown ---
    await app.state.runtime.shutdown()
