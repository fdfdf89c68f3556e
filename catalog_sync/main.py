from fastapi import FastAPI
from catalog_sync.core.config import get_settings
from catalog_sync.core.lifespan import lifespan
from catalog_sync.api.v1.routers.health import router as health_router
from catalog_sync.api.v1.routers.currency import router as currency_router
from catalog_sync.api.v1.routers.pipeline import router as pipeline_router
from catalog_sync.api.v1.routers.catalog import router as catalog_router
from catalog_sync.core.logging import configure_logging

import logging

settings = get_settings()
configure_logging(level=logging.DEBUG if settings.DEBUG else logging.INFO)

app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# ------- Routes -------
app.include_router(health_router)
app.include_router(currency_router)          # conversion matrix + convert
app.include_router(pipeline_router)          # operator view of the projection
app.include_router(catalog_router)           # category maintenance
