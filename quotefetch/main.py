from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from quotefetch.api.routes import router
from quotefetch.config.settings import get_settings
from quotefetch.services.events import RecentEventLog
from quotefetch.services.quote_service import QuoteService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = app.state.quote_service
    if service is None:
        # NOTE: built lazily so app import does not require env during tests.
        service = QuoteService(app.state.get_settings())
        app.state.quote_service = service
    app.state.event_log.attach(service.events)
    logger.info("[QUOTE][service_start] provider=%s", service.settings.name)

    try:
        yield
    finally:
        service.shutdown()
        logger.info("[QUOTE][service_stop] pending=%s", service.pending_count)


app = FastAPI(title="Quote Fetcher", version="0.1.0", lifespan=lifespan)
app.include_router(router, prefix="/v1")

app.state.get_settings = get_settings
app.state.quote_service = None
app.state.event_log = RecentEventLog()
