from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from teamspace.api.routes import router as api_router
from teamspace.core.config import get_settings
from teamspace.core.events import Channel, InternalEvent, event_bus
from teamspace.logging import configure_logging
from teamspace.middleware.correlation_id import CorrelationIdMiddleware
from teamspace.middleware.request_logging import RequestLoggingMiddleware
from teamspace.otel import get_fastapi_server_request_hook, setup_otel
from teamspace.workspace.api import register_error_handlers


settings = get_settings()
configure_logging(settings.log_level, settings.otel_service_name)
logger = logging.getLogger("teamspace.lifecycle")
_subscriptions = []


def _on_workspace_change(event: InternalEvent) -> None:
    logger.debug("workspace.changed", extra={"channel": event.channel.value})


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not _subscriptions:
        for channel in Channel:
            _subscriptions.append(event_bus.subscribe(channel, _on_workspace_change))
    logger.info("system.started")
    try:
        yield
    finally:
        service = getattr(app.state, "workspace_service", None)
        if service is not None:
            await service.context.aclose()
        logger.info("system.stopped")


app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)
register_error_handlers(app)

if settings.otel_enabled:
    setup_otel(settings)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
