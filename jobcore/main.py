from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from jobcore.config.logging import get_logger, setup_logging
from jobcore.config.settings import Settings, settings
from jobcore.infra.database import close_database
from jobcore.v1.core.exceptions import (
    JobCoreException,
    RequestContextMiddleware,
    general_exception_handler,
    http_exception_handler,
    job_core_exception_handler,
    request_validation_exception_handler,
)
from jobcore.v1.healthz import router as health_router
from jobcore.v1.infra.jobs.registry_init import close_pipeline
from jobcore.v1.infra.jobs.routes import router as jobs_router
from jobcore.v1.infra.outbox.routes import router as outbox_router
from jobcore.v1.meetings.routes import router as meetings_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Admin API starting", environment=settings.environment)
    yield
    await close_pipeline()
    await close_database()
    logger.info("Admin API stopped")


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Build the admin API: job, outbox, meeting and health routes under /v1.

    The API only enqueues and inspects work; jobs run in the worker process.
    """
    app_settings = app_settings or settings
    setup_logging()

    docs = app_settings.debug
    app = FastAPI(
        title=app_settings.app_name,
        description="Durable job processing for meeting minutes",
        version=app_settings.version,
        debug=app_settings.debug,
        lifespan=lifespan,
        openapi_url="/v1/openapi.json" if docs else None,
        docs_url="/v1/docs" if docs else None,
        redoc_url=None,
    )

    app.add_middleware(RequestContextMiddleware)
    if app_settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
            expose_headers=["X-Request-ID"],
        )

    app.add_exception_handler(JobCoreException, job_core_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    for router in (health_router, jobs_router, outbox_router, meetings_router):
        app.include_router(router, prefix="/v1")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("jobcore.main:app", host=settings.host, port=settings.port, reload=settings.debug)
