import asyncio
import logging
import time
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

# Load environment variables from .env file before anything else
load_dotenv()

from telecare.core.config import settings
from telecare.core.logging import setup_logging, request_id_ctx
from telecare.core.db import Database
from telecare.core.errors import DomainError
from telecare.api.router import api_router
from telecare.modules.events.outbox import run_outbox_relay
from telecare.modules.reminders.service import run_reminder_loop
from telecare.platform.provider_registry import registry

setup_logging()
app = FastAPI(title=settings.APP_NAME)

logger = logging.getLogger(__name__)

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id", "-")
    request_id_ctx.set(rid)
    response = await call_next(request)
    return response

@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000
    logger.info(
        f"Request: {request.method} {request.url.path} - Response: {response.status_code} - Time: {process_time:.2f}ms"
    )
    return response

@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    if exc.retryable:
        logger.warning(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": exc.code, "message": exc.message, "details": exc.details},
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.critical(f"Unhandled exception for request {request.method} {request.url.path}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"message": "An internal server error occurred."},
    )

async def _stop(task: asyncio.Task | None):
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass

@app.on_event("startup")
async def on_startup():
    app.state.db = Database(settings.POSTGRES_DSN)
    await app.state.db.init()
    app.state.outbox_task = asyncio.create_task(run_outbox_relay(app.state.db))
    app.state.reminder_task = None
    if settings.REMINDER_SCAN_ENABLED:
        app.state.reminder_task = asyncio.create_task(run_reminder_loop(app.state.db, settings.REMINDER_SCAN_INTERVAL_SECONDS))

@app.on_event("shutdown")
async def on_shutdown():
    await _stop(getattr(app.state, "reminder_task", None))
    await _stop(getattr(app.state, "outbox_task", None))
    await registry.event_bus().close()
    db = getattr(app.state, "db", None)
    if db is not None:
        await db.close()


app.include_router(api_router, prefix=settings.API_PREFIX)
