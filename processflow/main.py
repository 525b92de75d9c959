from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from processflow import database
from processflow import models  # noqa: F401
from processflow.core.logging import configure_logging
from processflow.routers.blocks import router as blocks_router
from processflow.routers.paths import router as paths_router
from processflow.routers.workflows import router as workflows_router

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    database.configure_database()
    logger.info("ProcessFlow started", extra={"version": VERSION})
    yield


app = FastAPI(title="ProcessFlow", version=VERSION, lifespan=lifespan)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("Unhandled exception", extra={"method": request.method, "path": request.url.path})
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})

    logger.info(
        "Request handled",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        },
    )
    return response


app.include_router(workflows_router)
app.include_router(paths_router)
app.include_router(blocks_router)


@app.get("/")
def root():
    return {"status": "ProcessFlow running"}


@app.get("/health")
def health():
    db = database.SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        store = "ok"
    except SQLAlchemyError:
        logger.exception("Health check could not reach the database")
        store = "unavailable"
    finally:
        db.close()

    return {"status": "ok" if store == "ok" else "degraded", "database": store, "version": VERSION}
