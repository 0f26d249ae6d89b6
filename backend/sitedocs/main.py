import logging
import sqlite3
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sitedocs.config import settings
from sitedocs.errors import AggregateUnavailable, SiteDocsError
from sitedocs.observability import counters
from sitedocs.routers import attachments, calendar, documents, files, metrics, requirements, submissions

logger = logging.getLogger("sitedocs")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # Startup: create and integrity-check the database
    try:
        from sitedocs.database import init_db
        init_db(settings.db_path)
        conn = sqlite3.connect(str(settings.db_path))
        result = conn.execute("PRAGMA integrity_check").fetchone()
        conn.close()
        if result and result[0] == "ok":
            logger.info("Database integrity check passed.")
        else:
            logger.error("DATABASE INTEGRITY CHECK FAILED: %s", result)
    except Exception as exc:
        logger.error("Could not run startup schema/integrity check: %s", exc)
    yield


app = FastAPI(
    title="SiteDocs",
    description="Site document compliance and access-scoped document aggregation",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SiteDocsError)
async def sitedocs_error_handler(request: Request, exc: SiteDocsError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    body = {"detail": exc.message}
    if isinstance(exc, AggregateUnavailable):
        body["failures"] = [{"source": f.source, "reason": f.reason} for f in exc.failures]
    return JSONResponse(status_code=exc.status_code, content=body)


app.include_router(requirements.router, prefix=settings.api_prefix)
app.include_router(requirements.admin_router, prefix=settings.api_prefix)
app.include_router(submissions.router, prefix=settings.api_prefix)
app.include_router(calendar.router, prefix=settings.api_prefix)
app.include_router(documents.router, prefix=settings.api_prefix)
app.include_router(attachments.router, prefix=settings.api_prefix)
app.include_router(metrics.router, prefix=settings.api_prefix)
app.include_router(files.router)


@app.get("/health")
async def health():
    return {"status": "ok", "version": "0.1.0", "counters": counters.snapshot()}
