import os
import logging
from urllib.parse import urlparse
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from civic_reports.api import report, internal  # routers
from civic_reports.api.errors import civic_error_handler
from civic_reports.config import settings
from civic_reports.exceptions import CivicReportError
from civic_reports.utils.db import create_tables

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger("civic_reports")

app = FastAPI(
    title="Civic Reports API",
    description="Citizen issue reports with duplicate detection and merging",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ALLOW_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(CivicReportError, civic_error_handler)

app.include_router(report.router, prefix="/api/reports", tags=["Reports"])
app.include_router(internal.router, prefix="/internal/dedupe", tags=["Internal"])

# Local storage backend: uploaded images are served by the API itself
if settings.STORAGE_BACKEND == "local":
    os.makedirs(settings.LOCAL_UPLOAD_DIR, exist_ok=True)
    app.mount(
        urlparse(settings.LOCAL_UPLOAD_URL).path.rstrip("/") or "/uploads",
        StaticFiles(directory=settings.LOCAL_UPLOAD_DIR),
        name="uploads"
    )


# Create tables on first start
@app.on_event("startup")
def startup_event():
    create_tables()
    logger.info("Service started (env=%s, dedup policy=%s, radius=%sm)",
                settings.ENV, settings.DEDUP_POLICY, settings.DEDUP_RADIUS_METERS)


@app.get("/", tags=["Health"])
def read_root():
    return {"message": "Civic Reports API is running"}
