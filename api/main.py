from contextlib import asynccontextmanager, closing
import logging
import os
import sys

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from dotenv import load_dotenv

# Ensure project root on sys.path BEFORE importing top-level packages
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.logging_config import setup_logging
from app.settings import settings
from app.infra.sqlite_utils import open_connection
from db import init_db_with_migrations

# Load environment from project root .env explicitly (service cwd may be api/)
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
load_dotenv(os.path.join(project_root, ".env"))

setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Validate configuration at startup (log-only, do not crash the API)
    startup_validation = settings.validate_startup()
    for err in startup_validation["errors"]:
        logger.error(f"Config error: {err}")
    for warn in startup_validation["warnings"]:
        logger.warning(f"Config warning: {warn}")

    init_db_with_migrations(settings.DATABASE_PATH)
    yield


app = FastAPI(title="Billing API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS or [],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

from api.routes import auth_router, payments_router, users_router

app.include_router(auth_router)
app.include_router(payments_router)
app.include_router(users_router)

from api.middleware.error_handler import (
    global_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)

app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)


@app.get("/health", tags=["health"])
async def health_check():
    try:
        with closing(open_connection(settings.DATABASE_PATH)) as conn:
            conn.execute("SELECT 1")
        return JSONResponse({"status": "ok"})
    except Exception as exc:  # pragma: no cover - diagnostic route
        logger.exception("Health check failed: %s", exc)
        return JSONResponse({"status": "error", "detail": str(exc)}, status_code=503)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
