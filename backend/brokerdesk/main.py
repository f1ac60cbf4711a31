import os
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from brokerdesk.core.config import settings
from brokerdesk.api import commissions, grids, revenue, settlements
from brokerdesk.services.errors import (
    CommissionError, RateNotFoundError, AmbiguousRateError, NegativeShareError,
    InvalidTransitionError, StaleRecordError, StatementParseError,
)

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def init_database():
    """Create tables and seed regulator-wide IRDAI caps on startup."""
    from brokerdesk.core.database import engine, Base, SessionLocal
    import brokerdesk.models  # noqa: F401  register every table
    from brokerdesk.services.compliance import seed_default_caps

    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        seed_default_caps(db)
    except Exception as e:
        logger.error(f"Error seeding IRDAI caps: {e}", exc_info=True)
        db.rollback()
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_database()
    yield


# Disable API docs in production
docs_url = "/docs" if settings.ENVIRONMENT != "production" else None
redoc_url = "/redoc" if settings.ENVIRONMENT != "production" else None

app = FastAPI(
    title=settings.APP_NAME,
    description="Broking commission, revenue and settlement API",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=docs_url,
    redoc_url=redoc_url,
)


# Domain errors -> HTTP status
ERROR_STATUS = {
    RateNotFoundError: 404,
    AmbiguousRateError: 409,
    StaleRecordError: 409,
    InvalidTransitionError: 400,
    NegativeShareError: 422,
    StatementParseError: 400,
}


@app.exception_handler(CommissionError)
async def commission_error_handler(request, exc):
    status_code = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 400)
    content = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, AmbiguousRateError):
        content["entry_ids"] = exc.entry_ids
    return JSONResponse(status_code=status_code, content=content)


# Global exception handler - always return JSON (never plain text)
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error(f"Unhandled exception: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal error: {str(exc)}"},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


# CORS - local dev plus the configured frontend
allowed_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
]
frontend_url = settings.FRONTEND_URL or os.environ.get("FRONTEND_URL", "")
if frontend_url and frontend_url not in allowed_origins:
    allowed_origins.append(frontend_url)
    if not frontend_url.startswith("https"):
        allowed_origins.append(frontend_url.replace("http://", "https://"))

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "broking-commission-core", "version": "1.0.0"}


@app.get("/")
def root():
    return {"message": settings.APP_NAME, "version": "1.0.0", "docs": docs_url}


# Include routers
app.include_router(commissions.router)
app.include_router(grids.router)
app.include_router(revenue.router)
app.include_router(settlements.router)
