import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import text
from slowapi.errors import RateLimitExceeded

from . import __version__
from .api import create_api_routes
from .auth import router as auth_router
from .database import create_db_and_tables, get_engine
from .drivers import get_driver_registry
from .errors import HubPanelError
from .init_db import init_db
from .logging_config import setup_logging
from .middleware import AuthenticationMiddleware, RequestLoggingMiddleware
from .rate_limiter import limiter, custom_rate_limit_exceeded_handler

# Apply the JSON logging configuration at the earliest point
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # This code runs on server startup
    logging.info("--- HubPanel Starting Up ---")
    create_db_and_tables()
    # Initialize the database with default data (admin user)
    init_db()

    yield
    # This code runs on server shutdown
    logging.info("--- HubPanel Shutting Down ---")
    get_driver_registry().close_all()


# --- Application Initialization ---
app = FastAPI(
    title="HubPanel",
    description="Web console for administering PostgreSQL, MySQL, MariaDB and Supabase databases.",
    version=__version__,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

# Add CORS middleware to allow cross-origin requests from the web client
origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Add authentication middleware (innermost, sets request.state.username)
app.add_middleware(AuthenticationMiddleware)

# Add request logging middleware
app.add_middleware(RequestLoggingMiddleware)

# Login and connection tests are rate limited per user or client IP.
# Limits are configured via RATE_LIMIT_LOGIN and RATE_LIMIT_CONNECTION_TEST.
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, custom_rate_limit_exceeded_handler)


# --- Error Handlers ---

@app.exception_handler(HubPanelError)
async def hubpanel_error_handler(request: Request, exc: HubPanelError):
    if exc.status_code >= 500:
        logging.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logging.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# --- Routers ---

app.include_router(create_api_routes())
app.include_router(auth_router)


# --- Root Endpoints ---

@app.get("/", tags=["Root"])
async def read_root():
    """
    A simple root endpoint to confirm the server is running.
    """
    return {"message": "Welcome to HubPanel"}


@app.get("/health", tags=["Health"])
def health_check():
    """
    Liveness check against the metadata database only, never the managed ones.
    """
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        database_status = "connected"
    except Exception as e:
        logging.error(f"Health check failed: {e}")
        database_status = "unavailable"

    status_code = 200 if database_status == "connected" else 503
    return JSONResponse(
        status_code=status_code,
        content={"status": "healthy" if status_code == 200 else "unhealthy", "database": database_status},
    )
