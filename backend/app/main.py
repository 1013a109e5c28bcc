from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
import asyncio
import logging
import os

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

from app.database import engine, Base, SessionLocal
from app.db_helpers import (
    clear_request_user_id,
    extract_session_token,
    resolve_session_user_id,
    set_request_user_id,
)
from app.errors import BudgetError
from app.routes import api_router, realtime_router
from app.services.event_publisher import ConnectionManager, EventPublisher

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "y", "on")


def _get_cors_origins() -> list[str]:
    """
    Determine allowed CORS origins.

    If CORS_ALLOW_ORIGINS is not set, APP_URL/FRONTEND_URL is used.
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS")
    if raw:
        origins = [o.strip() for o in raw.split(",") if o.strip()]
        if origins:
            return origins

    frontend_url = os.getenv("FRONTEND_URL") or os.getenv("APP_URL")
    if frontend_url:
        return [frontend_url]

    return ["http://localhost:5173"]


# Guarded dev helper (prefer running migrations)
if _env_bool("AUTO_CREATE_TABLES", default=False):
    logger.warning("AUTO_CREATE_TABLES is enabled; creating tables via SQLAlchemy metadata.")
    Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    publisher: EventPublisher = app.state.event_publisher
    relay_task = None
    if publisher.backend == "redis":
        relay_task = asyncio.create_task(publisher.relay_from_redis())
    try:
        yield
    finally:
        if relay_task is not None:
            relay_task.cancel()
            try:
                await relay_task
            except asyncio.CancelledError:
                pass
        publisher.close()


app = FastAPI(
    title="Daily Budget API",
    description="API for personal budgeting with a derived daily spending allowance",
    version="0.1.0",
    docs_url="/docs" if _env_bool("API_DOCS_ENABLED", default=False) else None,
    redoc_url="/redoc" if _env_bool("API_DOCS_ENABLED", default=False) else None,
    openapi_url="/openapi.json" if _env_bool("API_DOCS_ENABLED", default=False) else None,
    lifespan=lifespan,
)

app.state.connections = ConnectionManager()
app.state.event_publisher = EventPublisher(app.state.connections)


UNPROTECTED_API_PATHS = {"/api/auth/register", "/api/auth/login"}


def _resolve_user(token):
    db = SessionLocal()
    try:
        return resolve_session_user_id(db, token)
    finally:
        db.close()


@app.middleware("http")
async def session_auth_middleware(request: Request, call_next):
    path = request.url.path
    if (
        request.method == "OPTIONS"
        or not path.startswith("/api/")
        or path in UNPROTECTED_API_PATHS
    ):
        return await call_next(request)

    token = extract_session_token(request.headers, request.cookies)
    try:
        request_user_id = await run_in_threadpool(_resolve_user, token)
    except Exception:
        logger.exception("Unexpected session lookup error")
        return JSONResponse(
            status_code=500,
            content={"detail": "Authentication failure."},
        )

    if not request_user_id:
        return JSONResponse(
            status_code=401,
            content={"detail": "Authentication required."},
        )

    context_token = set_request_user_id(request_user_id)
    try:
        response = await call_next(request)
    finally:
        clear_request_user_id(context_token)

    return response


@app.exception_handler(BudgetError)
async def budget_error_handler(request: Request, exc: BudgetError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=_get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api")
app.include_router(realtime_router)


@app.get("/")
def root():
    payload = {"message": "Daily Budget API"}
    if _env_bool("API_DOCS_ENABLED", default=False):
        payload["docs"] = "/docs"
    return payload


@app.get("/health")
def health():
    return {"status": "healthy"}
