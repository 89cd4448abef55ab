"""
FastAPI application for the family panel.

Wires the credential store, token authority, session issuer and policy
engine onto `app.state` at startup, puts the route guard in front of every
route, and maps the auth error taxonomy onto HTTP responses.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from familypanel.api.household import get_row_storage
from familypanel.api.household import router as household_router
from familypanel.auth import (
    HOUSEHOLD_POLICIES,
    AuthContext,
    AuthError,
    CredentialStore,
    PolicyEngine,
    SessionIssuer,
    TokenAuthority,
    auth_router,
    login_router,
    require_auth,
)
from familypanel.auth.guard import RouteGuard
from familypanel.config import ConfigurationError, Settings, get_settings
from familypanel.core.models import ChoreAssignment, PrincipalResponse
from familypanel.integrations.sentry import capture_exception, init_sentry
from familypanel.seed import seed_household
from familypanel.storage import Collections, StorageProvider, create_local_storage
from familypanel.storage.filtered import RowFilteredStorage

logger = logging.getLogger(__name__)


# =============================================================================
# Lifespan
# =============================================================================


def build_services(app: FastAPI, settings: Settings, storage: StorageProvider) -> None:
    """Everything a request needs, on app.state."""
    credentials = CredentialStore(storage.metadata, timeout=settings.store_timeout_seconds)
    authority = TokenAuthority(storage.cache, credentials, settings)

    app.state.settings = settings
    app.state.storage = storage
    app.state.credentials = credentials
    app.state.authority = authority if settings.auth_configured else None
    app.state.sessions = SessionIssuer(credentials, authority, settings)
    app.state.policies = PolicyEngine(HOUSEHOLD_POLICIES)


def create_app(
    settings: Settings | None = None,
    storage: StorageProvider | None = None,
) -> FastAPI:
    """
    Build the API.

    Tests pass their own settings and a pre-filled storage; the default is
    the environment's settings and a fresh in-memory store.
    """
    settings = settings or get_settings()

    errors = settings.production_errors()
    if errors:
        raise ConfigurationError("Refusing to start in production: " + "; ".join(errors))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize and cleanup app resources."""
        if init_sentry(settings):
            logger.info("Sentry error tracking enabled")

        fresh = storage is None
        build_services(app, settings, storage or create_local_storage())

        if fresh and settings.should_seed:
            await seed_household(app.state.credentials, app.state.storage.metadata)
        elif settings.seed_demo_household and settings.is_production:
            logger.warning("SEED_DEMO_HOUSEHOLD ignored in production")

        if not settings.auth_configured:
            logger.warning("JWT_SECRET_KEY is empty; sessions cannot be issued or checked")

        logger.info(f"Family panel API starting in {settings.environment} mode")
        yield
        logger.info("Family panel API shutting down")

    app = FastAPI(
        title="Family Panel API",
        description="Household chores with parent and kid sign-in",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(RouteGuard, settings=settings)
    # Outermost, so preflight requests never reach the guard
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(login_router)
    app.include_router(auth_router)
    app.include_router(household_router)
    app.include_router(pages_router)

    return app


# =============================================================================
# Error handling
# =============================================================================


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.detail}")
        else:
            logger.info(f"{exc.status_code} {exc.code} on {request.url.path}: {exc.detail}")
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = [".".join(str(part) for part in error["loc"]) for error in exc.errors()]
        return JSONResponse(
            {"error": "Invalid request", "code": "invalid_request", "fields": fields},
            status_code=400,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            {"error": exc.detail, "code": f"http_{exc.status_code}"},
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled exception on {request.url.path}")
        capture_exception(exc, path=request.url.path)
        return JSONResponse(
            {"error": "Something went wrong, please try again", "code": "internal_error"},
            status_code=500,
        )


# =============================================================================
# Pages
# =============================================================================


pages_router = APIRouter(tags=["pages"])


@pages_router.get("/")
async def home(request: Request):
    return {"service": "family-panel", "login": request.app.state.settings.login_path}


@pages_router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "family-panel-api"}


@pages_router.get("/dashboard")
async def dashboard(
    ctx: AuthContext = Depends(require_auth()),
    data: RowFilteredStorage = Depends(get_row_storage),
):
    """Landing page data: who is signed in and the assignments they can see."""
    rows = await data.query(Collections.CHORE_ASSIGNMENTS, limit=1000)
    assignments = [ChoreAssignment.model_validate(row) for row in rows]
    return {
        "principal": PrincipalResponse(
            id=ctx.principal_id, name=ctx.name or "", email=ctx.email or "", role=ctx.role
        ),
        "assignments": assignments,
        "completed": sum(1 for a in assignments if a.completed),
    }


app = create_app()
