"""
FastAPI Application Factory
===========================

Entry point for the Child Finder front end: authenticates users against an
OpenID Connect identity provider, keeps server-side sessions, and guards the
profile routes with session or bearer-token access control.

Routers:
    - /login, /auth/openid/return, /logout : Authentication
    - /profile/{id}, /api/profiles, /api/notify : Protected profile routes
    - /, /health : Public

Running the Service:
    Development:
        uvicorn childfinder.main:create_app --factory --reload --port 3000

    Production:
        python -m childfinder.main
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from . import __version__
from .auth import IdentityProviderClient, TokenServiceClient, auth_router, resolve_user
from .auth.nonce import create_nonce_store
from .config import Settings, get_settings, validate_configuration
from .directory import InMemoryUserDirectory
from .errors import AuthenticationRequired, DirectoryError, SessionStoreUnavailable
from .models import ErrorResponse, HealthResponse
from .profiles import ProfileServiceClient, profiles_router
from .sessions import SessionMiddleware, create_session_store

logger = logging.getLogger("childfinder.main")


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup: log the effective configuration and its warnings.
    Shutdown: close the outbound HTTP client and the session store.
    """
    settings: Settings = app.state.settings

    report = validate_configuration(settings)
    logger.info(
        "Starting Child Finder front end",
        extra={
            "session_store": report["session_store"],
            "nonce_storage": report["nonce_storage"],
            "log_level": settings.LOG_LEVEL,
        }
    )
    for warning in report["warnings"]:
        logger.warning(f"Configuration warning: {warning}")

    yield

    logger.info("Shutting down Child Finder front end")
    await app.state.http_client.aclose()
    await app.state.session_store.close()
    logger.info("Shutdown complete")


def create_app(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Application factory function.

    Creates and wires every collaborator once: user directory, session store,
    nonce store, identity provider client, token service and profile service
    clients. All of them are exposed on app.state.

    Args:
        settings: Settings to use instead of the environment (tests)
        http_client: Outbound HTTP client shared by the provider, token and
                     profile clients

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title="Child Finder",
        description="OpenID Connect front end with session and bearer-token access control",
        version=__version__,
        lifespan=lifespan,
    )

    http_client = http_client or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)

    app.state.settings = settings
    app.state.http_client = http_client
    app.state.directory = InMemoryUserDirectory()
    app.state.session_store = create_session_store(settings)
    app.state.identity_provider = IdentityProviderClient(
        settings, http_client, create_nonce_store(settings)
    )
    app.state.token_verifier = TokenServiceClient(settings, http_client)
    app.state.profile_client = ProfileServiceClient(settings, http_client)

    app.add_middleware(
        SessionMiddleware,
        cookie_name=settings.SESSION_COOKIE_NAME,
        max_age=settings.SESSION_MAX_AGE if settings.durable_sessions else None,
        secure=settings.COOKIE_SECURE,
        samesite=settings.cookie_samesite,
    )

    if settings.allowed_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins_list,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT"],
            allow_headers=["*"],
        )

    app.include_router(auth_router)
    app.include_router(profiles_router)

    @app.get("/health", tags=["System"], response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        return HealthResponse(
            status="ok",
            service="childfinder",
            version=__version__,
            session_store=settings.SESSION_STORE,
        )

    @app.get("/", tags=["System"])
    async def index(request: Request) -> Dict[str, Any]:
        """
        Public landing view.

        Anonymous visitors get no user; authenticated users get their record
        and the profile list.
        """
        user = await resolve_user(request)
        if user is None:
            return {"authenticated": False, "user": None}

        profiles = await request.app.state.profile_client.list_profiles()
        return {
            "authenticated": True,
            "user": user.model_dump(mode="json"),
            "profiles": profiles,
        }

    # =========================================================================
    # Exception Handlers
    # =========================================================================

    @app.exception_handler(AuthenticationRequired)
    async def authentication_required_handler(request: Request, exc: AuthenticationRequired) -> RedirectResponse:
        return RedirectResponse(url="/login", status_code=status.HTTP_302_FOUND)

    @app.exception_handler(SessionStoreUnavailable)
    async def session_store_handler(request: Request, exc: SessionStoreUnavailable) -> JSONResponse:
        logger.error(
            f"Session store unavailable: {exc}",
            extra={"path": request.url.path, "method": request.method}
        )
        body = ErrorResponse(error="session_store_unavailable", message="Session storage is temporarily unavailable")
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body.model_dump(mode="json"))

    @app.exception_handler(DirectoryError)
    async def directory_error_handler(request: Request, exc: DirectoryError) -> JSONResponse:
        logger.error(
            f"User directory failure: {exc}",
            extra={"path": request.url.path, "method": request.method}
        )
        body = ErrorResponse(error="directory_unavailable", message="User directory is temporarily unavailable")
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body.model_dump(mode="json"))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )
        body = ErrorResponse(error="internal_server_error", message="An unexpected error occurred")
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.model_dump(mode="json"))

    return app


def run() -> None:
    """Run the service with uvicorn using HOST/PORT from the environment."""
    settings = get_settings()

    uvicorn.run(
        "childfinder.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower()
    )


if __name__ == "__main__":
    run()
