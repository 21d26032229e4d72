"""
FastAPI Application Factory
===========================

Entry point of the identity provider that resolves ORY Hydra's login,
consent and logout challenges against an LDAP directory.

Architecture:
    Browser → Hydra → IdP (this service) → LDAP directory
                        ↘ Hydra admin API (accept / reject)

Routers (under WEB_BASE_PATH):
    - /login, /consent    : challenge handling
    - /logout, /post-logout
    - /error              : Hydra's error page target
    - /health/*           : liveness and readiness checks

Running the Service:
    Console script:
        hydra-ldap-idp

    With uvicorn directly:
        uvicorn --factory ldap_idp.main:create_app --host 0.0.0.0 --port 8080

    With custom log level:
        LOG_LEVEL=DEBUG hydra-ldap-idp
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from ldap_idp.admin import HydraAdminClient
from ldap_idp.auth.pages import render_error_page, render_failure_page
from ldap_idp.auth.remember import RememberStore
from ldap_idp.auth.resolver import ChallengeResolver
from ldap_idp.auth.routes import auth_router
from ldap_idp.config import Settings, get_settings
from ldap_idp.directory import LdapDirectory
from ldap_idp.errors import IdpError

VERSION = "1.0.0"


# Configure structured JSON logging
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


class AppState:
    """
    Application state container.

    Holds the collaborators shared by all requests.
    """
    def __init__(self, settings: Settings):
        self.settings = settings
        self.admin: Optional[HydraAdminClient] = None
        self.directory: Optional[LdapDirectory] = None
        self.remember: Optional[RememberStore] = None
        self.resolver: Optional[ChallengeResolver] = None

    @property
    def ready(self) -> bool:
        return self.resolver is not None


def build_collaborators(state: AppState) -> None:
    """Create the admin client, directory, remember store and resolver."""
    settings = state.settings

    state.admin = HydraAdminClient(
        settings.hydra_url_str,
        api_prefix=settings.HYDRA_API_PREFIX,
        timeout=settings.HYDRA_TIMEOUT_SECONDS,
        retries=settings.HYDRA_CONNECT_RETRIES,
    )
    state.directory = LdapDirectory(
        url=settings.LDAP_URL,
        bind_dn=settings.LDAP_BIND_DN,
        bind_pw=settings.LDAP_BIND_PW,
        users_dn=settings.LDAP_USERS_DN,
        attributes=settings.mapped_attributes,
        subject_attribute=settings.LDAP_SUBJECT_ATTRIBUTE,
        groups_dn=settings.LDAP_GROUPS_DN,
        groups_filter=settings.LDAP_GROUPS_FILTER,
        timeout=settings.LDAP_TIMEOUT_SECONDS,
    )
    state.remember = RememberStore(
        secret=settings.REMEMBER_SECRET,
        remember_for=settings.OAUTH_LOGIN_REMEMBER_FOR,
        max_lifetime=settings.REMEMBER_MAX_LIFETIME,
        algorithm=settings.REMEMBER_ALGORITHM,
        cookie_name=settings.REMEMBER_COOKIE_NAME,
        cookie_path=settings.cookie_path,
        cookie_secure=settings.REMEMBER_COOKIE_SECURE,
    )
    state.resolver = ChallengeResolver.from_settings(
        settings, state.admin, state.directory, state.remember
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup builds the collaborators; shutdown closes the admin API
    connection pool.
    """
    state: AppState = app.state.app_state
    settings = state.settings

    setup_logging(settings.LOG_LEVEL)
    logger = logging.getLogger("ldap_idp.main")

    build_collaborators(state)
    logger.info(
        "Identity provider started",
        extra={
            "hydra_url": settings.hydra_url_str,
            "ldap_url": settings.LDAP_URL,
            "base_path": settings.WEB_BASE_PATH,
            "version": VERSION,
        }
    )

    yield

    logger.info("Shutting down identity provider")
    if state.admin is not None:
        await state.admin.aclose()
    state.resolver = None


health_router = APIRouter(prefix="/health", tags=["System"])


@health_router.get("/live")
async def live() -> Dict[str, str]:
    return {"status": "ok"}


@health_router.get("/ready")
async def ready(request: Request) -> JSONResponse:
    state: AppState = request.app.state.app_state
    if not state.ready:
        return JSONResponse(status_code=503, content={"status": "starting"})
    return JSONResponse(content={"status": "ok", "version": VERSION})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory function.

    Args:
        settings: Settings to use, loaded from the environment when omitted

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Hydra LDAP Identity Provider",
        description="Login and consent provider for ORY Hydra backed by LDAP",
        version=VERSION,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.app_state = AppState(settings)

    prefix = "" if settings.WEB_BASE_PATH == "/" else settings.WEB_BASE_PATH
    app.include_router(auth_router, prefix=prefix)
    app.include_router(health_router, prefix=prefix)

    logger = logging.getLogger("ldap_idp.main")

    @app.exception_handler(IdpError)
    async def idp_error_handler(request: Request, exc: IdpError) -> HTMLResponse:
        logger.warning(
            f"Request failed: {exc}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            },
        )
        return render_failure_page(exc)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> HTMLResponse:
        if exc.status_code == 404:
            return render_error_page("Not Found", "The page you requested does not exist.", 404)
        return render_error_page("Request Error", "The request could not be processed.", exc.status_code)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> HTMLResponse:
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            },
            exc_info=True,
        )
        return render_error_page("Internal Error", "An unexpected error occurred.", 500)

    return app


def run() -> None:
    """Console entry point: serve the application with uvicorn."""
    settings = get_settings()

    options = {}
    if settings.tls_enabled:
        options["ssl_certfile"] = settings.WEB_TLS_CERT_FILE
        options["ssl_keyfile"] = settings.WEB_TLS_KEY_FILE

    uvicorn.run(
        create_app(settings),
        host=settings.listen_host,
        port=settings.listen_port,
        log_level=settings.LOG_LEVEL.lower(),
        **options,
    )


if __name__ == "__main__":
    run()
