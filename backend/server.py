from fastapi import FastAPI, APIRouter, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
from pathlib import Path
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import time
import traceback
import uuid

# Load environment variables first
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Import configuration
from config import Settings, get_settings, get_cors_config, validate_environment

# Import logging and error tracking
from logging_config import setup_logging, get_logger, set_request_context, clear_request_context
from sentry_integration import init_sentry, capture_exception

# Import database, services and routers
from database import init_db, ping_db
from routers import auth_router, banks_router, dashboard_router
from services.container import ServiceContainer
from utils.error_responses import validation_error_body

logger = get_logger(__name__)

DESCRIPTION = """
Backend API for the personal banking dashboard.

## Features

### Authentication (/api/auth)
- Sign-up with payment-rail customer provisioning
- Email/password sign-in with cookie sessions
- Sign-out and current identity

### Bank Accounts (/api/banks)
- Link token issue for the bank-linking widget
- Public token exchange: processor token, funding source and stored account
- Linked account listing and lookup by shareable id

### Dashboard (/api/dashboard)
- Balances and recent transactions across linked accounts
"""


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Build the API application.

    A prebuilt service container can be passed in; otherwise one is built
    from settings at startup and closed at shutdown.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler"""
        # Startup
        setup_logging(
            level=settings.LOG_LEVEL,
            json_format=settings.is_production,
            service_name="bank-link-core",
        )
        logger.info("=" * 60)
        logger.info("Starting Bank Link Core API...")
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        logger.info(f"Debug Mode: {settings.debug_enabled}")
        logger.info("=" * 60)

        if settings.SENTRY_DSN:
            init_sentry(
                dsn=settings.SENTRY_DSN,
                environment=settings.ENVIRONMENT,
                release=settings.API_VERSION,
                traces_sample_rate=0.1 if settings.is_production else 0.0,
            )

        # Validate environment
        env_status = validate_environment(settings)
        if not env_status["valid"]:
            for error in env_status["errors"]:
                logger.error(f"Configuration Error: {error}")
            if settings.is_production:
                raise RuntimeError("Cannot start in production with invalid configuration")

        for warning in env_status.get("warnings", []):
            logger.warning(f"Configuration Warning: {warning}")

        owns_services = services is None
        container = services or ServiceContainer.from_settings(settings)
        app.state.services = container

        # Initialize database
        try:
            await init_db(container.engine)
            logger.info("Database connection established")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            if owns_services:
                await container.aclose()
            raise

        logger.info("Bank Link Core API started successfully")

        yield

        # Shutdown
        logger.info("Shutting down Bank Link Core API...")
        if owns_services:
            await container.aclose()

    app = FastAPI(
        title=settings.API_TITLE,
        description=DESCRIPTION,
        version=settings.API_VERSION,
        lifespan=lifespan,
        docs_url="/api/docs" if settings.debug_enabled else None,
        redoc_url="/api/redoc" if settings.debug_enabled else None,
    )

    # Create a router with the /api prefix
    api_router = APIRouter(prefix="/api")

    # ==================== HEALTH CHECK ENDPOINTS ====================

    @api_router.get("/", tags=["Health"])
    async def root():
        """Basic health check - returns 200 if service is running"""
        return {
            "message": "Bank Link Core API",
            "status": "healthy",
            "version": settings.API_VERSION,
            "environment": settings.ENVIRONMENT,
        }

    @api_router.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """
        Detailed health check for load balancers and uptime monitors.

        Returns:
        - 200: All systems operational
        - 503: Database unavailable
        """
        health_status = {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": settings.API_VERSION,
            "environment": settings.ENVIRONMENT,
            "checks": {}
        }

        container: ServiceContainer = request.app.state.services
        try:
            await ping_db(container.engine)
            health_status["checks"]["database"] = {
                "status": "connected",
                "type": container.engine.dialect.name,
            }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            health_status["status"] = "unhealthy"
            health_status["checks"]["database"] = {
                "status": "disconnected",
                "error": str(e) if not settings.is_production else "unavailable",
            }

        health_status["checks"]["bank_linking"] = {
            "status": "configured" if settings.PLAID_CLIENT_ID and settings.PLAID_SECRET else "not_configured",
            "environment": settings.PLAID_ENV,
        }
        health_status["checks"]["payment_rail"] = {
            "status": "configured" if container.dwolla.configured else "not_configured",
            "environment": settings.DWOLLA_ENV,
        }

        env_status = validate_environment(settings)
        health_status["checks"]["configuration"] = {
            "status": "valid" if env_status["valid"] else "invalid",
            "warnings": len(env_status.get("warnings", [])),
            "errors": len(env_status.get("errors", []))
        }

        if health_status["status"] == "unhealthy":
            raise HTTPException(status_code=503, detail=health_status)

        return health_status

    @api_router.get("/health/live", tags=["Health"])
    async def liveness_check():
        """
        Liveness probe.
        Returns 200 if the process is running (doesn't check dependencies).
        """
        return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}

    api_router.include_router(auth_router)
    api_router.include_router(banks_router)
    api_router.include_router(dashboard_router)

    app.include_router(api_router)

    # ==================== MIDDLEWARE ====================

    app.add_middleware(CORSMiddleware, **get_cors_config(settings))

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing information"""
        start_time = time.time()

        request_id = request.headers.get("X-Request-ID") or f"req-{uuid.uuid4().hex[:12]}"
        set_request_context(request_id=request_id)

        if settings.debug_enabled:
            logger.debug(f"{request.method} {request.url.path}")

        try:
            response = await call_next(request)

            process_time = time.time() - start_time

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))

            if settings.debug_enabled or response.status_code >= 400:
                logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({process_time:.3f}s)")

            return response
        except Exception as e:
            logger.error(f"Request failed: {str(e)}")
            raise
        finally:
            clear_request_context()

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        """Reject malformed payloads with 400 and field names only"""
        body = validation_error_body(exc.errors())
        logger.warning(f"Invalid payload for {request.url.path}: {body['detail']['parameters']}")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions"""
        logger.error(f"Unhandled exception: {exc}")
        capture_exception(exc, path=request.url.path)
        if settings.debug_enabled:
            logger.error(traceback.format_exc())

        # Don't expose internal errors in production
        if settings.is_production:
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal server error"}
            )
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc),
                "type": type(exc).__name__,
                "traceback": traceback.format_exc() if settings.debug_enabled else None
            }
        )

    return app


app = create_app()
