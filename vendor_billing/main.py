from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import text

from vendor_billing.config import Settings
from vendor_billing.api.v1.router import api_router
from vendor_billing.core.exceptions import BillingError
from vendor_billing.database import Database
from vendor_billing.services.email_service import EmailService
from vendor_billing.services.payment_gateway import RazorpayGateway
from vendor_billing.services.side_effects import SideEffectDispatcher

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create tables when AUTO_CREATE_TABLES is set

    Shutdown:
    - Dispose of the engine's connection pool
    """
    settings: Settings = app.state.settings
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    if settings.AUTO_CREATE_TABLES:
        await app.state.database.create_all()

    if not settings.payment_gateway_configured:
        logger.warning("Razorpay keys not configured; checkout is disabled")

    yield

    await app.state.database.dispose()
    logger.info("Shutting down...")


def _error_response(request: Request, status_code: int, content: dict) -> JSONResponse:
    content.update({"path": str(request.url.path), "method": request.method})
    return JSONResponse(status_code=status_code, content=content)


def create_app(
    settings: Optional[Settings] = None,
    payment_gateway: Optional[RazorpayGateway] = None,
    email_service: Optional[EmailService] = None,
) -> FastAPI:
    """
    Build the application and its collaborators.

    Settings, database, payment gateway and side-effect dispatcher are
    created here once and kept on app.state; request handlers reach them
    through the dependencies in api/deps.py.
    """
    settings = settings or Settings()
    configure_logging(settings)

    database = Database(settings)
    email_service = email_service or EmailService.from_settings(settings)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Vendor plan checkout, payment settlement, referral wallet and cashouts.",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.state.settings = settings
    app.state.database = database
    app.state.payment_gateway = payment_gateway or RazorpayGateway(settings)
    app.state.dispatcher = SideEffectDispatcher(database, email_service)

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API router
    app.include_router(api_router)

    @app.exception_handler(BillingError)
    async def billing_exception_handler(request: Request, exc: BillingError):
        if exc.status_code >= 500:
            logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
        else:
            logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
        return _error_response(request, exc.status_code, exc.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        response = _error_response(
            request,
            exc.status_code,
            {"error": exc.detail, "code": f"HTTP_{exc.status_code}"},
        )
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        error_detail = {"error": "Internal server error", "code": "INTERNAL"}
        if settings.DEBUG:
            error_detail["error"] = str(exc)
            error_detail["traceback"] = traceback.format_exc()
        return _error_response(request, 500, error_detail)

    # Health check endpoint
    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint with database validation."""
        health_status = {
            "status": "healthy",
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": {
                "database": "unknown",
                "payment_gateway": "configured" if app.state.payment_gateway.is_configured else "not_configured",
            }
        }

        # Check database connectivity
        try:
            async with database.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()
                health_status["checks"]["database"] = "connected"
        except Exception as e:
            health_status["status"] = "unhealthy"
            health_status["checks"]["database"] = f"error: {str(e)}"

        # Return 503 if unhealthy
        if health_status["status"] == "unhealthy":
            return JSONResponse(status_code=503, content=health_status)

        return health_status

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint."""
        return {
            "message": f"Welcome to {settings.APP_NAME}",
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "redoc": "/redoc",
        }

    return app


app = create_app()
