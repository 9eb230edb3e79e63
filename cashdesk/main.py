from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from typing import Optional
import logging

from cashdesk.core.config import settings
from cashdesk.core.container import Container, build_default_container
from cashdesk.modules.cash_register.exceptions import (
    CashRegisterError, ValidationError, IllegalStateError, MissingIdentifierError,
    PersistenceError, PermissionDeniedError, NotFoundError
)
from cashdesk.modules.cash_register.router import cash_registers_router, notifications_router
from cashdesk.modules.settings.router import settings_router

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (MissingIdentifierError, status.HTTP_409_CONFLICT),
    (IllegalStateError, status.HTTP_409_CONFLICT),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for(exc: CashRegisterError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(container: Optional[Container] = None) -> FastAPI:
    app = FastAPI(
        title="Cashdesk API",
        description="Cash register sessions, movements and reconciliation for the point of sale",
        version="1.0.0",
        docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
    )
    app.state.container = container or build_default_container()

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Add your frontend URLs
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(cash_registers_router, prefix="/api/v1")
    app.include_router(notifications_router, prefix="/api/v1")
    app.include_router(settings_router, prefix="/api/v1")

    @app.exception_handler(CashRegisterError)
    async def cash_register_error_handler(request: Request, exc: CashRegisterError):
        return JSONResponse(status_code=status_for(exc), content={"detail": exc.message})

    @app.get("/")
    async def read_root():
        return {
            "message": "Cashdesk API is running",
            "version": "1.0.0",
            "environment": settings.ENVIRONMENT
        }

    @app.get("/health")
    async def health_check():
        container = app.state.container
        return {
            "status": "healthy",
            "environment": settings.ENVIRONMENT,
            "cash_register_open": container.session.is_open,
            "auto_close_running": container.scheduler.running
        }

    @app.on_event("startup")
    async def startup_event():
        logger.info("Cashdesk API starting up...")
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        await app.state.container.startup()

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Cashdesk API shutting down...")
        await app.state.container.shutdown()

    return app


app = create_app()
