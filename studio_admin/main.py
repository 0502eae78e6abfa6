"""
Studio Admin - FastAPI application.
Multi-tenant back office for webcam studios: users and sedes, FX rates, the
earnings calculator, quincena closure, support chat and the studio shop.
"""
import time
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Optional
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from studio_admin.advances.router import router as advances_router
from studio_admin.auth.router import affiliates_router, router as auth_router, users_router
from studio_admin.billing.router import router as billing_router
from studio_admin.calculator.router import router as calculator_router
from studio_admin.chat.router import router as chat_router
from studio_admin.core.config import settings
from studio_admin.core.database import Database
from studio_admin.core.logger import logger
from studio_admin.cron.router import router as cron_router
from studio_admin.periods.router import router as period_closure_router, unfreeze_router
from studio_admin.rates.router import router as rates_router
from studio_admin.sedes.router import assignments_router, groups_router, rooms_router
from studio_admin.shop.router import router as shop_router


def _error_response(request: Request, status_code: int, error: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": error,
            "correlation_id": getattr(request.state, "correlation_id", "N/A"),
        },
    )


def create_app(database: Optional[Database] = None) -> FastAPI:
    """
    Application factory. The Database is built here (or injected by tests)
    and shared with request handlers through app.state.
    """
    database = database or Database(settings.DATABASE_URL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifecycle management (startup/shutdown hooks)."""
        logger.info(f"Initializing {settings.APP_NAME} v{settings.VERSION}")
        app.state.database.create_all()

        yield

        logger.info("Shutting down application")
        app.state.database.dispose()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.VERSION,
        description="Back office API for webcam studios. See README.md for full documentation.",
        lifespan=lifespan
    )
    app.state.database = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        """
        Middleware for distributed tracing.
        Injects a Correlation ID into the request context and propagates it to the response headers.
        """
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid4()))
        request.state.correlation_id = correlation_id

        start_time = time.time()
        logger.info(
            f"Request: {request.method} {request.url.path}",
            extra={"correlation_id": correlation_id}
        )

        response = await call_next(request)

        process_time = time.time() - start_time
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time"] = str(process_time)
        logger.info(
            f"Response: {response.status_code} | {process_time:.3f}s",
            extra={"correlation_id": correlation_id}
        )
        return response

    app.include_router(auth_router, prefix="/api/auth")
    app.include_router(users_router, prefix="/api/users")
    app.include_router(affiliates_router, prefix="/api/affiliates")
    app.include_router(groups_router, prefix="/api/groups")
    app.include_router(rooms_router, prefix="/api/rooms")
    app.include_router(assignments_router, prefix="/api/assignments")
    app.include_router(rates_router, prefix="/api/rates")
    app.include_router(calculator_router, prefix="/api/calculator")
    app.include_router(period_closure_router, prefix="/api/calculator/period-closure")
    app.include_router(unfreeze_router, prefix="/api/admin/unfreeze-platforms")
    app.include_router(chat_router, prefix="/api/chat")
    app.include_router(shop_router, prefix="/api/shop")
    app.include_router(advances_router, prefix="/api/advances")
    app.include_router(billing_router, prefix="/api/admin/billing-summary")
    app.include_router(cron_router, prefix="/api/cron")

    @app.get("/api-info", tags=["Health"])
    def api_info() -> Dict[str, Any]:
        """Service discovery links."""
        return {
            "app": settings.APP_NAME,
            "version": settings.VERSION,
            "status": "online",
            "endpoints": {
                "login": "/api/auth/login",
                "rates": "/api/rates",
                "calculator_totals": "/api/calculator/totals",
                "period_closure": "/api/calculator/period-closure/status",
                "chat": "/api/chat",
                "shop": "/api/shop/products",
                "advances": "/api/advances",
                "billing_summary": "/api/admin/billing-summary",
                "docs": "/docs",
            }
        }

    @app.get("/health", tags=["Health"])
    def health_check() -> Dict[str, str]:
        """Liveness check endpoint for orchestration systems."""
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "version": settings.VERSION
        }

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.info(
            f"HTTPException: {exc.status_code}",
            extra={"correlation_id": getattr(request.state, "correlation_id", "N/A")}
        )
        return _error_response(request, exc.status_code, exc.detail)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg", "Invalid request"))
        return _error_response(request, 400, message)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Global exception barrier.
        Logs the stack trace with the Correlation ID and returns a sanitized 500.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            exc_info=True,
            extra={"correlation_id": getattr(request.state, "correlation_id", "N/A")}
        )
        return _error_response(request, 500, "Internal Server Error")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("studio_admin.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
