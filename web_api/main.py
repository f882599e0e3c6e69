"""
ExamCoach Access API - Main FastAPI Application

Exposes registration, two-factor login, content access, payment webhooks
and admin operations over HTTP.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from accounts.errors import AccountError, RateLimitedError, report_error
from config import Settings, settings
from utils.logger import logger, setup_logging
from web_api.dependencies import ServiceContainer
from web_api.middleware.security_headers import SecurityHeadersMiddleware
from web_api.routes import access, admin, auth, webhooks


async def account_error_handler(request: Request, exc: AccountError) -> JSONResponse:
    """Sanitized error body; the technical detail stays in the server log"""
    fingerprint = report_error(exc, f"{request.method} {request.url.path}")
    headers = {}
    if isinstance(exc, RateLimitedError) and exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.user_message, "fingerprint": fingerprint},
        headers=headers,
    )


def create_app(
    app_settings: Optional[Settings] = None,
    services: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        app_settings: Settings to use (defaults to the environment)
        services: Prebuilt services; built from settings at startup if omitted
    """
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan - startup and shutdown events"""
        setup_logging(app_settings.LOG_LEVEL, app_settings.LOG_FILE)

        if getattr(app.state, "services", None) is None:
            app.state.services = ServiceContainer.from_settings(app_settings)
        container: ServiceContainer = app.state.services

        await container.admin.ensure_default_admin(
            app_settings.DEFAULT_ADMIN_PHONE,
            app_settings.DEFAULT_ADMIN_PASSWORD,
            app_settings.DEFAULT_ADMIN_EMAIL,
        )
        logger.info(
            f"ExamCoach access API started ({app_settings.APP_ENV}) "
            f"store={container.store.name} otp={container.otp_provider.name} "
            f"notifier={container.notifier.name}"
        )
        yield
        await container.close()
        logger.info("ExamCoach access API shutting down")

    app = FastAPI(
        title="ExamCoach Access API",
        description="Registration, two-factor login, trial and subscription access",
        version="1.0.0",
        lifespan=lifespan,
        redirect_slashes=False,
    )
    app.state.services = services

    app.add_middleware(SecurityHeadersMiddleware, is_production=app_settings.is_production)
    app.add_exception_handler(AccountError, account_error_handler)

    app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
    app.include_router(access.router, prefix="/api/v1/access", tags=["Content Access"])
    app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["Webhooks"])
    app.include_router(admin.router, prefix="/api/v1/admin", tags=["Admin"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        container: Optional[ServiceContainer] = app.state.services
        return {
            "status": "healthy",
            "identity_store": container.store.name if container else None,
            "otp_provider": container.otp_provider.name if container else None,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
