"""
Security Headers Middleware for the ExamCoach access API

Adds standard security headers to every response.

Reference: OWASP Secure Headers Project
https://owasp.org/www-project-secure-headers/
"""

from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds security headers to all HTTP responses.

    Headers added:
    - X-Content-Type-Options: Prevents MIME type sniffing
    - X-Frame-Options: Prevents clickjacking attacks
    - Referrer-Policy: Controls referrer information sent
    - Cache-Control: Account responses must not be cached
    - Strict-Transport-Security: Forces HTTPS (production only)
    - Content-Security-Policy: The API serves JSON only
    """

    def __init__(self, app, is_production: bool = False, enable_hsts: Optional[bool] = None):
        super().__init__(app)
        self.is_production = is_production

        # HSTS should only be enabled in production with HTTPS
        if enable_hsts is None:
            self.enable_hsts = is_production
        else:
            self.enable_hsts = enable_hsts

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"

        # max-age=31536000 = 1 year
        if self.enable_hsts:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        if self.is_production:
            response.headers["Content-Security-Policy"] = (
                "default-src 'none'; frame-ancestors 'none'"
            )
        else:
            # /docs needs the Swagger UI assets in development
            response.headers["Content-Security-Policy"] = (
                "default-src 'self'; "
                "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
                "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
                "img-src 'self' data: https:; "
                "frame-ancestors 'none'"
            )

        return response
