"""
Security headers and production configuration checks.
"""
import os
import logging
from typing import Dict, Optional
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)


# The API only serves JSON and NDJSON
DEFAULT_CSP = {
    "default-src": "'none'",
    "frame-ancestors": "'none'",
    "base-uri": "'none'",
    "form-action": "'none'",
}


def build_csp_header(csp_dict: Dict[str, str]) -> str:
    """Build CSP header string from dictionary."""
    return "; ".join(f"{key} {value}" for key, value in csp_dict.items())


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add security headers to all responses.

    Adds:
    - Content-Security-Policy
    - X-Content-Type-Options
    - X-Frame-Options
    - Referrer-Policy
    - Cache-Control (analysis results are per-user data)
    """

    def __init__(self, app, csp_overrides: Optional[Dict[str, str]] = None):
        super().__init__(app)
        csp = DEFAULT_CSP.copy()
        if csp_overrides:
            csp.update(csp_overrides)
        self.csp_header = build_csp_header(csp)

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["Content-Security-Policy"] = self.csp_header
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        if request.url.path.startswith("/api/sessions"):
            response.headers["Cache-Control"] = "no-store"
        return response


def validate_production_security(ai_provider: str = "gemini"):
    """
    Validate configuration for production.

    Raises RuntimeError if the completion provider has no API key.
    """
    env = os.getenv('ENVIRONMENT', 'development').lower()

    if env in ('production', 'prod'):
        key_name = "GROQ_API_KEY" if ai_provider == "groq" else "GEMINI_API_KEY"
        if not os.getenv(key_name):
            raise RuntimeError(f"{key_name} environment variable is required in production.")

        if os.getenv('STORAGE_BACKEND', 'memory').lower() == 'memory':
            logger.warning(
                "STORAGE_BACKEND is 'memory' in production. "
                "Transcripts are lost on restart and not shared between workers."
            )

        allowed_origins = os.getenv('ALLOWED_ORIGINS', '')
        if 'localhost' in allowed_origins:
            logger.warning(
                "ALLOWED_ORIGINS contains 'localhost' in production. "
                "Consider removing for security."
            )

        logger.info("Production security validation passed")
    else:
        logger.info(f"Running in {env} mode - security validation skipped")
