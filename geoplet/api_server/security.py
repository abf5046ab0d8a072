"""
API security: admin key authentication, security headers, request logging
and CORS.
"""

import hashlib
import hmac
import logging
import time
from typing import List, Optional

from fastapi import HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)

CONTENT_SECURITY_POLICY = (
    "default-src 'self'; "
    "img-src 'self' data: https:; "
    "connect-src 'self' https:; "
    "frame-ancestors 'none'"
)


class APIKeyAuth(HTTPBearer):
    """Admin API key authentication using Bearer token format."""

    def __init__(self, valid_api_keys: List[str], auto_error: bool = True):
        # Missing credentials are answered here so the status is always 401
        super().__init__(auto_error=False)
        self.require_credentials = auto_error
        # Hash API keys for secure comparison
        self.valid_keys_hashed = {
            hashlib.sha256(key.encode()).hexdigest(): key[:4] + "..."
            for key in valid_api_keys
        }
        logger.info(f"Initialized admin API key auth with {len(valid_api_keys)} keys")

    def _matches(self, provided: str) -> Optional[str]:
        provided_hash = hashlib.sha256(provided.encode()).hexdigest()
        for key_hash, preview in self.valid_keys_hashed.items():
            if hmac.compare_digest(provided_hash, key_hash):
                return preview
        return None

    async def __call__(self, request: Request) -> Optional[HTTPAuthorizationCredentials]:
        """Validate API key from Authorization header."""
        credentials = await super().__call__(request)

        if not credentials:
            if self.require_credentials:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="API key required",
                    headers={"WWW-Authenticate": "Bearer"},
                )
            return None

        key_preview = self._matches(credentials.credentials)
        if key_preview is None:
            logger.warning(f"Rejected admin request to {request.url.path}")
            if self.require_credentials:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Invalid API key",
                    headers={"WWW-Authenticate": "Bearer"},
                )
            return None

        logger.debug(f"API key authenticated: {key_preview}")
        return credentials


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds browser security headers to every response."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start_time = time.time()
        response = await call_next(request)

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
        response.headers["Content-Security-Policy"] = CONTENT_SECURITY_POLICY
        response.headers["X-Process-Time"] = f"{time.time() - start_time:.4f}"
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status and duration. Headers and bodies are not logged."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {request.method} {request.url.path} "
                f"from {client_ip} in {time.time() - start_time:.3f}s: {e}"
            )
            raise

        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"in {time.time() - start_time:.3f}s"
        )
        return response


def setup_cors_middleware(app, allowed_origins: List[str]):
    """Set up CORS middleware with specific origins."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-PAYMENT-RESPONSE", "X-Process-Time", "Retry-After"],
    )
    logger.info(f"CORS configured for origins: {allowed_origins}")
