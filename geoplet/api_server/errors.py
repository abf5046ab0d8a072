"""Maps service exceptions to HTTP status codes and structured error bodies."""

import logging
import math
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..core.error_codes import (
    GenerationErrorCode,
    MintErrorCode,
    PaymentErrorCode,
    api_error,
)
from ..exceptions import (
    AlreadyMinted,
    ArtifactTooLarge,
    ConfigurationError,
    FarcasterIntegrationError,
    FetchTimeoutError,
    GenerationError,
    GeopletError,
    InvalidRequest,
    MarketplaceAPIError,
    PaymentNotVerified,
    PaymentRequired,
    RateLimitExceeded,
)
from ..services.image_proxy import ImageProxyError

logger = logging.getLogger(__name__)

_GENERATION_STATUS = {
    GenerationErrorCode.OPENAI_RATE_LIMIT: 429,
    GenerationErrorCode.OPENAI_TIMEOUT: 504,
    GenerationErrorCode.CONTENT_POLICY_VIOLATION: 400,
    GenerationErrorCode.INVALID_PROMPT: 400,
    GenerationErrorCode.IMAGE_DOWNLOAD_FAILED: 502,
    GenerationErrorCode.OPENAI_API_ERROR: 502,
}

_PAYMENT_STATUS = {
    PaymentErrorCode.PAYMENT_TIMEOUT: 504,
    PaymentErrorCode.ONCHAIN_FI_ERROR: 502,
}

_HTTP_CODES = {
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: MintErrorCode.NOT_FOUND.value,
    405: "METHOD_NOT_ALLOWED",
}


def status_for(exc: GeopletError) -> int:
    if isinstance(exc, ImageProxyError):
        return exc.status_code
    if isinstance(exc, InvalidRequest):
        return 400
    if isinstance(exc, PaymentRequired):
        return 402
    if isinstance(exc, PaymentNotVerified):
        return _PAYMENT_STATUS.get(exc.code, 402)
    if isinstance(exc, AlreadyMinted):
        return 409
    if isinstance(exc, ArtifactTooLarge):
        return 413
    if isinstance(exc, RateLimitExceeded):
        return 429
    if isinstance(exc, ConfigurationError):
        return 503
    if isinstance(exc, FetchTimeoutError):
        return 504
    if isinstance(exc, GenerationError):
        return _GENERATION_STATUS.get(exc.code, 500)
    if isinstance(exc, (MarketplaceAPIError, FarcasterIntegrationError)):
        return 502
    return 500


async def geoplet_error_handler(request: Request, exc: GeopletError) -> JSONResponse:
    status_code = status_for(exc)

    # x402 clients read the requirements from the top level of the 402 body
    if isinstance(exc, PaymentRequired):
        return JSONResponse(status_code=402, content=exc.requirements)

    headers = {}
    if isinstance(exc, RateLimitExceeded):
        headers["Retry-After"] = str(max(1, math.ceil(exc.reset_at - time.time())))

    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: [{exc.code}] {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: [{exc.code}] {exc.message}")

    return JSONResponse(
        status_code=status_code,
        content=api_error(exc.code, exc.message, exc.details or None),
        headers=headers or None,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=api_error(MintErrorCode.INVALID_REQUEST, details={"validationErrors": errors}),
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _HTTP_CODES.get(exc.status_code, PaymentErrorCode.API_ERROR.value)
    return JSONResponse(
        status_code=exc.status_code,
        content=api_error(code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GeopletError, geoplet_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
