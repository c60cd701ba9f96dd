"""
Maps domain errors to HTTP responses.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..core.exceptions import (
    AuthenticityError,
    CertificateOperationInProgressError,
    ConcurrencyError,
    IncompatibleCertificateError,
    IntegrityError,
    InvalidTransitionError,
    LifecycleError,
    NotFoundError,
    PendingSignatureError,
    PolicyError,
    ProviderRejectedError,
    ProviderUnavailableError,
    SigexError,
    ValidationError
)

logger = logging.getLogger(__name__)

# Most specific first
STATUS_CODES = [
    (NotFoundError, 404),
    (ValidationError, 400),
    (IncompatibleCertificateError, 422),
    (PendingSignatureError, 409),
    (InvalidTransitionError, 409),
    (PolicyError, 422),
    (CertificateOperationInProgressError, 409),
    (LifecycleError, 409),
    (ProviderUnavailableError, 503),
    (ProviderRejectedError, 502),
    (ConcurrencyError, 409),
    (IntegrityError, 422),
    (AuthenticityError, 422),
]


def status_code_for(exc: SigexError) -> int:
    for error_type, status_code in STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def sigex_error_handler(request: Request, exc: SigexError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}: {exc.message}")

    headers = {"Retry-After": "5"} if exc.retryable and status_code in (409, 503) else None
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(SigexError, sigex_error_handler)
