from typing import Any, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse

from src.core.proposals import (
    ProposalInputError,
    ProposalNotApprovedError,
    ProposalNotFoundError,
    ProposalPreconditionError,
    SigningWebhookDisabledError,
    SigningWebhookPayloadError,
    SigningWebhookUnauthorizedError,
)
from src.core.proposals.service import ProposalSigningError
from src.core.signing import SigningGatewayError

BACKEND_DSN_REQUIRED = "PROPOSAL_POSTGRES_DSN_REQUIRED"
BACKEND_CONNECTION_FAILED = "PROPOSAL_POSTGRES_CONNECTION_FAILED"

_STATUS_BY_ERROR: tuple[tuple[type[Exception], int], ...] = (
    (ProposalNotApprovedError, status.HTTP_403_FORBIDDEN),
    (ProposalNotFoundError, status.HTTP_404_NOT_FOUND),
    (ProposalInputError, status.HTTP_400_BAD_REQUEST),
    (ProposalPreconditionError, status.HTTP_400_BAD_REQUEST),
    (SigningWebhookDisabledError, status.HTTP_404_NOT_FOUND),
    (SigningWebhookUnauthorizedError, status.HTTP_401_UNAUTHORIZED),
    (SigningWebhookPayloadError, status.HTTP_400_BAD_REQUEST),
    (SigningGatewayError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def error_response(status_code: int, code: str, detail: Optional[Any] = None) -> JSONResponse:
    content: dict[str, Any] = {"ok": False, "error": code}
    if detail is not None:
        content["detail"] = detail
    return JSONResponse(status_code=status_code, content=content)


def public_proposal_error_response(exc: Exception) -> JSONResponse:
    if not isinstance(exc, (ProposalSigningError, SigningGatewayError)):
        raise exc
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return error_response(status_code, exc.code, exc.detail)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc.code, exc.detail)


class ProposalBackendUnavailableError(Exception):
    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


async def backend_unavailable_handler(
    _request: Request, exc: ProposalBackendUnavailableError
) -> JSONResponse:
    return error_response(status.HTTP_503_SERVICE_UNAVAILABLE, exc.code)


def normalize_backend_init_error(*, detail: str) -> str:
    if detail == BACKEND_DSN_REQUIRED:
        return detail
    return BACKEND_CONNECTION_FAILED
