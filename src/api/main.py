"""
FILE: src/api/main.py
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.api.observability import setup_observability
from src.api.persistence_profile import validate_persistence_profile_guardrails
from src.api.routers.public_proposal_errors import (
    ProposalBackendUnavailableError,
    backend_unavailable_handler,
    error_response,
)
from src.api.routers.public_proposals import router as public_proposal_router
from src.api.routers.signing_webhooks import router as signing_webhook_router


@asynccontextmanager
async def _app_lifespan(_app: FastAPI):
    validate_persistence_profile_guardrails()
    yield


app = FastAPI(
    title="Proposal Signing Portal API",
    version="0.1.0",
    description=(
        "Token-gated public proposal workflow.\n\n"
        "A proposal moves `DRAFT -> APPROVED -> CONTRACT_SENT -> SIGNED`; the contract is "
        "rendered to PDF and sent for signature through Autentique."
    ),
    openapi_tags=[
        {
            "name": "Public Proposal",
            "description": "Proposal read, approval, signature and contract preview endpoints.",
        },
        {
            "name": "Signing Webhooks",
            "description": "Authenticated signing provider callbacks.",
        },
    ],
    lifespan=_app_lifespan,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

setup_observability(app)

app.include_router(public_proposal_router)
app.include_router(signing_webhook_router)
app.add_exception_handler(ProposalBackendUnavailableError, backend_unavailable_handler)


@app.exception_handler(Exception)
async def unhandled_exception_to_error_envelope(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception while serving request", exc_info=exc)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "internal_error",
        {"path": str(request.url.path)},
    )


@app.get("/health", tags=["Public Proposal"], summary="Liveness probe")
def health() -> dict[str, str]:
    return {"status": "ok"}
