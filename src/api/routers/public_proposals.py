import logging
from typing import Annotated, Optional
from urllib.parse import urlsplit

from fastapi import APIRouter, Body, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse

from src.api.routers import public_proposals_config as config
from src.api.routers.public_proposal_errors import (
    ProposalBackendUnavailableError,
    error_response,
    normalize_backend_init_error,
    public_proposal_error_response,
)
from src.core.catalog.repository import CatalogRepository
from src.core.proposals import (
    ApproveResponse,
    ErrorResponse,
    ProposalActionRequest,
    ProposalSigningError,
    PublicProposalResponse,
    PublicProposalService,
    SignResponse,
)
from src.core.proposals.repository import ProposalRepository
from src.core.signing import SigningGatewayError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Public Proposal"])

CONTRACT_PDF_ACTION = "contract_pdf"
APPROVE_ACTION = "approve"
SIGN_ACTION = "sign"

_REPOSITORY: Optional[ProposalRepository] = None
_CATALOG: Optional[CatalogRepository] = None
_SERVICE: Optional[PublicProposalService] = None

_ERROR_RESPONSES = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_403_FORBIDDEN: {"model": ErrorResponse},
    status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _ensure_repositories() -> tuple[ProposalRepository, CatalogRepository]:
    global _REPOSITORY
    global _CATALOG
    if _REPOSITORY is None or _CATALOG is None:
        try:
            _REPOSITORY, _CATALOG = config.build_repositories()
        except RuntimeError as exc:
            raise ProposalBackendUnavailableError(
                normalize_backend_init_error(detail=str(exc))
            ) from exc
    return _REPOSITORY, _CATALOG


def get_proposal_repository() -> ProposalRepository:
    return _ensure_repositories()[0]


def get_public_proposal_service() -> PublicProposalService:
    global _SERVICE
    if _SERVICE is None:
        repository, catalog = _ensure_repositories()
        _SERVICE = PublicProposalService(
            repository=repository,
            catalog=catalog,
            gateway=config.build_signing_gateway(),
            reconcile_on_read=config.reconcile_on_read_enabled(),
        )
    return _SERVICE


def reset_public_proposal_service_for_tests() -> None:
    global _REPOSITORY
    global _CATALOG
    global _SERVICE
    _REPOSITORY = None
    _CATALOG = None
    _SERVICE = None


def infer_portal_origin(request: Request) -> str:
    origin = request.headers.get("origin", "").strip()
    if origin:
        return origin
    referer = request.headers.get("referer", "").strip()
    if not referer:
        return ""
    parts = urlsplit(referer)
    if not parts.scheme or not parts.netloc:
        return ""
    return f"{parts.scheme}://{parts.netloc}"


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded.strip():
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client is not None else None


def _disabled_response() -> Response:
    return error_response(status.HTTP_404_NOT_FOUND, "public_proposal_disabled")


def _ok(result: ApproveResponse | SignResponse) -> JSONResponse:
    return JSONResponse(content=result.model_dump(mode="json", exclude_none=True))


def _error_response(exc: Exception) -> Response:
    if isinstance(exc, SigningGatewayError):
        logger.error("Signing provider error. Code=%s", exc.code)
    return public_proposal_error_response(exc)


@router.get(
    "/public-proposal",
    response_model=PublicProposalResponse,
    responses=_ERROR_RESPONSES,
    status_code=status.HTTP_200_OK,
    summary="Get Public Proposal",
    description=(
        "Resolves a proposal by tenant slug and capability token, refreshes the provider "
        "signing status when a contract was sent, and returns the proposal with its scope. "
        "With `action=contract_pdf` the contract preview PDF is returned instead."
    ),
)
async def get_public_proposal(
    request: Request,
    tenant_slug: Annotated[
        Optional[str],
        Query(description="Public tenant slug.", examples=["acme"]),
    ] = None,
    token: Annotated[
        Optional[str],
        Query(description="Opaque proposal capability token.", examples=["tok_9f8e7d"]),
    ] = None,
    action: Annotated[
        Optional[str],
        Query(description="Optional `contract_pdf` preview action.", examples=["contract_pdf"]),
    ] = None,
    service: Annotated[PublicProposalService, Depends(get_public_proposal_service)] = None,
):
    if not config.public_proposal_enabled():
        return _disabled_response()
    try:
        if (action or "").strip() == CONTRACT_PDF_ACTION:
            preview = service.render_contract_preview(
                tenant_slug=tenant_slug,
                token=token,
                portal_origin=infer_portal_origin(request),
            )
            return Response(
                content=preview.contract.pdf_bytes,
                media_type="application/pdf",
                headers={
                    "Content-Disposition": f"inline; filename={preview.filename}",
                    "Cache-Control": "no-store",
                    "X-Content-Hash": preview.contract.content_hash,
                },
            )
        return await service.get_public_proposal(tenant_slug=tenant_slug, token=token)
    except (ProposalSigningError, SigningGatewayError) as exc:
        return _error_response(exc)


@router.post(
    "/public-proposal",
    response_model=None,
    responses={
        status.HTTP_200_OK: {"model": SignResponse, "description": "Action accepted."},
        **_ERROR_RESPONSES,
    },
    status_code=status.HTTP_200_OK,
    summary="Approve or Sign Public Proposal",
    description=(
        "`approve` records the customer's approval once. `sign` renders the contract, "
        "registers it with the signing provider and returns the signing link; repeated calls "
        "return the stored link without contacting the provider again."
    ),
)
async def post_public_proposal_action(
    request: Request,
    payload: Annotated[Optional[ProposalActionRequest], Body()] = None,
    tenant_slug: Annotated[
        Optional[str],
        Query(description="Public tenant slug.", examples=["acme"]),
    ] = None,
    token: Annotated[
        Optional[str],
        Query(description="Opaque proposal capability token.", examples=["tok_9f8e7d"]),
    ] = None,
    action: Annotated[
        Optional[str],
        Query(description="Action fallback when the body carries none.", examples=["sign"]),
    ] = None,
    service: Annotated[PublicProposalService, Depends(get_public_proposal_service)] = None,
):
    if not config.public_proposal_enabled():
        return _disabled_response()
    requested = ((payload.action if payload is not None else "") or action or "").strip()
    try:
        if requested == APPROVE_ACTION:
            return _ok(
                service.approve(
                    tenant_slug=tenant_slug,
                    token=token,
                    ip=_client_ip(request),
                    user_agent=request.headers.get("user-agent"),
                )
            )
        if requested == SIGN_ACTION:
            return _ok(
                await service.sign(
                    tenant_slug=tenant_slug,
                    token=token,
                    portal_origin=infer_portal_origin(request),
                )
            )
        service.resolve_context(tenant_slug=tenant_slug, token=token)
    except (ProposalSigningError, SigningGatewayError) as exc:
        return _error_response(exc)
    return error_response(status.HTTP_400_BAD_REQUEST, "invalid_action")
