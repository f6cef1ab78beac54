from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status

from src.api.routers import public_proposals_config as config
from src.api.routers.public_proposal_errors import public_proposal_error_response
from src.api.routers.public_proposals import (
    get_proposal_repository,
    get_public_proposal_service,
)
from src.core.proposals import (
    ErrorResponse,
    SigningWebhookError,
    SigningWebhookService,
    WebhookAckResponse,
)

router = APIRouter(tags=["Signing Webhooks"])


def get_signing_webhook_service() -> SigningWebhookService:
    return SigningWebhookService(
        repository=get_proposal_repository(),
        reconciler=get_public_proposal_service().reconciler,
        secret=config.autentique_webhook_secret(),
    )


@router.post(
    "/webhooks/autentique",
    response_model=WebhookAckResponse,
    response_model_exclude_none=True,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
    },
    status_code=status.HTTP_200_OK,
    summary="Receive Autentique Webhook",
    description=(
        "Authenticates a provider callback by shared secret or HMAC signature, stores each "
        "payload once, and marks the matching proposal signed on signed events."
    ),
)
async def receive_autentique_webhook(
    request: Request,
    signature: Annotated[
        Optional[str], Header(alias="x-autentique-signature", include_in_schema=False)
    ] = None,
    timestamp: Annotated[
        Optional[str], Header(alias="x-autentique-timestamp", include_in_schema=False)
    ] = None,
    header_secret: Annotated[
        Optional[str], Header(alias="x-webhook-secret", include_in_schema=False)
    ] = None,
    secret: Annotated[Optional[str], Query(include_in_schema=False)] = None,
    token: Annotated[Optional[str], Query(include_in_schema=False)] = None,
    service: Annotated[SigningWebhookService, Depends(get_signing_webhook_service)] = None,
):
    raw_body = await request.body()
    try:
        return service.handle(
            raw_body=raw_body,
            signature=signature,
            timestamp=timestamp,
            header_secret=header_secret,
            query_secret=secret or token,
        )
    except SigningWebhookError as exc:
        return public_proposal_error_response(exc)
