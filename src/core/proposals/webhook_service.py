import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from src.core.common.canonical import sha256_hex
from src.core.proposals.models import (
    ProposalRecord,
    SigningWebhookEventRecord,
    WebhookAckResponse,
)
from src.core.proposals.reconciliation import SigningStatusReconciler, is_signed_status
from src.core.proposals.repository import ProposalRepository
from src.core.proposals.service import ProposalSigningError
from src.core.signing.webhook import (
    is_signed_event,
    pick_document_id,
    pick_event_type,
    pick_status,
    shared_secret_matches,
    verify_signature,
)

logger = logging.getLogger(__name__)


class SigningWebhookError(ProposalSigningError):
    pass


class SigningWebhookDisabledError(SigningWebhookError):
    pass


class SigningWebhookUnauthorizedError(SigningWebhookError):
    pass


class SigningWebhookPayloadError(SigningWebhookError):
    pass


class SigningWebhookService:
    def __init__(
        self,
        *,
        repository: ProposalRepository,
        reconciler: SigningStatusReconciler,
        secret: str,
    ) -> None:
        self._repository = repository
        self._reconciler = reconciler
        self._secret = secret.strip()

    def handle(
        self,
        *,
        raw_body: bytes,
        signature: Optional[str] = None,
        timestamp: Optional[str] = None,
        header_secret: Optional[str] = None,
        query_secret: Optional[str] = None,
    ) -> WebhookAckResponse:
        if not self._secret:
            raise SigningWebhookDisabledError("signing_webhook_disabled")
        if not raw_body:
            raise SigningWebhookPayloadError("empty_body")
        self._authenticate(
            raw_body=raw_body,
            signature=signature or "",
            timestamp=timestamp or "",
            header_secret=header_secret,
            query_secret=query_secret,
        )

        try:
            payload = json.loads(raw_body)
        except ValueError as exc:
            raise SigningWebhookPayloadError("invalid_payload") from exc
        if not isinstance(payload, dict):
            raise SigningWebhookPayloadError("invalid_payload")

        document_id = pick_document_id(payload)
        status = pick_status(payload)
        event_type = pick_event_type(payload)
        proposal = (
            self._repository.find_proposal_by_document_id(document_id=document_id)
            if document_id
            else None
        )
        received_at = datetime.now(timezone.utc)
        inserted = self._repository.record_webhook_event(
            SigningWebhookEventRecord(
                event_id=f"swe_{uuid.uuid4().hex[:12]}",
                tenant_id=proposal.tenant_id if proposal is not None else None,
                proposal_id=proposal.proposal_id if proposal is not None else None,
                document_id=document_id,
                event_type=event_type,
                status=status,
                payload_sha256=sha256_hex(raw_body),
                payload=payload,
                received_at=received_at,
            )
        )
        signed_event = proposal is not None and is_signed_event(payload)
        if not inserted:
            logger.info("Duplicate signing webhook received. DocumentId=%s", document_id)
            # A redelivery still completes a signed update that failed the first time.
            if signed_event and proposal.status != "SIGNED":
                self._apply_signed(proposal, status=status, observed_at=received_at)
            return WebhookAckResponse(duplicate=True)

        if signed_event:
            self._apply_signed(proposal, status=status, observed_at=received_at)
        elif proposal is None:
            logger.info(
                "Signing webhook without matching proposal. DocumentId=%s EventType=%s",
                document_id,
                event_type,
            )
        return WebhookAckResponse()

    def _apply_signed(
        self, proposal: ProposalRecord, *, status: Optional[str], observed_at: datetime
    ) -> None:
        external_status = status.lower() if is_signed_status(status) else "signed"
        self._reconciler.apply_external_status(
            proposal,
            external_status=external_status,
            observed_at=observed_at,
            source="webhook",
        )

    def _authenticate(
        self,
        *,
        raw_body: bytes,
        signature: str,
        timestamp: str,
        header_secret: Optional[str],
        query_secret: Optional[str],
    ) -> None:
        if shared_secret_matches(self._secret, header_secret):
            return
        if shared_secret_matches(self._secret, query_secret):
            return
        if verify_signature(
            secret=self._secret, raw_body=raw_body, signature=signature, timestamp=timestamp
        ):
            return
        logger.warning(
            "Signing webhook rejected. HasSignature=%s HasTimestamp=%s",
            bool(signature.strip()),
            bool(timestamp.strip()),
        )
        raise SigningWebhookUnauthorizedError(
            "unauthorized",
            {
                "reason": "missing_or_invalid_auth",
                "has_signature": bool(signature.strip()),
                "has_timestamp": bool(timestamp.strip()),
                "has_query_secret": bool((query_secret or "").strip()),
            },
        )
