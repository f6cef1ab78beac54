from datetime import datetime
from typing import Any, Optional, Protocol

from src.core.proposals.models import (
    ProposalRecord,
    SigningRecord,
    SigningWebhookEventRecord,
    TimelineEventRecord,
)


class ProposalRepository(Protocol):
    def create_proposal(self, proposal: ProposalRecord) -> None: ...

    def get_proposal(self, *, tenant_id: str, proposal_id: str) -> Optional[ProposalRecord]: ...

    def get_proposal_by_token(self, *, tenant_id: str, token: str) -> Optional[ProposalRecord]: ...

    def find_proposal_by_document_id(self, *, document_id: str) -> Optional[ProposalRecord]: ...

    def list_awaiting_signature(self, *, limit: int) -> list[ProposalRecord]: ...

    def mark_approved(
        self,
        *,
        tenant_id: str,
        proposal_id: str,
        approved_at: datetime,
        approval_metadata: dict[str, Any],
    ) -> bool: ...

    def attach_signing_record(
        self,
        *,
        tenant_id: str,
        proposal_id: str,
        signing_record: SigningRecord,
    ) -> bool: ...

    def update_external_status(
        self,
        *,
        tenant_id: str,
        proposal_id: str,
        external_status: str,
        checked_at: datetime,
        signed_at: Optional[datetime],
    ) -> None: ...

    def find_timeline_event(
        self, *, tenant_id: str, event_type: str, proposal_id: str
    ) -> Optional[TimelineEventRecord]: ...

    def append_timeline_event(self, event: TimelineEventRecord) -> bool: ...

    def list_timeline_events(
        self, *, tenant_id: str, proposal_id: str
    ) -> list[TimelineEventRecord]: ...

    def record_webhook_event(self, event: SigningWebhookEventRecord) -> bool: ...
