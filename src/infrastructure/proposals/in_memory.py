from copy import deepcopy
from datetime import datetime
from threading import Lock
from typing import Any, Optional, Sequence

from src.core.catalog.models import (
    CommitmentItemRecord,
    CommitmentRecord,
    DeliverableTemplateRecord,
    OfferingRecord,
    PartyRecord,
    TenantRecord,
)
from src.core.catalog.repository import CatalogRepository
from src.core.proposals.models import (
    ProposalRecord,
    SigningRecord,
    SigningWebhookEventRecord,
    TimelineEventRecord,
)
from src.core.proposals.repository import ProposalRepository


class InMemoryProposalRepository(ProposalRepository):
    def __init__(self) -> None:
        self._lock = Lock()
        self._proposals: dict[str, ProposalRecord] = {}
        self._timeline: list[TimelineEventRecord] = []
        self._webhook_events: dict[str, SigningWebhookEventRecord] = {}

    def create_proposal(self, proposal: ProposalRecord) -> None:
        with self._lock:
            self._proposals[proposal.proposal_id] = deepcopy(proposal)

    def get_proposal(self, *, tenant_id: str, proposal_id: str) -> Optional[ProposalRecord]:
        with self._lock:
            proposal = self._live(tenant_id=tenant_id, proposal_id=proposal_id)
            return deepcopy(proposal) if proposal is not None else None

    def get_proposal_by_token(self, *, tenant_id: str, token: str) -> Optional[ProposalRecord]:
        with self._lock:
            for proposal in self._proposals.values():
                if (
                    proposal.tenant_id == tenant_id
                    and proposal.token == token
                    and proposal.deleted_at is None
                ):
                    return deepcopy(proposal)
        return None

    def find_proposal_by_document_id(self, *, document_id: str) -> Optional[ProposalRecord]:
        with self._lock:
            for proposal in self._proposals.values():
                record = proposal.signing_record
                if (
                    proposal.deleted_at is None
                    and record is not None
                    and record.external_document_id == document_id
                ):
                    return deepcopy(proposal)
        return None

    def list_awaiting_signature(self, *, limit: int) -> list[ProposalRecord]:
        with self._lock:
            rows = [
                proposal
                for proposal in self._proposals.values()
                if proposal.deleted_at is None
                and proposal.status == "CONTRACT_SENT"
                and proposal.signing_record is not None
            ]
            rows = sorted(
                rows, key=lambda row: (row.signing_record.created_at, row.proposal_id)
            )
            return [deepcopy(row) for row in rows[:limit]]

    def mark_approved(
        self,
        *,
        tenant_id: str,
        proposal_id: str,
        approved_at: datetime,
        approval_metadata: dict[str, Any],
    ) -> bool:
        with self._lock:
            proposal = self._live(tenant_id=tenant_id, proposal_id=proposal_id)
            if proposal is None or proposal.approved_at is not None:
                return False
            proposal.approved_at = approved_at
            proposal.approval_metadata = deepcopy(approval_metadata)
            if proposal.status == "DRAFT":
                proposal.status = "APPROVED"
            return True

    def attach_signing_record(
        self,
        *,
        tenant_id: str,
        proposal_id: str,
        signing_record: SigningRecord,
    ) -> bool:
        with self._lock:
            proposal = self._live(tenant_id=tenant_id, proposal_id=proposal_id)
            if proposal is None or proposal.signing_record is not None:
                return False
            proposal.signing_record = deepcopy(signing_record)
            if proposal.status in ("DRAFT", "APPROVED"):
                proposal.status = "CONTRACT_SENT"
            return True

    def update_external_status(
        self,
        *,
        tenant_id: str,
        proposal_id: str,
        external_status: str,
        checked_at: datetime,
        signed_at: Optional[datetime],
    ) -> None:
        with self._lock:
            proposal = self._live(tenant_id=tenant_id, proposal_id=proposal_id)
            if proposal is None or proposal.signing_record is None:
                return
            record = proposal.signing_record
            record.external_status = external_status
            record.checked_at = checked_at
            if signed_at is not None:
                record.signed_at = record.signed_at or signed_at
                proposal.status = "SIGNED"

    def find_timeline_event(
        self, *, tenant_id: str, event_type: str, proposal_id: str
    ) -> Optional[TimelineEventRecord]:
        with self._lock:
            event = self._find_event(
                tenant_id=tenant_id, event_type=event_type, proposal_id=proposal_id
            )
            return deepcopy(event) if event is not None else None

    def append_timeline_event(self, event: TimelineEventRecord) -> bool:
        with self._lock:
            existing = self._find_event(
                tenant_id=event.tenant_id,
                event_type=event.event_type,
                proposal_id=event.proposal_id,
            )
            if existing is not None:
                return False
            self._timeline.append(deepcopy(event))
            return True

    def list_timeline_events(
        self, *, tenant_id: str, proposal_id: str
    ) -> list[TimelineEventRecord]:
        with self._lock:
            rows = [
                event
                for event in self._timeline
                if event.tenant_id == tenant_id and event.proposal_id == proposal_id
            ]
            rows = sorted(rows, key=lambda row: (row.occurred_at, row.event_id))
            return [deepcopy(row) for row in rows]

    def record_webhook_event(self, event: SigningWebhookEventRecord) -> bool:
        with self._lock:
            if event.payload_sha256 in self._webhook_events:
                return False
            self._webhook_events[event.payload_sha256] = deepcopy(event)
            return True

    def list_webhook_events(self) -> list[SigningWebhookEventRecord]:
        with self._lock:
            rows = sorted(
                self._webhook_events.values(), key=lambda row: (row.received_at, row.event_id)
            )
            return [deepcopy(row) for row in rows]

    def _live(self, *, tenant_id: str, proposal_id: str) -> Optional[ProposalRecord]:
        proposal = self._proposals.get(proposal_id)
        if proposal is None or proposal.tenant_id != tenant_id or proposal.deleted_at is not None:
            return None
        return proposal

    def _find_event(
        self, *, tenant_id: str, event_type: str, proposal_id: str
    ) -> Optional[TimelineEventRecord]:
        for event in self._timeline:
            if (
                event.tenant_id == tenant_id
                and event.event_type == event_type
                and event.proposal_id == proposal_id
            ):
                return event
        return None


class InMemoryCatalogRepository(CatalogRepository):
    """Catalog read model seeded directly; soft-deleted ids are hidden from every read."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._tenants: dict[str, TenantRecord] = {}
        self._parties: dict[str, PartyRecord] = {}
        self._commitments: dict[str, CommitmentRecord] = {}
        self._items: dict[str, CommitmentItemRecord] = {}
        self._offerings: dict[str, tuple[str, OfferingRecord]] = {}
        self._templates: dict[str, DeliverableTemplateRecord] = {}
        self._deleted: set[str] = set()

    def add_tenant(self, tenant: TenantRecord) -> None:
        with self._lock:
            self._tenants[tenant.tenant_id] = deepcopy(tenant)

    def add_party(self, party: PartyRecord) -> None:
        with self._lock:
            self._parties[party.party_id] = deepcopy(party)

    def add_commitment(self, commitment: CommitmentRecord) -> None:
        with self._lock:
            self._commitments[commitment.commitment_id] = deepcopy(commitment)

    def add_commitment_item(self, item: CommitmentItemRecord) -> None:
        with self._lock:
            self._items[item.item_id] = deepcopy(item)

    def add_offering(self, *, tenant_id: str, offering: OfferingRecord) -> None:
        with self._lock:
            self._offerings[offering.offering_id] = (tenant_id, deepcopy(offering))

    def add_deliverable_template(self, template: DeliverableTemplateRecord) -> None:
        with self._lock:
            self._templates[template.template_id] = deepcopy(template)

    def soft_delete(self, *, record_id: str) -> None:
        with self._lock:
            self._deleted.add(record_id)

    def get_tenant_by_slug(self, *, slug: str) -> Optional[TenantRecord]:
        with self._lock:
            for tenant in self._tenants.values():
                if tenant.slug == slug and tenant.tenant_id not in self._deleted:
                    return deepcopy(tenant)
        return None

    def get_party(self, *, tenant_id: str, party_id: str) -> Optional[PartyRecord]:
        with self._lock:
            party = self._parties.get(party_id)
            if party is None or party.tenant_id != tenant_id or party_id in self._deleted:
                return None
            return deepcopy(party)

    def list_commitments(
        self, *, tenant_id: str, commitment_ids: Sequence[str]
    ) -> list[CommitmentRecord]:
        wanted = set(commitment_ids)
        with self._lock:
            return [
                deepcopy(row)
                for row in self._commitments.values()
                if row.tenant_id == tenant_id
                and row.commitment_id in wanted
                and row.commitment_id not in self._deleted
            ]

    def list_commitment_items(
        self, *, tenant_id: str, commitment_ids: Sequence[str]
    ) -> list[CommitmentItemRecord]:
        wanted = set(commitment_ids)
        with self._lock:
            return [
                deepcopy(row)
                for row in self._items.values()
                if row.tenant_id == tenant_id
                and row.commitment_id in wanted
                and row.item_id not in self._deleted
            ]

    def list_offerings(
        self, *, tenant_id: str, offering_ids: Sequence[str]
    ) -> list[OfferingRecord]:
        wanted = set(offering_ids)
        with self._lock:
            return [
                deepcopy(offering)
                for owner, offering in self._offerings.values()
                if owner == tenant_id
                and offering.offering_id in wanted
                and offering.offering_id not in self._deleted
            ]

    def list_deliverable_templates(
        self, *, tenant_id: str, offering_ids: Sequence[str]
    ) -> list[DeliverableTemplateRecord]:
        wanted = set(offering_ids)
        with self._lock:
            return [
                deepcopy(row)
                for row in self._templates.values()
                if row.tenant_id == tenant_id
                and row.offering_entity_id in wanted
                and row.template_id not in self._deleted
            ]
