import logging
from datetime import datetime, timezone
from typing import Optional

from src.core.proposals.audit import AuditRecorder
from src.core.proposals.models import ProposalRecord
from src.core.proposals.repository import ProposalRepository
from src.core.signing.gateway import SigningGateway

logger = logging.getLogger(__name__)

SIGNED_EXTERNAL_STATUSES = frozenset({"signed", "completed", "closed", "finalized"})
DEFAULT_SWEEP_LIMIT = 100


def is_signed_status(external_status: Optional[str]) -> bool:
    return (external_status or "").strip().lower() in SIGNED_EXTERNAL_STATUSES


class SigningStatusReconciler:
    """Pull provider document status into the local proposal row.

    Polling is best effort: a failed poll leaves the row untouched, and a failed write
    during a read-path reconcile is logged instead of failing the read.
    """

    def __init__(
        self,
        *,
        repository: ProposalRepository,
        gateway: Optional[SigningGateway],
        audit: AuditRecorder,
    ) -> None:
        self._repository = repository
        self._gateway = gateway
        self._audit = audit

    def needs_reconcile(self, proposal: ProposalRecord) -> bool:
        return (
            self._gateway is not None
            and proposal.status != "SIGNED"
            and proposal.signing_record is not None
            and bool(proposal.signing_record.external_document_id)
        )

    async def reconcile(self, proposal: ProposalRecord) -> ProposalRecord:
        if not self.needs_reconcile(proposal):
            return proposal
        document_id = proposal.signing_record.external_document_id
        external_status = await self._gateway.get_status(document_id=document_id)
        if external_status is None:
            return proposal
        try:
            return self.apply_external_status(
                proposal, external_status=external_status, observed_at=_utc_now()
            )
        except Exception:
            logger.exception(
                "Signing status reconciliation failed. ProposalId=%s DocumentId=%s",
                proposal.proposal_id,
                document_id,
            )
            return proposal

    def apply_external_status(
        self,
        proposal: ProposalRecord,
        *,
        external_status: str,
        observed_at: datetime,
        source: str = "poll",
    ) -> ProposalRecord:
        if proposal.signing_record is None:
            return proposal
        normalized = external_status.strip().lower()
        signed = is_signed_status(normalized)
        self._repository.update_external_status(
            tenant_id=proposal.tenant_id,
            proposal_id=proposal.proposal_id,
            external_status=normalized,
            checked_at=observed_at,
            signed_at=observed_at if signed else None,
        )

        updated = proposal.model_copy(deep=True)
        record = updated.signing_record
        record.external_status = normalized
        record.checked_at = observed_at
        if signed:
            record.signed_at = record.signed_at or observed_at
            updated.status = "SIGNED"
            inserted = self._audit.record_once(
                tenant_id=proposal.tenant_id,
                event_type="contract_signed",
                proposal_id=proposal.proposal_id,
                message="Contract signed.",
                occurred_at=observed_at,
                meta={
                    "party_id": proposal.party_id,
                    "document_id": record.external_document_id,
                    "external_status": normalized,
                    "source": source,
                },
            )
            if inserted:
                logger.info(
                    "Proposal signed. ProposalId=%s DocumentId=%s Source=%s",
                    proposal.proposal_id,
                    record.external_document_id,
                    source,
                )
        return updated

    async def sweep(self, *, limit: int = DEFAULT_SWEEP_LIMIT) -> dict[str, int]:
        counts = {"checked": 0, "signed": 0, "unchanged": 0}
        if self._gateway is None:
            return counts
        for proposal in self._repository.list_awaiting_signature(limit=limit):
            counts["checked"] += 1
            refreshed = await self.reconcile(proposal)
            if refreshed.status == "SIGNED":
                counts["signed"] += 1
            else:
                counts["unchanged"] += 1
        logger.info(
            "Signing status sweep finished. Checked=%s Signed=%s Unchanged=%s",
            counts["checked"],
            counts["signed"],
            counts["unchanged"],
        )
        return counts


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
