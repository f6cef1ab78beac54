import asyncio
import logging

from src.core.proposals import AuditRecorder, SigningStatusReconciler
from src.core.proposals.reconciliation import is_signed_status
from tests.factories import (
    BASE_TIME,
    PROPOSAL_ID,
    TENANT_ID,
    FakeSigningGateway,
    at,
    seed_proposal,
    signing_record,
)


def _reconciler(repository, gateway) -> SigningStatusReconciler:
    return SigningStatusReconciler(
        repository=repository, gateway=gateway, audit=AuditRecorder(repository=repository)
    )


def test_is_signed_status_accepts_terminal_provider_statuses():
    assert is_signed_status("signed")
    assert is_signed_status(" COMPLETED ")
    assert is_signed_status("finalized")
    assert not is_signed_status("pending")
    assert not is_signed_status(None)


def test_reconcile_skips_proposals_without_document(proposal_repository):
    proposal = seed_proposal(proposal_repository, approved_at=BASE_TIME)
    gateway = FakeSigningGateway(status="signed")

    refreshed = asyncio.run(_reconciler(proposal_repository, gateway).reconcile(proposal))

    assert refreshed == proposal
    assert gateway.status_calls == []


def test_reconcile_without_gateway_is_a_no_op(proposal_repository):
    proposal = seed_proposal(
        proposal_repository, approved_at=BASE_TIME, signing_record=signing_record()
    )

    refreshed = asyncio.run(_reconciler(proposal_repository, None).reconcile(proposal))

    assert refreshed.status == "CONTRACT_SENT"


def test_reconcile_records_pending_status_without_signing(proposal_repository):
    proposal = seed_proposal(
        proposal_repository, approved_at=BASE_TIME, signing_record=signing_record()
    )

    refreshed = asyncio.run(
        _reconciler(proposal_repository, FakeSigningGateway(status="pending")).reconcile(proposal)
    )

    assert refreshed.status == "CONTRACT_SENT"
    stored = proposal_repository.get_proposal(tenant_id=TENANT_ID, proposal_id=PROPOSAL_ID)
    assert stored.signing_record.external_status == "pending"
    assert stored.signing_record.checked_at is not None
    assert stored.signing_record.signed_at is None
    assert (
        proposal_repository.list_timeline_events(tenant_id=TENANT_ID, proposal_id=PROPOSAL_ID)
        == []
    )


def test_reconcile_keeps_row_untouched_when_poll_fails(proposal_repository):
    proposal = seed_proposal(
        proposal_repository, approved_at=BASE_TIME, signing_record=signing_record()
    )

    refreshed = asyncio.run(
        _reconciler(proposal_repository, FakeSigningGateway(status=None)).reconcile(proposal)
    )

    assert refreshed == proposal
    stored = proposal_repository.get_proposal(tenant_id=TENANT_ID, proposal_id=PROPOSAL_ID)
    assert stored.signing_record.checked_at is None


def test_reconcile_logs_and_returns_original_when_persistence_fails(
    proposal_repository, monkeypatch, caplog
):
    proposal = seed_proposal(
        proposal_repository, approved_at=BASE_TIME, signing_record=signing_record()
    )

    def _broken_update(**_kwargs):
        raise RuntimeError("db down")

    monkeypatch.setattr(proposal_repository, "update_external_status", _broken_update)

    with caplog.at_level(logging.ERROR):
        refreshed = asyncio.run(
            _reconciler(proposal_repository, FakeSigningGateway(status="signed")).reconcile(
                proposal
            )
        )

    assert refreshed == proposal
    assert "Signing status reconciliation failed" in caplog.text


def test_apply_external_status_keeps_first_signed_at(proposal_repository):
    proposal = seed_proposal(
        proposal_repository, approved_at=BASE_TIME, signing_record=signing_record()
    )
    reconciler = _reconciler(proposal_repository, FakeSigningGateway())

    reconciler.apply_external_status(proposal, external_status="signed", observed_at=at(20))
    reconciler.apply_external_status(proposal, external_status="completed", observed_at=at(30))

    stored = proposal_repository.get_proposal(tenant_id=TENANT_ID, proposal_id=PROPOSAL_ID)
    assert stored.status == "SIGNED"
    assert stored.signing_record.signed_at == at(20)
    assert stored.signing_record.external_status == "completed"
    events = proposal_repository.list_timeline_events(
        tenant_id=TENANT_ID, proposal_id=PROPOSAL_ID
    )
    assert len(events) == 1
    assert events[0].meta["source"] == "poll"


def test_sweep_counts_checked_signed_and_unchanged(proposal_repository):
    seed_proposal(proposal_repository, approved_at=BASE_TIME, signing_record=signing_record())
    seed_proposal(
        proposal_repository,
        proposal_id="pp_0002",
        token="tok_2",
        approved_at=BASE_TIME,
        signing_record=signing_record(document_id="doc_0002"),
    )
    seed_proposal(proposal_repository, proposal_id="pp_0003", token="tok_3")

    class _PerDocumentGateway(FakeSigningGateway):
        async def get_status(self, *, document_id: str):
            self.status_calls.append(document_id)
            return "signed" if document_id == "doc_0001" else "pending"

    gateway = _PerDocumentGateway()
    counts = asyncio.run(_reconciler(proposal_repository, gateway).sweep(limit=10))

    assert counts == {"checked": 2, "signed": 1, "unchanged": 1}
    assert sorted(gateway.status_calls) == ["doc_0001", "doc_0002"]
    assert proposal_repository.list_awaiting_signature(limit=10)[0].proposal_id == "pp_0002"


def test_sweep_without_gateway_checks_nothing(proposal_repository):
    seed_proposal(proposal_repository, approved_at=BASE_TIME, signing_record=signing_record())

    counts = asyncio.run(_reconciler(proposal_repository, None).sweep())

    assert counts == {"checked": 0, "signed": 0, "unchanged": 0}


def test_audit_recorder_records_each_milestone_once(proposal_repository):
    audit = AuditRecorder(repository=proposal_repository)

    first = audit.record_once(
        tenant_id=TENANT_ID,
        event_type="contract_sent",
        proposal_id=PROPOSAL_ID,
        message="Contract issued for signature.",
        occurred_at=at(10),
        meta={"document_id": "doc_0001"},
    )
    second = audit.record_once(
        tenant_id=TENANT_ID,
        event_type="contract_sent",
        proposal_id=PROPOSAL_ID,
        message="Contract issued for signature.",
        occurred_at=at(11),
    )

    assert first is True
    assert second is False
    events = proposal_repository.list_timeline_events(
        tenant_id=TENANT_ID, proposal_id=PROPOSAL_ID
    )
    assert len(events) == 1
    assert events[0].event_id.startswith("tle_")
    assert events[0].meta == {"proposal_id": PROPOSAL_ID, "document_id": "doc_0001"}
