import asyncio
import sys

import pytest

from scripts import reconcile_signing_status
from src.api.routers import public_proposals_config
from src.infrastructure.proposals import InMemoryCatalogRepository, InMemoryProposalRepository
from tests.factories import FakeSigningGateway, proposal, signing_record


@pytest.fixture
def sweep_runtime(monkeypatch):
    repository = InMemoryProposalRepository()
    repository.create_proposal(proposal(signing_record=signing_record()))
    repository.create_proposal(
        proposal(
            proposal_id="pp_0002",
            token="tok_0002",
            signing_record=signing_record(document_id="doc_0002"),
        )
    )
    gateway = FakeSigningGateway(status="signed")
    monkeypatch.setattr(
        public_proposals_config,
        "build_repositories",
        lambda: (repository, InMemoryCatalogRepository()),
    )
    monkeypatch.setattr(public_proposals_config, "build_signing_gateway", lambda: gateway)
    return repository, gateway


def test_sweep_marks_signed_documents(sweep_runtime):
    repository, gateway = sweep_runtime

    counts = asyncio.run(reconcile_signing_status._sweep(limit=10))

    assert counts == {"checked": 2, "signed": 2, "unchanged": 0}
    assert gateway.status_calls == ["doc_0001", "doc_0002"]
    assert repository.list_awaiting_signature(limit=10) == []


def test_sweep_requires_signing_token(monkeypatch):
    monkeypatch.setattr(public_proposals_config, "build_signing_gateway", lambda: None)

    with pytest.raises(RuntimeError, match="AUTENTIQUE_API_TOKEN_REQUIRED"):
        asyncio.run(reconcile_signing_status._sweep(limit=10))


def test_main_prints_sweep_counts(sweep_runtime, monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["reconcile_signing_status.py", "--limit", "1"])

    assert reconcile_signing_status.main() == 0
    assert "checked=1 signed=1 unchanged=0" in capsys.readouterr().out


def test_main_rejects_non_positive_limit(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["reconcile_signing_status.py", "--limit", "0"])

    with pytest.raises(SystemExit):
        reconcile_signing_status.main()
