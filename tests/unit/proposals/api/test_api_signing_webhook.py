import json

import pytest
from fastapi.testclient import TestClient

from src.api.main import app
from src.api.routers import public_proposals_config
from tests.factories import BASE_TIME, PROPOSAL_ID, TENANT_ID, seed_proposal, signing_record

SECRET = "whsec_api"
SIGNED_BODY = json.dumps(
    {"event": "document.signed", "document": {"id": "doc_0001", "status": "signed"}}
)


@pytest.fixture
def repository(monkeypatch, proposal_repository, catalog, gateway):
    monkeypatch.setenv("AUTENTIQUE_WEBHOOK_SECRET", SECRET)
    monkeypatch.setattr(
        public_proposals_config, "build_repositories", lambda: (proposal_repository, catalog)
    )
    monkeypatch.setattr(public_proposals_config, "build_signing_gateway", lambda: gateway)
    seed_proposal(proposal_repository, approved_at=BASE_TIME, signing_record=signing_record())
    return proposal_repository


def test_webhook_is_disabled_without_secret(repository, monkeypatch):
    monkeypatch.delenv("AUTENTIQUE_WEBHOOK_SECRET")

    with TestClient(app) as client:
        response = client.post("/webhooks/autentique", content=SIGNED_BODY)

    assert response.status_code == 404
    assert response.json() == {"ok": False, "error": "signing_webhook_disabled"}


def test_webhook_with_header_secret_signs_proposal_and_dedupes(repository):
    with TestClient(app) as client:
        first = client.post(
            "/webhooks/autentique",
            content=SIGNED_BODY,
            headers={"x-webhook-secret": SECRET},
        )
        second = client.post(
            "/webhooks/autentique",
            content=SIGNED_BODY,
            headers={"x-webhook-secret": SECRET},
        )

    assert first.status_code == 200
    assert first.json() == {"ok": True}
    assert second.json() == {"ok": True, "duplicate": True}
    stored = repository.get_proposal(tenant_id=TENANT_ID, proposal_id=PROPOSAL_ID)
    assert stored.status == "SIGNED"
    assert len(repository.list_webhook_events()) == 1


@pytest.mark.parametrize("query_name", ["secret", "token"])
def test_webhook_accepts_query_secret(repository, query_name):
    with TestClient(app) as client:
        response = client.post(
            "/webhooks/autentique", params={query_name: SECRET}, content=SIGNED_BODY
        )

    assert response.status_code == 200
    stored = repository.get_proposal(tenant_id=TENANT_ID, proposal_id=PROPOSAL_ID)
    assert stored.status == "SIGNED"


def test_webhook_rejects_bad_credentials(repository):
    with TestClient(app) as client:
        response = client.post(
            "/webhooks/autentique",
            content=SIGNED_BODY,
            headers={"x-autentique-signature": "bad", "x-autentique-timestamp": "1"},
        )

    assert response.status_code == 401
    assert response.json() == {
        "ok": False,
        "error": "unauthorized",
        "detail": {
            "reason": "missing_or_invalid_auth",
            "has_signature": True,
            "has_timestamp": True,
            "has_query_secret": False,
        },
    }
    stored = repository.get_proposal(tenant_id=TENANT_ID, proposal_id=PROPOSAL_ID)
    assert stored.status == "CONTRACT_SENT"


def test_webhook_rejects_empty_body(repository):
    with TestClient(app) as client:
        response = client.post("/webhooks/autentique", headers={"x-webhook-secret": SECRET})

    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "empty_body"}


def test_webhook_rejects_invalid_json(repository):
    with TestClient(app) as client:
        response = client.post(
            "/webhooks/autentique", content="{oops", headers={"x-webhook-secret": SECRET}
        )

    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "invalid_payload"}
