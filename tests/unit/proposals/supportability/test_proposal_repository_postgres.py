import pytest

import src.infrastructure.proposals.postgres as postgres_module
from src.core.proposals.models import SigningWebhookEventRecord, TimelineEventRecord
from src.infrastructure.proposals.postgres import (
    PostgresCatalogRepository,
    PostgresProposalRepository,
)
from tests.factories import (
    BASE_TIME,
    PROPOSAL_ID,
    TENANT_ID,
    TOKEN,
    at,
    proposal,
    signing_record,
)

_PROPOSAL_COLUMNS = [column.strip() for column in postgres_module._PROPOSAL_COLUMNS.split(",")]
_TIMELINE_COLUMNS = [column.strip() for column in postgres_module._TIMELINE_COLUMNS.split(",")]


class _FakeCursor:
    def __init__(self, row=None, rows=None, rowcount=0):
        self._row = row
        self._rows = rows or []
        self.rowcount = rowcount

    def fetchone(self):
        return self._row

    def fetchall(self):
        return list(self._rows)


class _FakeConnection:
    def __init__(self):
        self.proposals: dict[str, dict] = {}
        self.timeline: list[dict] = []
        self.webhooks: dict[str, dict] = {}
        self.catalog: dict[str, list[dict]] = {}
        self.schema_migrations = {}
        self.commit_count = 0

    def execute(self, query, args=None):
        sql = " ".join(str(query).split())
        if sql.startswith("SELECT pg_advisory") or sql.startswith("CREATE"):
            return _FakeCursor()
        if "FROM schema_migrations" in sql:
            return _FakeCursor(rows=[])
        if "INSERT INTO schema_migrations" in sql:
            self.schema_migrations[args[0]] = args[2]
            return _FakeCursor()
        if sql.startswith("INSERT INTO party_proposals"):
            row = dict(zip(_PROPOSAL_COLUMNS, args))
            self.proposals[row["proposal_id"]] = row
            return _FakeCursor(rowcount=1)
        if sql.startswith("SELECT") and "FROM party_proposals" in sql:
            return self._select_proposals(sql, args)
        if sql.startswith("UPDATE party_proposals SET approved_at"):
            return self._mark_approved(args)
        if sql.startswith("UPDATE party_proposals SET external_document_id"):
            return self._attach(args)
        if sql.startswith("UPDATE party_proposals SET external_status"):
            return self._update_status(sql, args)
        if sql.startswith("INSERT INTO proposal_timeline_events"):
            row = dict(zip(_TIMELINE_COLUMNS, args))
            key = (row["tenant_id"], row["event_type"], row["proposal_id"])
            if any(
                (event["tenant_id"], event["event_type"], event["proposal_id"]) == key
                for event in self.timeline
            ):
                return _FakeCursor(rowcount=0)
            self.timeline.append(row)
            return _FakeCursor(rowcount=1)
        if "FROM proposal_timeline_events" in sql and "event_type = %s" in sql:
            tenant_id, event_type, proposal_id = args
            row = next(
                (
                    event
                    for event in self.timeline
                    if (event["tenant_id"], event["event_type"], event["proposal_id"])
                    == (tenant_id, event_type, proposal_id)
                ),
                None,
            )
            return _FakeCursor(row=row)
        if "FROM proposal_timeline_events" in sql:
            tenant_id, proposal_id = args
            rows = [
                event
                for event in self.timeline
                if event["tenant_id"] == tenant_id and event["proposal_id"] == proposal_id
            ]
            return _FakeCursor(rows=sorted(rows, key=lambda r: (r["occurred_at"], r["event_id"])))
        if sql.startswith("INSERT INTO signing_webhook_events"):
            if args[6] in self.webhooks:
                return _FakeCursor(rowcount=0)
            self.webhooks[args[6]] = {"event_id": args[0], "payload_json": args[7]}
            return _FakeCursor(rowcount=1)
        for table, rows in self.catalog.items():
            if f"FROM {table} " in sql:
                return self._select_catalog(sql, args, rows)
        raise AssertionError(f"unexpected SQL: {sql}")

    def commit(self):
        self.commit_count += 1

    def rollback(self):
        return None

    def close(self):
        return None

    def _live(self, tenant_id, proposal_id):
        row = self.proposals.get(proposal_id)
        if row is None or row["tenant_id"] != tenant_id or row["deleted_at"] is not None:
            return None
        return row

    def _select_proposals(self, sql, args):
        rows = [row for row in self.proposals.values() if row["deleted_at"] is None]
        if "external_document_id = %s" in sql:
            rows = [row for row in rows if row["external_document_id"] == args[0]]
            return _FakeCursor(row=rows[0] if rows else None)
        if "status = 'CONTRACT_SENT'" in sql:
            rows = [
                row
                for row in rows
                if row["status"] == "CONTRACT_SENT" and row["external_document_id"] is not None
            ]
            rows = sorted(rows, key=lambda r: (r["signing_created_at"], r["proposal_id"]))
            return _FakeCursor(rows=rows[: args[0]])
        field = "token" if "token = %s" in sql else "proposal_id"
        rows = [row for row in rows if row["tenant_id"] == args[0] and row[field] == args[1]]
        return _FakeCursor(row=rows[0] if rows else None)

    def _mark_approved(self, args):
        approved_at, approval_json, tenant_id, proposal_id = args
        row = self._live(tenant_id, proposal_id)
        if row is None or row["approved_at"] is not None:
            return _FakeCursor(rowcount=0)
        row["approved_at"] = approved_at
        row["approval_json"] = approval_json
        if row["status"] == "DRAFT":
            row["status"] = "APPROVED"
        return _FakeCursor(rowcount=1)

    def _attach(self, args):
        *values, tenant_id, proposal_id = args
        row = self._live(tenant_id, proposal_id)
        if row is None or row["signing_link"] is not None:
            return _FakeCursor(rowcount=0)
        row.update(dict(zip(_PROPOSAL_COLUMNS[8:19], values)))
        if row["status"] in ("DRAFT", "APPROVED"):
            row["status"] = "CONTRACT_SENT"
        return _FakeCursor(rowcount=1)

    def _update_status(self, sql, args):
        if "signed_at = COALESCE" in sql:
            external_status, checked_at, signed_at, tenant_id, proposal_id = args
        else:
            external_status, checked_at, tenant_id, proposal_id = args
            signed_at = None
        row = self._live(tenant_id, proposal_id)
        if row is None:
            return _FakeCursor(rowcount=0)
        row["external_status"] = external_status
        row["status_checked_at"] = checked_at
        if signed_at is not None:
            row["signed_at"] = row["signed_at"] or signed_at
            row["status"] = "SIGNED"
        return _FakeCursor(rowcount=1)

    def _select_catalog(self, sql, args, rows):
        rows = [row for row in rows if row.get("deleted_at") is None]
        if "slug = %s" in sql:
            rows = [row for row in rows if row["slug"] == args[0]]
            return _FakeCursor(row=rows[0] if rows else None)
        rows = [row for row in rows if row["tenant_id"] == args[0]]
        if "ANY(%s)" in sql:
            wanted = set(args[1])
            key = next(
                column
                for column in ("commitment_id", "offering_entity_id", "offering_id")
                if f"{column} = ANY(%s)" in sql
            )
            rows = [row for row in rows if row[key] in wanted]
            return _FakeCursor(rows=rows)
        rows = [row for row in rows if row["party_id"] == args[1]]
        return _FakeCursor(row=rows[0] if rows else None)


def _build_repository(monkeypatch, repository_type=PostgresProposalRepository):
    connection = _FakeConnection()
    monkeypatch.setattr(postgres_module, "find_spec", lambda _name: object())
    monkeypatch.setattr(repository_type, "_connect", lambda self: connection)
    return repository_type(dsn="postgresql://u:p@localhost:5432/proposals"), connection


def test_postgres_repository_requires_dsn():
    with pytest.raises(RuntimeError, match="PROPOSAL_POSTGRES_DSN_REQUIRED"):
        PostgresProposalRepository(dsn="")


def test_postgres_repository_requires_driver(monkeypatch):
    monkeypatch.setattr(postgres_module, "find_spec", lambda _name: None)

    with pytest.raises(RuntimeError, match="PROPOSAL_POSTGRES_DRIVER_MISSING"):
        PostgresProposalRepository(dsn="postgresql://u:p@localhost:5432/proposals")


def test_postgres_repository_applies_proposal_migrations_on_init(monkeypatch):
    _, connection = _build_repository(monkeypatch)

    assert list(connection.schema_migrations) == ["proposals:0001"]
    assert connection.commit_count == 1


def test_postgres_repository_roundtrips_proposal_by_id_and_token(monkeypatch):
    repository, connection = _build_repository(monkeypatch)
    repository.create_proposal(
        proposal(approval_metadata={"contract_term": "12 months", "payment_method": "PIX"})
    )

    by_id = repository.get_proposal(tenant_id=TENANT_ID, proposal_id=PROPOSAL_ID)
    by_token = repository.get_proposal_by_token(tenant_id=TENANT_ID, token=TOKEN)

    assert by_id == by_token
    assert by_id.selected_ids == ["cm_social", "cm_site"]
    assert by_id.signing_record is None
    assert connection.proposals[PROPOSAL_ID]["approval_json"] == (
        '{"contract_term":"12 months","payment_method":"PIX"}'
    )
    assert repository.get_proposal_by_token(tenant_id="tn_other", token=TOKEN) is None


def test_postgres_repository_approves_only_once(monkeypatch):
    repository, _ = _build_repository(monkeypatch)
    repository.create_proposal(proposal())

    first = repository.mark_approved(
        tenant_id=TENANT_ID,
        proposal_id=PROPOSAL_ID,
        approved_at=at(5),
        approval_metadata={"approval": {"ip": "203.0.113.7"}},
    )
    second = repository.mark_approved(
        tenant_id=TENANT_ID,
        proposal_id=PROPOSAL_ID,
        approved_at=at(6),
        approval_metadata={},
    )

    assert (first, second) == (True, False)
    stored = repository.get_proposal(tenant_id=TENANT_ID, proposal_id=PROPOSAL_ID)
    assert stored.status == "APPROVED"
    assert stored.approved_at == at(5)
    assert stored.approval_metadata == {"approval": {"ip": "203.0.113.7"}}


def test_postgres_repository_attaches_signing_record_once_and_reconciles(monkeypatch):
    repository, _ = _build_repository(monkeypatch)
    repository.create_proposal(proposal(approved_at=BASE_TIME))

    first = repository.attach_signing_record(
        tenant_id=TENANT_ID, proposal_id=PROPOSAL_ID, signing_record=signing_record()
    )
    second = repository.attach_signing_record(
        tenant_id=TENANT_ID,
        proposal_id=PROPOSAL_ID,
        signing_record=signing_record(signing_link="https://assina.ae/late"),
    )

    assert (first, second) == (True, False)
    awaiting = repository.list_awaiting_signature(limit=10)
    assert [row.proposal_id for row in awaiting] == [PROPOSAL_ID]
    found = repository.find_proposal_by_document_id(document_id="doc_0001")
    assert found.status == "CONTRACT_SENT"
    assert found.signing_record == signing_record()

    repository.update_external_status(
        tenant_id=TENANT_ID,
        proposal_id=PROPOSAL_ID,
        external_status="pending",
        checked_at=at(15),
        signed_at=None,
    )
    repository.update_external_status(
        tenant_id=TENANT_ID,
        proposal_id=PROPOSAL_ID,
        external_status="signed",
        checked_at=at(20),
        signed_at=at(20),
    )

    stored = repository.get_proposal(tenant_id=TENANT_ID, proposal_id=PROPOSAL_ID)
    assert stored.status == "SIGNED"
    assert stored.signing_record.checked_at == at(20)
    assert stored.signing_record.signed_at == at(20)
    assert repository.list_awaiting_signature(limit=10) == []


def test_postgres_repository_timeline_events_are_unique_per_milestone(monkeypatch):
    repository, _ = _build_repository(monkeypatch)

    def _event(event_id: str) -> TimelineEventRecord:
        return TimelineEventRecord(
            event_id=event_id,
            tenant_id=TENANT_ID,
            event_type="contract_signed",
            message="Contract signed.",
            occurred_at=at(20),
            proposal_id=PROPOSAL_ID,
            meta={"source": "webhook"},
        )

    assert repository.append_timeline_event(_event("tle_1")) is True
    assert repository.append_timeline_event(_event("tle_2")) is False
    found = repository.find_timeline_event(
        tenant_id=TENANT_ID, event_type="contract_signed", proposal_id=PROPOSAL_ID
    )
    assert found.event_id == "tle_1"
    assert found.meta == {"source": "webhook"}
    assert [
        event.event_id
        for event in repository.list_timeline_events(tenant_id=TENANT_ID, proposal_id=PROPOSAL_ID)
    ] == ["tle_1"]


def test_postgres_repository_dedupes_webhook_payloads(monkeypatch):
    repository, connection = _build_repository(monkeypatch)
    event = SigningWebhookEventRecord(
        event_id="swe_1",
        document_id="doc_0001",
        payload_sha256="a" * 64,
        payload={"event": "document.signed"},
        received_at=at(20),
    )

    assert repository.record_webhook_event(event) is True
    assert repository.record_webhook_event(event.model_copy(update={"event_id": "swe_2"})) is False
    assert connection.webhooks["a" * 64]["payload_json"] == '{"event":"document.signed"}'


def test_postgres_catalog_repository_reads_live_rows(monkeypatch):
    repository, connection = _build_repository(monkeypatch, PostgresCatalogRepository)
    connection.catalog = {
        "tenants": [
            {
                "tenant_id": TENANT_ID,
                "slug": "acme",
                "name": "Acme Marketing",
                "company_json": '{"tax_id":"12345678000190"}',
                "contract_templates_json": '[{"id":"tpl_1","name":"Std","body":"Hi"},{"name":"x"}]',
                "deleted_at": None,
            }
        ],
        "party_entities": [
            {
                "party_id": "ent_1",
                "tenant_id": TENANT_ID,
                "display_name": None,
                "metadata_json": '{"email":"a@b.example"}',
                "deleted_at": None,
            }
        ],
        "commitment_items": [
            {
                "item_id": "ci_1",
                "tenant_id": TENANT_ID,
                "commitment_id": "cm_1",
                "offering_entity_id": "off_1",
                "quantity": None,
                "metadata_json": "{}",
                "created_at": at(1).isoformat(),
                "deleted_at": None,
            },
            {
                "item_id": "ci_gone",
                "tenant_id": TENANT_ID,
                "commitment_id": "cm_1",
                "offering_entity_id": "off_1",
                "quantity": 2,
                "metadata_json": "{}",
                "created_at": at(2).isoformat(),
                "deleted_at": at(3).isoformat(),
            },
        ],
    }

    tenant = repository.get_tenant_by_slug(slug="acme")
    party = repository.get_party(tenant_id=TENANT_ID, party_id="ent_1")
    items = repository.list_commitment_items(tenant_id=TENANT_ID, commitment_ids=["cm_1"])

    assert tenant.company.tax_id == "12345678000190"
    assert [template.id for template in tenant.contract_templates] == ["tpl_1"]
    assert party.display_name == ""
    assert party.metadata == {"email": "a@b.example"}
    assert [(item.item_id, item.quantity) for item in items] == [("ci_1", 1.0)]
    assert repository.get_tenant_by_slug(slug="missing") is None
