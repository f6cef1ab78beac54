import json
from contextlib import closing
from datetime import datetime
from importlib.util import find_spec
from typing import Any, Optional, Sequence

from src.core.catalog.models import (
    CommitmentItemRecord,
    CommitmentRecord,
    ContractTemplate,
    DeliverableTemplateRecord,
    OfferingRecord,
    PartyRecord,
    TenantCompany,
    TenantRecord,
)
from src.core.proposals.models import (
    ProposalRecord,
    SigningRecord,
    SigningWebhookEventRecord,
    TimelineEventRecord,
)
from src.infrastructure.postgres_migrations import apply_postgres_migrations

_PROPOSAL_COLUMNS = """
    proposal_id,
    tenant_id,
    party_id,
    token,
    selected_ids_json,
    status,
    approved_at,
    approval_json,
    external_document_id,
    external_signer_id,
    signing_link,
    external_status,
    content_hash,
    contract_template_id,
    contract_template_name,
    document_name,
    signing_created_at,
    status_checked_at,
    signed_at,
    created_at,
    deleted_at
"""

_TIMELINE_COLUMNS = """
    event_id,
    tenant_id,
    event_type,
    actor_type,
    message,
    occurred_at,
    proposal_id,
    meta_json
"""


class PostgresProposalRepository:
    def __init__(self, *, dsn: str) -> None:
        if not dsn:
            raise RuntimeError("PROPOSAL_POSTGRES_DSN_REQUIRED")
        if find_spec("psycopg") is None:
            raise RuntimeError("PROPOSAL_POSTGRES_DRIVER_MISSING")
        self._dsn = dsn
        self._init_db()

    def create_proposal(self, proposal: ProposalRecord) -> None:
        query = f"""
            INSERT INTO party_proposals ({_PROPOSAL_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                    %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        record = proposal.signing_record
        with closing(self._connect()) as connection:
            connection.execute(
                query,
                (
                    proposal.proposal_id,
                    proposal.tenant_id,
                    proposal.party_id,
                    proposal.token,
                    _json_dump(proposal.selected_ids),
                    proposal.status,
                    _optional_iso(proposal.approved_at),
                    _json_dump(proposal.approval_metadata),
                    *_signing_values(record),
                    proposal.created_at.isoformat(),
                    _optional_iso(proposal.deleted_at),
                ),
            )
            connection.commit()

    def get_proposal(self, *, tenant_id: str, proposal_id: str) -> Optional[ProposalRecord]:
        query = f"""
            SELECT {_PROPOSAL_COLUMNS}
            FROM party_proposals
            WHERE tenant_id = %s AND proposal_id = %s AND deleted_at IS NULL
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (tenant_id, proposal_id)).fetchone()
        return _to_proposal(row)

    def get_proposal_by_token(self, *, tenant_id: str, token: str) -> Optional[ProposalRecord]:
        query = f"""
            SELECT {_PROPOSAL_COLUMNS}
            FROM party_proposals
            WHERE tenant_id = %s AND token = %s AND deleted_at IS NULL
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (tenant_id, token)).fetchone()
        return _to_proposal(row)

    def find_proposal_by_document_id(self, *, document_id: str) -> Optional[ProposalRecord]:
        query = f"""
            SELECT {_PROPOSAL_COLUMNS}
            FROM party_proposals
            WHERE external_document_id = %s AND deleted_at IS NULL
            ORDER BY created_at ASC
            LIMIT 1
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (document_id,)).fetchone()
        return _to_proposal(row)

    def list_awaiting_signature(self, *, limit: int) -> list[ProposalRecord]:
        query = f"""
            SELECT {_PROPOSAL_COLUMNS}
            FROM party_proposals
            WHERE status = 'CONTRACT_SENT'
              AND external_document_id IS NOT NULL
              AND deleted_at IS NULL
            ORDER BY signing_created_at ASC, proposal_id ASC
            LIMIT %s
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, (limit,)).fetchall()
        return [_to_proposal(row) for row in rows]

    def mark_approved(
        self,
        *,
        tenant_id: str,
        proposal_id: str,
        approved_at: datetime,
        approval_metadata: dict[str, Any],
    ) -> bool:
        query = """
            UPDATE party_proposals
            SET approved_at = %s,
                approval_json = %s,
                status = CASE WHEN status = 'DRAFT' THEN 'APPROVED' ELSE status END
            WHERE tenant_id = %s
              AND proposal_id = %s
              AND approved_at IS NULL
              AND deleted_at IS NULL
        """
        with closing(self._connect()) as connection:
            cursor = connection.execute(
                query,
                (
                    approved_at.isoformat(),
                    _json_dump(approval_metadata),
                    tenant_id,
                    proposal_id,
                ),
            )
            connection.commit()
        return cursor.rowcount == 1

    def attach_signing_record(
        self,
        *,
        tenant_id: str,
        proposal_id: str,
        signing_record: SigningRecord,
    ) -> bool:
        query = """
            UPDATE party_proposals
            SET external_document_id = %s,
                external_signer_id = %s,
                signing_link = %s,
                external_status = %s,
                content_hash = %s,
                contract_template_id = %s,
                contract_template_name = %s,
                document_name = %s,
                signing_created_at = %s,
                status_checked_at = %s,
                signed_at = %s,
                status = CASE
                    WHEN status IN ('DRAFT', 'APPROVED') THEN 'CONTRACT_SENT'
                    ELSE status
                END
            WHERE tenant_id = %s
              AND proposal_id = %s
              AND signing_link IS NULL
              AND deleted_at IS NULL
        """
        with closing(self._connect()) as connection:
            cursor = connection.execute(
                query,
                (*_signing_values(signing_record), tenant_id, proposal_id),
            )
            connection.commit()
        return cursor.rowcount == 1

    def update_external_status(
        self,
        *,
        tenant_id: str,
        proposal_id: str,
        external_status: str,
        checked_at: datetime,
        signed_at: Optional[datetime],
    ) -> None:
        if signed_at is None:
            query = """
                UPDATE party_proposals
                SET external_status = %s, status_checked_at = %s
                WHERE tenant_id = %s AND proposal_id = %s AND deleted_at IS NULL
            """
            args: tuple[Any, ...] = (
                external_status,
                checked_at.isoformat(),
                tenant_id,
                proposal_id,
            )
        else:
            query = """
                UPDATE party_proposals
                SET external_status = %s,
                    status_checked_at = %s,
                    signed_at = COALESCE(signed_at, %s),
                    status = 'SIGNED'
                WHERE tenant_id = %s AND proposal_id = %s AND deleted_at IS NULL
            """
            args = (
                external_status,
                checked_at.isoformat(),
                signed_at.isoformat(),
                tenant_id,
                proposal_id,
            )
        with closing(self._connect()) as connection:
            connection.execute(query, args)
            connection.commit()

    def find_timeline_event(
        self, *, tenant_id: str, event_type: str, proposal_id: str
    ) -> Optional[TimelineEventRecord]:
        query = f"""
            SELECT {_TIMELINE_COLUMNS}
            FROM proposal_timeline_events
            WHERE tenant_id = %s AND event_type = %s AND proposal_id = %s
            LIMIT 1
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (tenant_id, event_type, proposal_id)).fetchone()
        return _to_timeline_event(row) if row is not None else None

    def append_timeline_event(self, event: TimelineEventRecord) -> bool:
        query = f"""
            INSERT INTO proposal_timeline_events ({_TIMELINE_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (tenant_id, event_type, proposal_id) DO NOTHING
        """
        with closing(self._connect()) as connection:
            cursor = connection.execute(
                query,
                (
                    event.event_id,
                    event.tenant_id,
                    event.event_type,
                    event.actor_type,
                    event.message,
                    event.occurred_at.isoformat(),
                    event.proposal_id,
                    _json_dump(event.meta),
                ),
            )
            connection.commit()
        return cursor.rowcount == 1

    def list_timeline_events(
        self, *, tenant_id: str, proposal_id: str
    ) -> list[TimelineEventRecord]:
        query = f"""
            SELECT {_TIMELINE_COLUMNS}
            FROM proposal_timeline_events
            WHERE tenant_id = %s AND proposal_id = %s
            ORDER BY occurred_at ASC, event_id ASC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, (tenant_id, proposal_id)).fetchall()
        return [_to_timeline_event(row) for row in rows]

    def record_webhook_event(self, event: SigningWebhookEventRecord) -> bool:
        query = """
            INSERT INTO signing_webhook_events (
                event_id,
                tenant_id,
                proposal_id,
                document_id,
                event_type,
                status,
                payload_sha256,
                payload_json,
                received_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (payload_sha256) DO NOTHING
        """
        with closing(self._connect()) as connection:
            cursor = connection.execute(
                query,
                (
                    event.event_id,
                    event.tenant_id,
                    event.proposal_id,
                    event.document_id,
                    event.event_type,
                    event.status,
                    event.payload_sha256,
                    _json_dump(event.payload),
                    event.received_at.isoformat(),
                ),
            )
            connection.commit()
        return cursor.rowcount == 1

    def _connect(self):
        psycopg, dict_row = _import_psycopg()
        return psycopg.connect(self._dsn, row_factory=dict_row)

    def _init_db(self) -> None:
        with closing(self._connect()) as connection:
            apply_postgres_migrations(connection=connection, namespace="proposals")


class PostgresCatalogRepository:
    """Read-only access to the tenant, party and commitment catalog tables."""

    def __init__(self, *, dsn: str) -> None:
        if not dsn:
            raise RuntimeError("PROPOSAL_POSTGRES_DSN_REQUIRED")
        if find_spec("psycopg") is None:
            raise RuntimeError("PROPOSAL_POSTGRES_DRIVER_MISSING")
        self._dsn = dsn
        self._init_db()

    def get_tenant_by_slug(self, *, slug: str) -> Optional[TenantRecord]:
        query = """
            SELECT tenant_id, slug, name, company_json, contract_templates_json
            FROM tenants
            WHERE slug = %s AND deleted_at IS NULL
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (slug,)).fetchone()
        if row is None:
            return None
        templates = _load_json(row["contract_templates_json"], default=[])
        return TenantRecord(
            tenant_id=row["tenant_id"],
            slug=row["slug"],
            name=row["name"],
            company=TenantCompany.model_validate(_load_json(row["company_json"], default={})),
            contract_templates=[
                ContractTemplate.model_validate(template)
                for template in templates
                if isinstance(template, dict) and template.get("id")
            ],
        )

    def get_party(self, *, tenant_id: str, party_id: str) -> Optional[PartyRecord]:
        query = """
            SELECT party_id, tenant_id, display_name, metadata_json
            FROM party_entities
            WHERE tenant_id = %s AND party_id = %s AND deleted_at IS NULL
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (tenant_id, party_id)).fetchone()
        if row is None:
            return None
        return PartyRecord(
            party_id=row["party_id"],
            tenant_id=row["tenant_id"],
            display_name=row["display_name"] or "",
            metadata=_load_json(row["metadata_json"], default={}),
        )

    def list_commitments(
        self, *, tenant_id: str, commitment_ids: Sequence[str]
    ) -> list[CommitmentRecord]:
        query = """
            SELECT commitment_id, tenant_id, customer_entity_id, commitment_type, status, created_at
            FROM commitments
            WHERE tenant_id = %s AND commitment_id = ANY(%s) AND deleted_at IS NULL
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, (tenant_id, list(commitment_ids))).fetchall()
        return [
            CommitmentRecord(
                commitment_id=row["commitment_id"],
                tenant_id=row["tenant_id"],
                customer_entity_id=row["customer_entity_id"],
                commitment_type=row["commitment_type"],
                status=row["status"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    def list_commitment_items(
        self, *, tenant_id: str, commitment_ids: Sequence[str]
    ) -> list[CommitmentItemRecord]:
        query = """
            SELECT item_id, tenant_id, commitment_id, offering_entity_id, quantity,
                   metadata_json, created_at
            FROM commitment_items
            WHERE tenant_id = %s AND commitment_id = ANY(%s) AND deleted_at IS NULL
            ORDER BY created_at ASC, item_id ASC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, (tenant_id, list(commitment_ids))).fetchall()
        return [
            CommitmentItemRecord(
                item_id=row["item_id"],
                tenant_id=row["tenant_id"],
                commitment_id=row["commitment_id"],
                offering_entity_id=row["offering_entity_id"],
                quantity=float(row["quantity"] if row["quantity"] is not None else 1),
                metadata=_load_json(row["metadata_json"], default={}),
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    def list_offerings(
        self, *, tenant_id: str, offering_ids: Sequence[str]
    ) -> list[OfferingRecord]:
        query = """
            SELECT offering_id, display_name, entity_type
            FROM offerings
            WHERE tenant_id = %s AND offering_id = ANY(%s) AND deleted_at IS NULL
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, (tenant_id, list(offering_ids))).fetchall()
        return [
            OfferingRecord(
                offering_id=row["offering_id"],
                display_name=row["display_name"] or row["offering_id"],
                entity_type=row["entity_type"],
            )
            for row in rows
        ]

    def list_deliverable_templates(
        self, *, tenant_id: str, offering_ids: Sequence[str]
    ) -> list[DeliverableTemplateRecord]:
        query = """
            SELECT template_id, tenant_id, offering_entity_id, name, estimated_minutes,
                   required_resource_type, quantity, created_at
            FROM deliverable_templates
            WHERE tenant_id = %s AND offering_entity_id = ANY(%s) AND deleted_at IS NULL
            ORDER BY created_at ASC, template_id ASC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, (tenant_id, list(offering_ids))).fetchall()
        return [
            DeliverableTemplateRecord(
                template_id=row["template_id"],
                tenant_id=row["tenant_id"],
                offering_entity_id=row["offering_entity_id"],
                name=row["name"],
                estimated_minutes=row["estimated_minutes"],
                required_resource_type=row["required_resource_type"],
                quantity=float(row["quantity"] if row["quantity"] is not None else 1),
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    def _connect(self):
        psycopg, dict_row = _import_psycopg()
        return psycopg.connect(self._dsn, row_factory=dict_row)

    def _init_db(self) -> None:
        with closing(self._connect()) as connection:
            apply_postgres_migrations(connection=connection, namespace="catalog")


def _import_psycopg():
    import psycopg
    from psycopg.rows import dict_row

    return psycopg, dict_row


def _optional_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _json_dump(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def _load_json(value: Optional[str], *, default: Any) -> Any:
    if value is None:
        return default
    return json.loads(value)


def _optional_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _signing_values(record: Optional[SigningRecord]) -> tuple[Any, ...]:
    if record is None:
        return (None,) * 11
    return (
        record.external_document_id,
        record.external_signer_id,
        record.signing_link,
        record.external_status,
        record.content_hash,
        record.template_id,
        record.template_name,
        record.document_name,
        record.created_at.isoformat(),
        _optional_iso(record.checked_at),
        _optional_iso(record.signed_at),
    )


def _to_signing_record(row) -> Optional[SigningRecord]:
    if row["signing_link"] is None:
        return None
    return SigningRecord(
        external_document_id=row["external_document_id"],
        external_signer_id=row["external_signer_id"],
        signing_link=row["signing_link"],
        external_status=row["external_status"],
        content_hash=row["content_hash"],
        template_id=row["contract_template_id"],
        template_name=row["contract_template_name"],
        document_name=row["document_name"],
        created_at=datetime.fromisoformat(row["signing_created_at"]),
        checked_at=_optional_datetime(row["status_checked_at"]),
        signed_at=_optional_datetime(row["signed_at"]),
    )


def _to_proposal(row) -> Optional[ProposalRecord]:
    if row is None:
        return None
    return ProposalRecord(
        proposal_id=row["proposal_id"],
        tenant_id=row["tenant_id"],
        party_id=row["party_id"],
        token=row["token"],
        selected_ids=_load_json(row["selected_ids_json"], default=[]),
        status=row["status"],
        approved_at=_optional_datetime(row["approved_at"]),
        approval_metadata=_load_json(row["approval_json"], default={}),
        signing_record=_to_signing_record(row),
        created_at=datetime.fromisoformat(row["created_at"]),
        deleted_at=_optional_datetime(row["deleted_at"]),
    )


def _to_timeline_event(row) -> TimelineEventRecord:
    return TimelineEventRecord(
        event_id=row["event_id"],
        tenant_id=row["tenant_id"],
        event_type=row["event_type"],
        actor_type=row["actor_type"],
        message=row["message"],
        occurred_at=datetime.fromisoformat(row["occurred_at"]),
        proposal_id=row["proposal_id"],
        meta=_load_json(row["meta_json"], default={}),
    )
