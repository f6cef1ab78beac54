from typing import Optional, Protocol, Sequence

from src.core.catalog.models import (
    CommitmentItemRecord,
    CommitmentRecord,
    DeliverableTemplateRecord,
    OfferingRecord,
    PartyRecord,
    TenantRecord,
)


class CatalogRepository(Protocol):
    def get_tenant_by_slug(self, *, slug: str) -> Optional[TenantRecord]: ...

    def get_party(self, *, tenant_id: str, party_id: str) -> Optional[PartyRecord]: ...

    def list_commitments(
        self, *, tenant_id: str, commitment_ids: Sequence[str]
    ) -> list[CommitmentRecord]: ...

    def list_commitment_items(
        self, *, tenant_id: str, commitment_ids: Sequence[str]
    ) -> list[CommitmentItemRecord]: ...

    def list_offerings(
        self, *, tenant_id: str, offering_ids: Sequence[str]
    ) -> list[OfferingRecord]: ...

    def list_deliverable_templates(
        self, *, tenant_id: str, offering_ids: Sequence[str]
    ) -> list[DeliverableTemplateRecord]: ...
