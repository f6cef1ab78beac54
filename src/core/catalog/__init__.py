from src.core.catalog.models import (
    CommitmentItemRecord,
    CommitmentRecord,
    ContractTemplate,
    DeliverableTemplateRecord,
    OfferingRecord,
    PartyCustomer,
    PartyRecord,
    TenantCompany,
    TenantRecord,
    party_customer,
)
from src.core.catalog.repository import CatalogRepository

__all__ = [
    "CatalogRepository",
    "CommitmentItemRecord",
    "CommitmentRecord",
    "ContractTemplate",
    "DeliverableTemplateRecord",
    "OfferingRecord",
    "PartyCustomer",
    "PartyRecord",
    "TenantCompany",
    "TenantRecord",
    "party_customer",
]
