from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class TenantCompany(BaseModel):
    tax_id: Optional[str] = Field(
        default=None,
        description="Tenant company tax id (CNPJ), digits or formatted.",
        examples=["12345678000190"],
    )
    address_line: Optional[str] = Field(
        default=None,
        description="Single-line tenant company address.",
        examples=["Av. Paulista, 1000 - Sao Paulo/SP"],
    )


class ContractTemplate(BaseModel):
    id: str = Field(description="Tenant-scoped contract template id.", examples=["tpl_001"])
    name: str = Field(default="", description="Template display name.", examples=["Standard"])
    body: str = Field(
        default="",
        description="Free-text contract body with {{variable}} placeholders.",
        examples=["# CONTRACT\n\nCustomer: {{party_name}}\n\n{{scope_lines}}"],
    )


class TenantRecord(BaseModel):
    tenant_id: str = Field(description="Internal tenant identifier.", examples=["tn_001"])
    slug: str = Field(description="Public tenant slug.", examples=["acme"])
    name: str = Field(description="Tenant display name.", examples=["Acme Marketing"])
    company: TenantCompany = Field(
        default_factory=TenantCompany,
        description="Tenant company identity printed on contracts.",
    )
    contract_templates: List[ContractTemplate] = Field(
        default_factory=list,
        description="Tenant-configured contract templates.",
    )


class PartyRecord(BaseModel):
    party_id: str = Field(description="Counter-party entity identifier.", examples=["ent_001"])
    tenant_id: str = Field(description="Owning tenant identifier.", examples=["tn_001"])
    display_name: str = Field(description="Counter-party display name.", examples=["Beta Ltda"])
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Entity metadata; customer fields live at the top level.",
        examples=[{"email": "contact@beta.example", "cpf_cnpj": "12345678000190"}],
    )


class PartyCustomer(BaseModel):
    legal_name: Optional[str] = None
    document: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    uf: Optional[str] = None
    cep: Optional[str] = None
    whatsapp: Optional[str] = None
    email: Optional[str] = None

    @property
    def address_full(self) -> str:
        parts: list[str] = []
        city_uf = "/".join(part for part in (_clean(self.city), _clean(self.uf)) if part)
        if _clean(self.address):
            parts.append(_clean(self.address))
        if city_uf:
            parts.append(city_uf)
        if _clean(self.cep):
            parts.append(f"CEP {_clean(self.cep)}")
        return " • ".join(parts)


def party_customer(metadata: Dict[str, Any]) -> PartyCustomer:
    def pick(*keys: str) -> Optional[str]:
        for key in keys:
            value = metadata.get(key)
            if value is not None and str(value).strip():
                return str(value).strip()
        return None

    return PartyCustomer(
        legal_name=pick("legal_name"),
        document=pick("cpf_cnpj", "cpfCnpj", "document"),
        address=pick("address"),
        city=pick("city"),
        uf=pick("uf", "state"),
        cep=pick("cep"),
        whatsapp=pick("whatsapp", "phone", "phone_e164"),
        email=pick("email"),
    )


def _clean(value: Optional[str]) -> str:
    return str(value or "").strip()


class CommitmentRecord(BaseModel):
    commitment_id: str = Field(description="Commercial commitment id.", examples=["cm_001"])
    tenant_id: str = Field(description="Owning tenant identifier.", examples=["tn_001"])
    customer_entity_id: Optional[str] = Field(default=None, examples=["ent_001"])
    commitment_type: Optional[str] = Field(default=None, examples=["contract"])
    status: Optional[str] = Field(default=None, examples=["active"])
    created_at: datetime = Field(examples=["2026-02-19T12:00:00+00:00"])


class CommitmentItemRecord(BaseModel):
    item_id: str = Field(description="Commitment item id.", examples=["ci_001"])
    tenant_id: str = Field(description="Owning tenant identifier.", examples=["tn_001"])
    commitment_id: str = Field(description="Parent commitment id.", examples=["cm_001"])
    offering_entity_id: str = Field(description="Referenced offering id.", examples=["off_001"])
    quantity: float = Field(default=1, description="Item quantity.", examples=[1])
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Item metadata, including per-template deliverable_overrides.",
        examples=[{"deliverable_overrides": {"dt_001": {"quantity": 4}}}],
    )
    created_at: datetime = Field(examples=["2026-02-19T12:00:00+00:00"])


class OfferingRecord(BaseModel):
    offering_id: str = Field(description="Offering entity id.", examples=["off_001"])
    display_name: str = Field(description="Offering display name.", examples=["Social Media"])
    entity_type: Optional[str] = Field(default=None, examples=["offering"])


class DeliverableTemplateRecord(BaseModel):
    template_id: str = Field(description="Deliverable template id.", examples=["dt_001"])
    tenant_id: str = Field(description="Owning tenant identifier.", examples=["tn_001"])
    offering_entity_id: str = Field(description="Offering this template belongs to.")
    name: str = Field(description="Deliverable name.", examples=["Monthly report"])
    estimated_minutes: Optional[int] = Field(default=None, examples=[60])
    required_resource_type: Optional[str] = Field(default=None, examples=["designer"])
    quantity: float = Field(default=1, description="Base quantity per item unit.", examples=[1])
    created_at: datetime = Field(examples=["2026-02-19T12:00:00+00:00"])

