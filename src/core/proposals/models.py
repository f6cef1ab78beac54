from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from src.core.catalog.models import (
    CommitmentItemRecord,
    CommitmentRecord,
    DeliverableTemplateRecord,
    OfferingRecord,
    TenantCompany,
)

ProposalStatus = Literal["DRAFT", "APPROVED", "CONTRACT_SENT", "SIGNED"]

TimelineEventType = Literal["proposal_approved", "contract_sent", "contract_signed"]


class ScopeLine(BaseModel):
    commitment_id: str
    item_id: str
    offering_id: str
    offering_name: str
    template_id: str
    template_name: str
    quantity: float

    @property
    def text(self) -> str:
        return f"{self.offering_name} — {self.template_name}"


class ScopeSnapshot(BaseModel):
    commitments: List[CommitmentRecord] = Field(default_factory=list)
    items: List[CommitmentItemRecord] = Field(default_factory=list)
    offerings: Dict[str, OfferingRecord] = Field(default_factory=dict)
    templates: List[DeliverableTemplateRecord] = Field(default_factory=list)
    lines: List[ScopeLine] = Field(default_factory=list)

    def line_texts(self) -> list[str]:
        return [line.text for line in self.lines]


class SigningRecord(BaseModel):
    external_document_id: str = Field(
        description="Provider document identifier.", examples=["c7b1f0a6d2"]
    )
    external_signer_id: str = Field(
        description="Provider signer (signature) public id.",
        examples=["5f2b8f1e-2c1d-4b0e-9d55-5a8f0d1f4a11"],
    )
    signing_link: str = Field(
        description="Bearer signing link handed to the counter-party.",
        examples=["https://assina.ae/abc123"],
    )
    external_status: Optional[str] = Field(
        default=None,
        description="Last provider status seen by reconciliation.",
        examples=["signed"],
    )
    content_hash: str = Field(
        description="SHA-256 of the exact PDF bytes sent for signature.",
        examples=["sha256:abc123"],
    )
    template_id: Optional[str] = Field(default=None, examples=["tpl_001"])
    template_name: Optional[str] = Field(default=None, examples=["Standard"])
    document_name: str = Field(
        description="Document name registered with the provider.",
        examples=["Contract • Acme Marketing • Beta Ltda"],
    )
    created_at: datetime = Field(examples=["2026-02-19T12:10:00+00:00"])
    checked_at: Optional[datetime] = Field(
        default=None, description="Last reconciliation time.", examples=[None]
    )
    signed_at: Optional[datetime] = Field(
        default=None, description="Time the signed status was first observed.", examples=[None]
    )


class ProposalRecord(BaseModel):
    proposal_id: str = Field(description="Internal proposal identifier.", examples=["pp_001"])
    tenant_id: str = Field(description="Owning tenant identifier.", examples=["tn_001"])
    party_id: str = Field(description="Counter-party entity id.", examples=["ent_001"])
    token: str = Field(description="Opaque capability token.", examples=["tok_9f8e7d"])
    selected_ids: List[str] = Field(
        default_factory=list,
        description="Commitment ids frozen at proposal creation, in catalog order.",
        examples=[["cm_001", "cm_002"]],
    )
    status: ProposalStatus = Field(default="DRAFT", description="Lifecycle status.")
    approved_at: Optional[datetime] = Field(default=None, description="Approval timestamp.")
    approval_metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Commercial terms and captured approval request metadata.",
        examples=[{"contract_template_id": "tpl_001", "approval": {"ip": "203.0.113.7"}}],
    )
    signing_record: Optional[SigningRecord] = Field(
        default=None, description="Provider document state, written once by sign."
    )
    created_at: datetime = Field(description="Creation timestamp.")
    deleted_at: Optional[datetime] = Field(default=None, description="Soft-delete timestamp.")


class TimelineEventRecord(BaseModel):
    event_id: str = Field(description="Timeline event id.", examples=["tle_001"])
    tenant_id: str = Field(description="Owning tenant identifier.", examples=["tn_001"])
    event_type: TimelineEventType = Field(description="Milestone type.", examples=["contract_sent"])
    actor_type: str = Field(default="system", description="Actor class.", examples=["system"])
    message: str = Field(description="Human-readable message.", examples=["Proposal approved."])
    occurred_at: datetime = Field(examples=["2026-02-19T12:00:00+00:00"])
    proposal_id: str = Field(description="Proposal the milestone belongs to.", examples=["pp_001"])
    meta: Dict[str, Any] = Field(default_factory=dict, description="Structured context.")


class SigningWebhookEventRecord(BaseModel):
    event_id: str = Field(description="Webhook event id.", examples=["swe_001"])
    tenant_id: Optional[str] = None
    proposal_id: Optional[str] = None
    document_id: Optional[str] = None
    event_type: Optional[str] = None
    status: Optional[str] = None
    payload_sha256: str = Field(description="SHA-256 hex of the raw webhook body.")
    payload: Dict[str, Any] = Field(default_factory=dict)
    received_at: datetime


class PublicTenantView(BaseModel):
    id: str = Field(description="Tenant identifier.", examples=["tn_001"])
    slug: str = Field(description="Tenant slug.", examples=["acme"])
    name: str = Field(description="Tenant display name.", examples=["Acme Marketing"])
    company: TenantCompany = Field(description="Tenant company identity.")


class PublicPartyCustomerView(BaseModel):
    document: Optional[str] = None
    address_line: Optional[str] = None
    whatsapp: Optional[str] = None
    email: Optional[str] = None


class PublicPartyView(BaseModel):
    id: str = Field(description="Counter-party entity id.", examples=["ent_001"])
    display_name: str = Field(description="Counter-party name.", examples=["Beta Ltda"])
    customer: PublicPartyCustomerView = Field(description="Contact and identity fields.")


class PublicProposalView(BaseModel):
    id: str = Field(description="Proposal identifier.", examples=["pp_001"])
    status: ProposalStatus = Field(description="Lifecycle status after reconciliation.")
    approved_at: Optional[str] = Field(
        default=None, description="UTC ISO8601 approval time.", examples=[None]
    )
    selected_ids: List[str] = Field(default_factory=list, examples=[["cm_001"]])
    signing_link: Optional[str] = Field(default=None, examples=["https://assina.ae/abc123"])
    external_status: Optional[str] = Field(default=None, examples=["pending"])


class PublicScopeView(BaseModel):
    commitments: List[CommitmentRecord] = Field(default_factory=list)
    items: List[CommitmentItemRecord] = Field(default_factory=list)
    offerings: Dict[str, OfferingRecord] = Field(default_factory=dict)
    templates: List[DeliverableTemplateRecord] = Field(default_factory=list)
    lines: List[str] = Field(
        default_factory=list,
        description="Scope lines exactly as printed in the contract.",
        examples=[["Social Media — Monthly report"]],
    )


class PublicProposalResponse(BaseModel):
    ok: bool = Field(default=True)
    tenant: PublicTenantView
    party: PublicPartyView
    proposal: PublicProposalView
    scope: PublicScopeView


class ProposalActionRequest(BaseModel):
    action: str = Field(
        default="",
        description="Requested action: approve or sign.",
        examples=["approve"],
    )


class ApproveResponse(BaseModel):
    ok: bool = Field(default=True)
    already: Optional[bool] = Field(
        default=None, description="Set when the proposal was already approved.", examples=[True]
    )
    approved_at: Optional[str] = Field(
        default=None,
        description="Existing approval time when already approved.",
        examples=["2026-02-19T12:00:00+00:00"],
    )


class SignResponse(BaseModel):
    ok: bool = Field(default=True)
    signing_link: str = Field(examples=["https://assina.ae/abc123"])
    document_id: Optional[str] = Field(default=None, examples=["c7b1f0a6d2"])
    already: Optional[bool] = Field(
        default=None, description="Set when a signing link already existed.", examples=[True]
    )


class ErrorResponse(BaseModel):
    ok: bool = Field(default=False)
    error: str = Field(description="Stable error code.", examples=["scope_not_approved"])
    detail: Optional[Any] = Field(default=None, description="Optional diagnostic detail.")


class WebhookAckResponse(BaseModel):
    ok: bool = Field(default=True)
    duplicate: Optional[bool] = Field(
        default=None, description="Set when the payload was already received.", examples=[True]
    )
