import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote

from src.core.catalog.models import PartyRecord, TenantRecord, party_customer
from src.core.catalog.repository import CatalogRepository
from src.core.contracts.renderer import RenderedContract, render_contract
from src.core.proposals.audit import AuditRecorder
from src.core.proposals.models import (
    ApproveResponse,
    ProposalRecord,
    PublicPartyCustomerView,
    PublicPartyView,
    PublicProposalResponse,
    PublicProposalView,
    PublicScopeView,
    PublicTenantView,
    SigningRecord,
    SignResponse,
)
from src.core.proposals.reconciliation import SigningStatusReconciler
from src.core.proposals.repository import ProposalRepository
from src.core.proposals.scope import resolve_scope
from src.core.signing.gateway import (
    SigningConfigurationError,
    SigningGateway,
    SigningGatewayError,
    select_signer,
)

logger = logging.getLogger(__name__)

DEFAULT_SIGNER_NAME = "Customer"


class ProposalSigningError(Exception):
    def __init__(self, code: str, detail: Optional[Any] = None):
        super().__init__(code)
        self.code = code
        self.detail = detail


class ProposalInputError(ProposalSigningError):
    pass


class ProposalNotFoundError(ProposalSigningError):
    pass


class ProposalPreconditionError(ProposalSigningError):
    pass


class ProposalNotApprovedError(ProposalSigningError):
    pass


@dataclass(frozen=True)
class ProposalContext:
    tenant: TenantRecord
    proposal: ProposalRecord
    party: PartyRecord


@dataclass(frozen=True)
class ContractPreview:
    contract: RenderedContract
    filename: str


class PublicProposalService:
    """Token-gated proposal workflow: read, approve and send for signature.

    ``approve`` and ``sign`` are check-then-act; their final writes are conditional
    repository updates, so concurrent requests settle on a single approval and a single
    stored signing link.
    """

    def __init__(
        self,
        *,
        repository: ProposalRepository,
        catalog: CatalogRepository,
        gateway: Optional[SigningGateway],
        reconcile_on_read: bool = True,
    ) -> None:
        self._repository = repository
        self._catalog = catalog
        self._gateway = gateway
        self._reconcile_on_read = reconcile_on_read
        self._audit = AuditRecorder(repository=repository)
        self._reconciler = SigningStatusReconciler(
            repository=repository, gateway=gateway, audit=self._audit
        )

    @property
    def reconciler(self) -> SigningStatusReconciler:
        return self._reconciler

    async def get_public_proposal(
        self, *, tenant_slug: Optional[str], token: Optional[str]
    ) -> PublicProposalResponse:
        context = self.resolve_context(tenant_slug=tenant_slug, token=token)
        proposal = context.proposal
        if self._reconcile_on_read:
            proposal = await self._reconciler.reconcile(proposal)

        scope = resolve_scope(
            self._catalog, tenant_id=context.tenant.tenant_id, selected_ids=proposal.selected_ids
        )
        customer = party_customer(context.party.metadata)
        record = proposal.signing_record
        return PublicProposalResponse(
            tenant=PublicTenantView(
                id=context.tenant.tenant_id,
                slug=context.tenant.slug,
                name=context.tenant.name,
                company=context.tenant.company,
            ),
            party=PublicPartyView(
                id=context.party.party_id,
                display_name=context.party.display_name,
                customer=PublicPartyCustomerView(
                    document=customer.document,
                    address_line=customer.address_full or None,
                    whatsapp=customer.whatsapp,
                    email=customer.email,
                ),
            ),
            proposal=PublicProposalView(
                id=proposal.proposal_id,
                status=proposal.status,
                approved_at=_optional_iso(proposal.approved_at),
                selected_ids=list(proposal.selected_ids),
                signing_link=record.signing_link if record is not None else None,
                external_status=record.external_status if record is not None else None,
            ),
            scope=PublicScopeView(
                commitments=scope.commitments,
                items=scope.items,
                offerings=scope.offerings,
                templates=scope.templates,
                lines=scope.line_texts(),
            ),
        )

    def approve(
        self,
        *,
        tenant_slug: Optional[str],
        token: Optional[str],
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> ApproveResponse:
        context = self.resolve_context(tenant_slug=tenant_slug, token=token)
        proposal = context.proposal
        if proposal.approved_at is not None:
            return ApproveResponse(already=True, approved_at=_optional_iso(proposal.approved_at))

        now = _utc_now()
        approval_metadata = dict(proposal.approval_metadata)
        approval_metadata["approval"] = {
            "ip": ip,
            "user_agent": user_agent,
            "approved_at": now.isoformat(),
        }
        approved = self._repository.mark_approved(
            tenant_id=proposal.tenant_id,
            proposal_id=proposal.proposal_id,
            approved_at=now,
            approval_metadata=approval_metadata,
        )
        if not approved:
            current = self._require_proposal(proposal)
            return ApproveResponse(already=True, approved_at=_optional_iso(current.approved_at))

        self._audit.record_once(
            tenant_id=proposal.tenant_id,
            event_type="proposal_approved",
            proposal_id=proposal.proposal_id,
            message="Proposal approved.",
            occurred_at=now,
            meta={"party_id": proposal.party_id},
        )
        logger.info("Proposal approved. ProposalId=%s", proposal.proposal_id)
        return ApproveResponse()

    async def sign(
        self,
        *,
        tenant_slug: Optional[str],
        token: Optional[str],
        portal_origin: str = "",
    ) -> SignResponse:
        context = self.resolve_context(tenant_slug=tenant_slug, token=token)
        proposal = self._require_proposal(context.proposal)

        if proposal.approved_at is None:
            raise ProposalNotApprovedError("scope_not_approved")
        if proposal.signing_record is not None and proposal.signing_record.signing_link:
            return SignResponse(signing_link=proposal.signing_record.signing_link, already=True)

        customer = party_customer(context.party.metadata)
        signer_email = (customer.email or "").strip()
        if not signer_email:
            raise ProposalPreconditionError("missing_customer_email")
        if self._gateway is None:
            raise SigningConfigurationError("missing_autentique_token")
        signer_name = customer.legal_name or context.party.display_name or DEFAULT_SIGNER_NAME

        generated_at = _utc_now()
        contract = self._render(
            ProposalContext(tenant=context.tenant, proposal=proposal, party=context.party),
            generated_at=generated_at,
            portal_origin=portal_origin,
        )
        document_name = _document_name(context)
        try:
            created = await self._gateway.create_document(
                name=document_name,
                signer_name=signer_name,
                signer_email=signer_email,
                file_bytes=contract.pdf_bytes,
                filename=_contract_filename(context),
            )
            signer = select_signer(created.signers, email=signer_email)
            signing_link = await self._gateway.create_signing_link(signer_id=signer.public_id)
        except SigningGatewayError as exc:
            logger.warning(
                "Signing gateway call failed. ProposalId=%s Code=%s",
                proposal.proposal_id,
                exc.code,
            )
            raise

        signing_record = SigningRecord(
            external_document_id=created.document_id,
            external_signer_id=signer.public_id,
            signing_link=signing_link,
            content_hash=contract.content_hash,
            template_id=contract.template_id,
            template_name=contract.template_name,
            document_name=document_name,
            created_at=generated_at,
        )
        attached = self._repository.attach_signing_record(
            tenant_id=proposal.tenant_id,
            proposal_id=proposal.proposal_id,
            signing_record=signing_record,
        )
        if not attached:
            current = self._require_proposal(proposal)
            logger.warning(
                "Concurrent sign lost; provider document orphaned. ProposalId=%s DocumentId=%s",
                proposal.proposal_id,
                created.document_id,
            )
            if current.signing_record is None:
                raise ProposalNotFoundError("proposal_not_found")
            return SignResponse(signing_link=current.signing_record.signing_link, already=True)

        self._audit.record_once(
            tenant_id=proposal.tenant_id,
            event_type="contract_sent",
            proposal_id=proposal.proposal_id,
            message="Contract issued for signature.",
            occurred_at=generated_at,
            meta={
                "party_id": proposal.party_id,
                "document_id": created.document_id,
                "signing_link": signing_link,
                "content_hash": contract.content_hash,
            },
        )
        logger.info(
            "Contract sent for signature. ProposalId=%s DocumentId=%s Pages=%s",
            proposal.proposal_id,
            created.document_id,
            contract.page_count,
        )
        return SignResponse(signing_link=signing_link, document_id=created.document_id)

    def render_contract_preview(
        self,
        *,
        tenant_slug: Optional[str],
        token: Optional[str],
        portal_origin: str = "",
    ) -> ContractPreview:
        context = self.resolve_context(tenant_slug=tenant_slug, token=token)
        contract = self._render(context, generated_at=_utc_now(), portal_origin=portal_origin)
        return ContractPreview(
            contract=contract,
            filename=(
                f"contract-preview-{context.tenant.slug}-{context.proposal.proposal_id[:8]}.pdf"
            ),
        )

    def resolve_context(
        self, *, tenant_slug: Optional[str], token: Optional[str]
    ) -> ProposalContext:
        slug = (tenant_slug or "").strip()
        proposal_token = (token or "").strip()
        if not slug or not proposal_token:
            raise ProposalInputError("missing_params")

        tenant = self._catalog.get_tenant_by_slug(slug=slug)
        if tenant is None:
            raise ProposalNotFoundError("tenant_not_found")
        proposal = self._repository.get_proposal_by_token(
            tenant_id=tenant.tenant_id, token=proposal_token
        )
        if proposal is None:
            raise ProposalNotFoundError("proposal_not_found")
        party = self._catalog.get_party(tenant_id=tenant.tenant_id, party_id=proposal.party_id)
        if party is None:
            raise ProposalNotFoundError("party_not_found")
        return ProposalContext(tenant=tenant, proposal=proposal, party=party)

    def _require_proposal(self, proposal: ProposalRecord) -> ProposalRecord:
        current = self._repository.get_proposal(
            tenant_id=proposal.tenant_id, proposal_id=proposal.proposal_id
        )
        if current is None:
            raise ProposalNotFoundError("proposal_not_found")
        return current

    def _render(
        self, context: ProposalContext, *, generated_at: datetime, portal_origin: str
    ) -> RenderedContract:
        scope = resolve_scope(
            self._catalog,
            tenant_id=context.tenant.tenant_id,
            selected_ids=context.proposal.selected_ids,
        )
        return render_contract(
            tenant=context.tenant,
            party=context.party,
            approval_metadata=context.proposal.approval_metadata,
            scope_lines=scope.line_texts(),
            generated_at=generated_at,
            portal_link=portal_link(
                portal_origin, tenant_slug=context.tenant.slug, token=context.proposal.token
            ),
        )


def portal_link(origin: str, *, tenant_slug: str, token: str) -> str:
    origin = (origin or "").strip().rstrip("/")
    if not origin:
        return ""
    return f"{origin}/p/{quote(tenant_slug, safe='')}/{quote(token, safe='')}"


def _document_name(context: ProposalContext) -> str:
    tenant_name = context.tenant.name or context.tenant.slug
    party_name = context.party.display_name or DEFAULT_SIGNER_NAME
    return f"Contract • {tenant_name} • {party_name}"


def _contract_filename(context: ProposalContext) -> str:
    return f"contract-{context.tenant.slug}-{context.party.party_id[:8]}.pdf"


def _optional_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
