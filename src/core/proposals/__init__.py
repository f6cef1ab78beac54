from src.core.proposals.audit import AuditRecorder
from src.core.proposals.models import (
    ApproveResponse,
    ErrorResponse,
    ProposalActionRequest,
    ProposalRecord,
    PublicProposalResponse,
    ScopeLine,
    ScopeSnapshot,
    SigningRecord,
    SignResponse,
    TimelineEventRecord,
    WebhookAckResponse,
)
from src.core.proposals.reconciliation import (
    SIGNED_EXTERNAL_STATUSES,
    SigningStatusReconciler,
)
from src.core.proposals.repository import ProposalRepository
from src.core.proposals.scope import resolve_scope
from src.core.proposals.service import (
    ContractPreview,
    ProposalInputError,
    ProposalNotApprovedError,
    ProposalNotFoundError,
    ProposalPreconditionError,
    ProposalSigningError,
    PublicProposalService,
)
from src.core.proposals.webhook_service import (
    SigningWebhookDisabledError,
    SigningWebhookError,
    SigningWebhookPayloadError,
    SigningWebhookService,
    SigningWebhookUnauthorizedError,
)

__all__ = [
    "ApproveResponse",
    "AuditRecorder",
    "ContractPreview",
    "ErrorResponse",
    "ProposalActionRequest",
    "ProposalInputError",
    "ProposalNotApprovedError",
    "ProposalNotFoundError",
    "ProposalPreconditionError",
    "ProposalRecord",
    "ProposalRepository",
    "ProposalSigningError",
    "PublicProposalResponse",
    "PublicProposalService",
    "SIGNED_EXTERNAL_STATUSES",
    "ScopeLine",
    "ScopeSnapshot",
    "SignResponse",
    "SigningRecord",
    "SigningStatusReconciler",
    "SigningWebhookDisabledError",
    "SigningWebhookError",
    "SigningWebhookPayloadError",
    "SigningWebhookService",
    "SigningWebhookUnauthorizedError",
    "TimelineEventRecord",
    "WebhookAckResponse",
    "resolve_scope",
]
