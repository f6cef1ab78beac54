import re
from datetime import datetime
from typing import Any, Mapping, Optional, Sequence

from src.core.catalog.models import (
    ContractTemplate,
    PartyCustomer,
    PartyRecord,
    TenantRecord,
)

EMPTY_SCOPE_TEXT = "(no items)"
SCOPE_BULLET = "• "


def render_template(body: str, variables: Mapping[str, str]) -> str:
    rendered = str(body or "")
    for name, value in variables.items():
        rendered = rendered.replace("{{" + name + "}}", str(value or ""))
    return rendered


def select_contract_template(
    tenant: TenantRecord, approval_metadata: Mapping[str, Any]
) -> Optional[ContractTemplate]:
    """Template chosen on the proposal, else the tenant's first usable one."""
    usable = [template for template in tenant.contract_templates if template.body.strip()]
    chosen_id = str(approval_metadata.get("contract_template_id") or "").strip()
    if chosen_id:
        for template in usable:
            if template.id == chosen_id:
                return template
    return usable[0] if usable else None


def format_tax_id(value: Any) -> str:
    raw = str(value or "").strip()
    digits = re.sub(r"\D", "", raw)
    if len(digits) == 11:
        return f"{digits[:3]}.{digits[3:6]}.{digits[6:9]}-{digits[9:]}"
    if len(digits) == 14:
        return f"{digits[:2]}.{digits[2:5]}.{digits[5:8]}/{digits[8:12]}-{digits[12:]}"
    return raw


def format_generated_at(generated_at: datetime) -> str:
    return generated_at.strftime("%d/%m/%Y %H:%M UTC")


def scope_block(scope_lines: Sequence[str]) -> str:
    if not scope_lines:
        return EMPTY_SCOPE_TEXT
    return "\n".join(f"{SCOPE_BULLET}{line}" for line in scope_lines)


def build_contract_variables(
    *,
    tenant: TenantRecord,
    party: PartyRecord,
    customer: PartyCustomer,
    approval_metadata: Mapping[str, Any],
    scope_lines: Sequence[str],
    generated_at: datetime,
    portal_link: str = "",
) -> dict[str, str]:
    def term(key: str) -> str:
        return str(approval_metadata.get(key) or "").strip()

    return {
        "tenant_name": tenant.name or tenant.slug,
        "tenant_cnpj": format_tax_id(tenant.company.tax_id),
        "party_name": party.display_name or "Customer",
        "party_legal_name": customer.legal_name or party.display_name,
        "party_document": format_tax_id(customer.document),
        "party_whatsapp": customer.whatsapp or "",
        "party_email": customer.email or "",
        "party_address_full": customer.address_full,
        "portal_link": portal_link,
        "contract_term": term("contract_term"),
        "contract_total_value": term("contract_total_value"),
        "payment_method": term("payment_method"),
        "installments_due_date": term("installments_due_date"),
        "scope_notes": term("scope_notes"),
        "scope_lines": scope_block(scope_lines),
        "generated_at": format_generated_at(generated_at),
    }
