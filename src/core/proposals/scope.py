from typing import Any, Sequence

from src.core.catalog.models import CommitmentItemRecord, DeliverableTemplateRecord
from src.core.catalog.repository import CatalogRepository
from src.core.proposals.models import ScopeLine, ScopeSnapshot


def resolve_scope(
    catalog: CatalogRepository, *, tenant_id: str, selected_ids: Sequence[str]
) -> ScopeSnapshot:
    """Dereference frozen commitment ids against the live catalog.

    Rows that no longer resolve (deleted or soft-deleted) are dropped, so a partially
    evaporated scope still yields a shorter, valid list of lines. Line order follows
    ``selected_ids`` first, then item and template creation order.
    """
    commitment_ids = _unique([str(cid) for cid in selected_ids if cid])
    if not commitment_ids:
        return ScopeSnapshot()

    commitments = catalog.list_commitments(tenant_id=tenant_id, commitment_ids=commitment_ids)
    resolved_ids = {commitment.commitment_id for commitment in commitments}
    items = [
        item
        for item in catalog.list_commitment_items(
            tenant_id=tenant_id, commitment_ids=commitment_ids
        )
        if item.commitment_id in resolved_ids
    ]

    offering_ids = _unique([item.offering_entity_id for item in items if item.offering_entity_id])
    offerings = {}
    templates: list[DeliverableTemplateRecord] = []
    if offering_ids:
        offerings = {
            offering.offering_id: offering
            for offering in catalog.list_offerings(tenant_id=tenant_id, offering_ids=offering_ids)
        }
        templates = catalog.list_deliverable_templates(
            tenant_id=tenant_id, offering_ids=offering_ids
        )

    templates_by_offering: dict[str, list[DeliverableTemplateRecord]] = {}
    for template in sorted(templates, key=lambda t: (t.created_at, t.template_id)):
        templates_by_offering.setdefault(template.offering_entity_id, []).append(template)

    order = {commitment_id: index for index, commitment_id in enumerate(commitment_ids)}
    ordered_items = sorted(
        items, key=lambda it: (order.get(it.commitment_id, len(order)), it.created_at, it.item_id)
    )

    lines: list[ScopeLine] = []
    for item in ordered_items:
        offering = offerings.get(item.offering_entity_id)
        if offering is None:
            continue
        for template in templates_by_offering.get(item.offering_entity_id, []):
            quantity = effective_quantity(item, template)
            if quantity <= 0:
                continue
            lines.append(
                ScopeLine(
                    commitment_id=item.commitment_id,
                    item_id=item.item_id,
                    offering_id=offering.offering_id,
                    offering_name=offering.display_name or offering.offering_id,
                    template_id=template.template_id,
                    template_name=template.name,
                    quantity=quantity,
                )
            )

    return ScopeSnapshot(
        commitments=sorted(
            commitments, key=lambda c: order.get(c.commitment_id, len(order))
        ),
        items=ordered_items,
        offerings=offerings,
        templates=sorted(templates, key=lambda t: (t.created_at, t.template_id)),
        lines=lines,
    )


def effective_quantity(item: CommitmentItemRecord, template: DeliverableTemplateRecord) -> float:
    overrides: Any = item.metadata.get("deliverable_overrides") or {}
    override = overrides.get(template.template_id) if isinstance(overrides, dict) else None
    if isinstance(override, dict):
        quantity = override.get("quantity")
        if isinstance(quantity, (int, float)) and not isinstance(quantity, bool):
            return float(quantity)
    return float(item.quantity) * float(template.quantity)


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))
