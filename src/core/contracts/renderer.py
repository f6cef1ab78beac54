"""PDF contract rendering.

Contracts are line-oriented text, so layout is a greedy word wrap measured with the
PDF font metrics plus a page break whenever the cursor would cross the bottom margin.
No justification, kerning or hyphenation is attempted; a word never straddles two lines.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Sequence

from fpdf import FPDF

from src.core.catalog.models import PartyRecord, TenantRecord, party_customer
from src.core.common.canonical import hash_bytes
from src.core.contracts.templating import (
    EMPTY_SCOPE_TEXT,
    SCOPE_BULLET,
    build_contract_variables,
    format_generated_at,
    format_tax_id,
    render_template,
    select_contract_template,
)

PAGE_WIDTH = 595.28
PAGE_HEIGHT = 841.89
MARGIN = 48.0
LINE_HEIGHT = 16.0
PRINTABLE_WIDTH = PAGE_WIDTH - 2 * MARGIN

BODY_SIZE = 11
HEADING_SIZE = 16
SECTION_SIZE = 12
SCOPE_SIZE = 10
FOOTER_SIZE = 9
BLANK_LINE_GAP = 10.0
HEADING_GAP = 4.0
SECTION_GAP = 8.0

HEADING_MARKER = "# "
MAX_BUILTIN_SCOPE_LINES = 60
FONT_FAMILY = "Helvetica"
TEXT_COLOR = (31, 31, 36)

_CORE_FONT_SUBSTITUTIONS = {
    "—": "-",
    "–": "-",
    "•": "-",
    "─": "-",
    "└": "",
    "‘": "'",
    "’": "'",
    "“": '"',
    "”": '"',
    "…": "...",
    " ": " ",
}


@dataclass(frozen=True)
class RenderedContract:
    pdf_bytes: bytes
    content_hash: str
    pages: tuple[tuple[str, ...], ...]
    template_id: Optional[str]
    template_name: Optional[str]

    @property
    def page_count(self) -> int:
        return len(self.pages)


def wrap_words(text: str, *, max_width: float, measure: Callable[[str], float]) -> list[str]:
    words = text.split()
    if not words:
        return [""]
    lines: list[str] = []
    current = ""
    for word in words:
        candidate = f"{current} {word}" if current else word
        if measure(candidate) <= max_width:
            current = candidate
            continue
        if current:
            lines.append(current)
        current = word
    if current:
        lines.append(current)
    return lines


def core_font_text(text: str) -> str:
    # Standard PDF fonts only cover Latin-1.
    for source, target in _CORE_FONT_SUBSTITUTIONS.items():
        text = text.replace(source, target)
    return text.encode("latin-1", "replace").decode("latin-1")


class ContractLayout:
    def __init__(self, *, generated_at: datetime) -> None:
        pdf = FPDF(orientation="P", unit="pt", format=(PAGE_WIDTH, PAGE_HEIGHT))
        pdf.set_auto_page_break(False)
        pdf.set_margins(MARGIN, MARGIN, MARGIN)
        pdf.set_creation_date(generated_at)
        self._pdf = pdf
        self._pages: list[list[str]] = []
        self._y = MARGIN
        self._new_page()

    def write(self, text: str, *, size: int = BODY_SIZE) -> None:
        self._pdf.set_font(FONT_FAMILY, size=size)
        for line in wrap_words(
            core_font_text(text),
            max_width=PRINTABLE_WIDTH,
            measure=self._pdf.get_string_width,
        ):
            if self._y + LINE_HEIGHT > PAGE_HEIGHT - MARGIN:
                self._new_page()
            if line:
                self._pdf.text(MARGIN, self._y + size, line)
            self._pages[-1].append(line)
            self._y += LINE_HEIGHT

    def skip(self, gap: float) -> None:
        self._y += gap

    def finish(self) -> tuple[bytes, tuple[tuple[str, ...], ...]]:
        pages = tuple(tuple(lines) for lines in self._pages)
        return bytes(self._pdf.output()), pages

    def _new_page(self) -> None:
        self._pdf.add_page()
        self._pdf.set_text_color(*TEXT_COLOR)
        self._pages.append([])
        self._y = MARGIN


def render_contract(
    *,
    tenant: TenantRecord,
    party: PartyRecord,
    approval_metadata: Mapping[str, Any],
    scope_lines: Sequence[str],
    generated_at: datetime,
    portal_link: str = "",
) -> RenderedContract:
    customer = party_customer(party.metadata)
    template = select_contract_template(tenant, approval_metadata)
    layout = ContractLayout(generated_at=generated_at)

    if template is not None:
        variables = build_contract_variables(
            tenant=tenant,
            party=party,
            customer=customer,
            approval_metadata=approval_metadata,
            scope_lines=scope_lines,
            generated_at=generated_at,
            portal_link=portal_link,
        )
        _write_templated_body(layout, render_template(template.body, variables))
    else:
        _write_builtin_body(
            layout,
            tenant=tenant,
            party=party,
            scope_lines=scope_lines,
            generated_at=generated_at,
        )

    pdf_bytes, pages = layout.finish()
    return RenderedContract(
        pdf_bytes=pdf_bytes,
        content_hash=hash_bytes(pdf_bytes),
        pages=pages,
        template_id=template.id if template is not None else None,
        template_name=(template.name or None) if template is not None else None,
    )


def _write_templated_body(layout: ContractLayout, body: str) -> None:
    for raw_line in body.replace("\r\n", "\n").split("\n"):
        line = raw_line.rstrip()
        if line.startswith(HEADING_MARKER):
            layout.write(line[len(HEADING_MARKER) :].strip(), size=HEADING_SIZE)
            layout.skip(HEADING_GAP)
        elif not line.strip():
            layout.skip(BLANK_LINE_GAP)
        else:
            layout.write(line, size=BODY_SIZE)


def _write_builtin_body(
    layout: ContractLayout,
    *,
    tenant: TenantRecord,
    party: PartyRecord,
    scope_lines: Sequence[str],
    generated_at: datetime,
) -> None:
    customer = party_customer(party.metadata)

    layout.write("CONTRACT / PROPOSAL", size=HEADING_SIZE)
    layout.write(f"Provider: {tenant.name or tenant.slug}")
    if tenant.company.tax_id:
        layout.write(f"CNPJ: {format_tax_id(tenant.company.tax_id)}")
    if tenant.company.address_line:
        layout.write(f"Address: {tenant.company.address_line}")
    layout.skip(SECTION_GAP)

    layout.write(f"Customer: {party.display_name}")
    if customer.document:
        layout.write(f"CPF/CNPJ: {format_tax_id(customer.document)}")
    if customer.address_full:
        layout.write(f"Address: {customer.address_full}")
    if customer.whatsapp:
        layout.write(f"Phone: {customer.whatsapp}")
    if customer.email:
        layout.write(f"Email: {customer.email}")
    layout.skip(SECTION_GAP)

    layout.write("SCOPE (deliverables)", size=SECTION_SIZE)
    lines = list(scope_lines[:MAX_BUILTIN_SCOPE_LINES]) or [EMPTY_SCOPE_TEXT]
    for line in lines:
        text = line if line == EMPTY_SCOPE_TEXT else f"{SCOPE_BULLET}{line}"
        layout.write(text, size=SCOPE_SIZE)
    layout.skip(SECTION_GAP)

    layout.write(f"Generated at: {format_generated_at(generated_at)}", size=FOOTER_SIZE)
