from src.core.contracts.renderer import (
    RenderedContract,
    core_font_text,
    render_contract,
    wrap_words,
)
from src.core.contracts.templating import (
    build_contract_variables,
    format_tax_id,
    render_template,
    select_contract_template,
)

__all__ = [
    "RenderedContract",
    "build_contract_variables",
    "core_font_text",
    "format_tax_id",
    "render_contract",
    "render_template",
    "select_contract_template",
    "wrap_words",
]
