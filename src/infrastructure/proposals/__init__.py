from src.infrastructure.proposals.in_memory import (
    InMemoryCatalogRepository,
    InMemoryProposalRepository,
)
from src.infrastructure.proposals.postgres import (
    PostgresCatalogRepository,
    PostgresProposalRepository,
)

__all__ = [
    "InMemoryCatalogRepository",
    "InMemoryProposalRepository",
    "PostgresCatalogRepository",
    "PostgresProposalRepository",
]
