import os
import warnings
from typing import Optional, cast

from src.core.catalog.repository import CatalogRepository
from src.core.proposals.repository import ProposalRepository
from src.core.signing.gateway import SigningGateway
from src.infrastructure.proposals import (
    InMemoryCatalogRepository,
    InMemoryProposalRepository,
    PostgresCatalogRepository,
    PostgresProposalRepository,
)
from src.infrastructure.signing.autentique import (
    DEFAULT_GRAPHQL_URL,
    DEFAULT_TIMEOUT_SECONDS,
    AutentiqueGateway,
)


def env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name, "").strip()
    if not value:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def proposal_store_backend_name() -> str:
    backend = os.getenv("PROPOSAL_STORE_BACKEND", "IN_MEMORY").strip().upper()
    if backend == "POSTGRES":
        return "POSTGRES"
    warnings.warn(
        ("PROPOSAL_STORE_BACKEND legacy runtime backend (IN_MEMORY) is deprecated; use POSTGRES."),
        DeprecationWarning,
        stacklevel=2,
    )
    return "IN_MEMORY"


def proposal_postgres_dsn() -> str:
    return os.getenv("PROPOSAL_POSTGRES_DSN", "").strip()


def autentique_api_token() -> str:
    return os.getenv("AUTENTIQUE_API_TOKEN", "").strip()


def autentique_graphql_url() -> str:
    return os.getenv("AUTENTIQUE_GQL_URL", "").strip() or DEFAULT_GRAPHQL_URL


def autentique_timeout_seconds() -> float:
    return _env_float("AUTENTIQUE_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)


def autentique_webhook_secret() -> str:
    return os.getenv("AUTENTIQUE_WEBHOOK_SECRET", "").strip()


def reconcile_on_read_enabled() -> bool:
    return env_flag("PROPOSAL_RECONCILE_ON_READ", True)


def public_proposal_enabled() -> bool:
    return env_flag("PUBLIC_PROPOSAL_ENABLED", True)


def _postgres_connection_exception_types() -> tuple[type[BaseException], ...]:
    types: list[type[BaseException]] = [
        ConnectionError,
        OSError,
        TimeoutError,
        TypeError,
        ValueError,
    ]
    try:
        import psycopg
    except ImportError:
        pass
    else:
        types.append(psycopg.Error)
    return tuple(types)


def build_repositories() -> tuple[ProposalRepository, CatalogRepository]:
    backend = proposal_store_backend_name()
    if backend == "POSTGRES":
        dsn = proposal_postgres_dsn()
        if not dsn:
            raise RuntimeError("PROPOSAL_POSTGRES_DSN_REQUIRED")
        try:
            return (
                cast(ProposalRepository, PostgresProposalRepository(dsn=dsn)),
                cast(CatalogRepository, PostgresCatalogRepository(dsn=dsn)),
            )
        except RuntimeError:
            raise
        except _postgres_connection_exception_types() as exc:
            raise RuntimeError("PROPOSAL_POSTGRES_CONNECTION_FAILED") from exc
    return (
        cast(ProposalRepository, InMemoryProposalRepository()),
        cast(CatalogRepository, InMemoryCatalogRepository()),
    )


def build_signing_gateway() -> Optional[SigningGateway]:
    token = autentique_api_token()
    if not token:
        return None
    return AutentiqueGateway(
        api_token=token,
        graphql_url=autentique_graphql_url(),
        timeout_seconds=autentique_timeout_seconds(),
    )
