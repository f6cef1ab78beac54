import argparse
import asyncio
import logging
import sys
from pathlib import Path

_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))


async def _sweep(*, limit: int) -> dict[str, int]:
    from src.api.routers.public_proposals_config import (
        build_repositories,
        build_signing_gateway,
    )
    from src.core.proposals import AuditRecorder, SigningStatusReconciler

    gateway = build_signing_gateway()
    if gateway is None:
        raise RuntimeError("AUTENTIQUE_API_TOKEN_REQUIRED")
    repository, _catalog = build_repositories()
    reconciler = SigningStatusReconciler(
        repository=repository,
        gateway=gateway,
        audit=AuditRecorder(repository=repository),
    )
    return await reconciler.sweep(limit=limit)


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Poll the signing provider for proposals awaiting signature."
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Maximum proposals to check in one sweep.",
    )
    args = parser.parse_args()
    if args.limit <= 0:
        parser.error("--limit must be positive")

    logging.basicConfig(level=logging.INFO)
    counts = asyncio.run(_sweep(limit=args.limit))
    print(
        f"Reconciled signing status checked={counts['checked']} "
        f"signed={counts['signed']} unchanged={counts['unchanged']}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
