import argparse
import os
import sys
from importlib.util import find_spec
from pathlib import Path

_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Apply forward-only PostgreSQL migrations for the catalog and proposal stores."
    )
    parser.add_argument(
        "--target",
        choices=["catalog", "proposals", "all"],
        default="all",
        help="Migration target namespace.",
    )
    parser.add_argument(
        "--dsn",
        default=os.getenv("PROPOSAL_POSTGRES_DSN", "").strip(),
        help="PostgreSQL DSN shared by the catalog and proposal stores.",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="List pending migrations without applying them; exits 1 when any are pending.",
    )
    args = parser.parse_args()

    if find_spec("psycopg") is None:
        raise RuntimeError("POSTGRES_MIGRATION_DRIVER_MISSING")
    import psycopg
    from psycopg.rows import dict_row

    from src.infrastructure.postgres_migrations import (
        MIGRATION_NAMESPACES,
        apply_postgres_migrations,
        pending_postgres_migrations,
    )

    if not args.dsn:
        raise RuntimeError("POSTGRES_MIGRATION_DSN_REQUIRED")
    namespaces = MIGRATION_NAMESPACES if args.target == "all" else (args.target,)
    pending_total = 0
    with psycopg.connect(args.dsn, row_factory=dict_row) as connection:
        for namespace in namespaces:
            if args.check:
                pending = pending_postgres_migrations(connection=connection, namespace=namespace)
                pending_total += len(pending)
                print(f"Pending migrations namespace={namespace} versions={pending}")
                continue
            applied = apply_postgres_migrations(connection=connection, namespace=namespace)
            print(f"Applied migrations namespace={namespace} versions={applied}")
    return 1 if args.check and pending_total else 0


if __name__ == "__main__":
    raise SystemExit(main())
