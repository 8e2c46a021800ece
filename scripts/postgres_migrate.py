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
        description="Apply forward-only PostgreSQL migrations for the proposal store."
    )
    parser.add_argument(
        "--target",
        choices=["proposals"],
        default="proposals",
        help="Migration target namespace.",
    )
    parser.add_argument(
        "--proposals-dsn",
        default=os.getenv("PROPOSAL_POSTGRES_DSN", "").strip(),
        help="PostgreSQL DSN for proposal store migrations.",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="List pending migrations without applying them; exit 1 when any are pending.",
    )
    args = parser.parse_args()

    if find_spec("psycopg") is None:
        raise RuntimeError("POSTGRES_MIGRATION_DRIVER_MISSING")
    import psycopg
    from psycopg.rows import dict_row

    from presale.infrastructure.postgres_migrations import (
        apply_postgres_migrations,
        pending_postgres_migrations,
    )

    namespace = args.target
    if not args.proposals_dsn:
        raise RuntimeError(f"POSTGRES_MIGRATION_DSN_REQUIRED:{namespace}")
    with psycopg.connect(args.proposals_dsn, row_factory=dict_row) as connection:
        if args.check:
            pending = pending_postgres_migrations(connection=connection, namespace=namespace)
            print(f"Pending migrations for namespace={namespace}: {','.join(pending) or 'none'}")
            return 1 if pending else 0
        applied = apply_postgres_migrations(connection=connection, namespace=namespace)
    print(f"Applied migrations for namespace={namespace}: {','.join(applied) or 'none'}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
