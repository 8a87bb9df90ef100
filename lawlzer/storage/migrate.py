"""
Schema migrations for the Postgres auth store.

Files in `migrations/` are named `NNNN_description.sql` and applied in version order, each in
its own transaction, while holding an advisory lock so replicas starting together don't race.
The sha256 of every applied file is recorded; editing an applied file is an error, not a no-op.

After a run the schema is checked for the named unique constraints that `PostgresAuthStore`
translates into `UniquenessConflict` fields. Without them a duplicate would surface as an
"unknown" conflict and identity resolution could not recover from it.

Usage: `python -m lawlzer.storage.migrate [--status]`
"""

from __future__ import annotations

import argparse
import hashlib
import logging
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

import psycopg

from lawlzer.storage.config import StoreConfig, load_store_config
from lawlzer.storage.postgres_store import CONSTRAINT_FIELDS

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

LEDGER_TABLE = "schema_migrations"
# bigint key for pg_advisory_lock, shared by every replica of this service.
MIGRATION_LOCK_KEY = 417730251987

_Ledger = Dict[str, Tuple[str, Optional[datetime]]]


class MigrationError(RuntimeError):
    pass


class MigrationState(str, Enum):
    APPLIED = "applied"
    PENDING = "pending"
    # Applied, but the file on disk no longer matches the recorded checksum.
    MODIFIED = "modified"


@dataclass(frozen=True)
class Migration:
    version: str
    name: str
    checksum: str
    sql: str

    @classmethod
    def from_file(cls, path: Path) -> "Migration":
        raw = path.read_bytes()
        version, _, name = path.stem.partition("_")
        return cls(
            version=version,
            name=name or path.stem,
            checksum=hashlib.sha256(raw).hexdigest(),
            sql=raw.decode("utf-8"),
        )


@dataclass(frozen=True)
class MigrationStatus:
    version: str
    name: str
    state: MigrationState
    applied_at: Optional[datetime] = None
    applied_now: bool = False

    def describe(self) -> str:
        if self.applied_now:
            detail = "applied now"
        elif self.applied_at is not None:
            detail = f"{self.state.value} at {self.applied_at.isoformat()}"
        else:
            detail = self.state.value
        return f"{self.version}  {self.name:<28} {detail}"


def load_migrations(directory: Path = MIGRATIONS_DIR) -> List[Migration]:
    migrations = [Migration.from_file(p) for p in sorted(directory.glob("*.sql"))]
    seen: Dict[str, str] = {}
    for m in migrations:
        if m.version in seen:
            raise MigrationError(f"Duplicate migration version {m.version}: {seen[m.version]} and {m.name}")
        seen[m.version] = m.name
    return migrations


def _connect(dsn: str):
    return psycopg.connect(dsn)


def _ledger(conn) -> _Ledger:
    """version -> (checksum, applied_at); empty when the ledger table doesn't exist yet."""
    exists = conn.execute("SELECT to_regclass(%s)", (LEDGER_TABLE,)).fetchone()
    if not exists or exists[0] is None:
        return {}
    rows = conn.execute(f"SELECT version, checksum, applied_at FROM {LEDGER_TABLE}").fetchall()
    return {str(version): (str(checksum), applied_at) for version, checksum, applied_at in rows}


def _statuses(migrations: Iterable[Migration], ledger: _Ledger) -> List[MigrationStatus]:
    out: List[MigrationStatus] = []
    for m in migrations:
        recorded = ledger.get(m.version)
        if recorded is None:
            out.append(MigrationStatus(m.version, m.name, MigrationState.PENDING))
            continue
        checksum, applied_at = recorded
        state = MigrationState.APPLIED if checksum == m.checksum else MigrationState.MODIFIED
        out.append(MigrationStatus(m.version, m.name, state, applied_at))
    return out


def missing_constraints(conn) -> List[str]:
    """Constraint names the Postgres store relies on that the live schema lacks."""
    rows = conn.execute(
        "SELECT c.conname FROM pg_constraint c JOIN pg_class t ON t.oid = c.conrelid WHERE t.relname = ANY(%s)",
        (["users", "sessions"],),
    ).fetchall()
    present = {str(r[0]) for r in rows}
    return sorted(name for name in CONSTRAINT_FIELDS if name not in present)


@contextmanager
def _migration_lock(dsn: str) -> Iterator[psycopg.Connection]:
    with _connect(dsn) as conn:
        conn.execute("SELECT pg_advisory_lock(%s)", (MIGRATION_LOCK_KEY,))
        try:
            yield conn
        finally:
            conn.execute("SELECT pg_advisory_unlock(%s)", (MIGRATION_LOCK_KEY,))


def migration_status(*, dsn: str, migrations: Optional[Iterable[Migration]] = None) -> List[MigrationStatus]:
    """Read-only: report every known migration without taking the lock or creating the ledger."""
    migs = list(migrations) if migrations is not None else load_migrations()
    with _connect(dsn) as conn:
        return _statuses(migs, _ledger(conn))


def apply_migrations(*, dsn: str, migrations: Optional[Iterable[Migration]] = None) -> List[MigrationStatus]:
    """
    Apply pending migrations, then verify the auth schema.

    Nothing is applied when any recorded migration was edited. Raises MigrationError for that and
    for a schema missing store constraints; returns the status of every migration otherwise.
    """
    migs = list(migrations) if migrations is not None else load_migrations()
    with _migration_lock(dsn) as conn:
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {LEDGER_TABLE} (
              version text PRIMARY KEY,
              name text NOT NULL,
              checksum text NOT NULL,
              applied_at timestamptz NOT NULL DEFAULT now()
            )
            """
        )
        statuses = _statuses(migs, _ledger(conn))
        modified = [s.version for s in statuses if s.state is MigrationState.MODIFIED]
        if modified:
            raise MigrationError(f"Applied migration(s) changed on disk: {', '.join(modified)}")

        result: List[MigrationStatus] = []
        for m, status in zip(migs, statuses):
            if status.state is MigrationState.PENDING:
                with conn.transaction():
                    conn.execute(m.sql)
                    conn.execute(
                        f"INSERT INTO {LEDGER_TABLE} (version, name, checksum) VALUES (%s, %s, %s)",
                        (m.version, m.name, m.checksum),
                    )
                logger.info("Applied migration %s_%s", m.version, m.name)
                status = MigrationStatus(m.version, m.name, MigrationState.APPLIED, applied_now=True)
            result.append(status)

        missing = missing_constraints(conn)
    if missing:
        raise MigrationError(f"Auth schema is missing constraints: {', '.join(missing)}")
    return result


def summarize(statuses: Iterable[MigrationStatus]) -> str:
    fresh = [s.version for s in statuses if s.applied_now]
    if fresh:
        return f"Applied {len(fresh)} migration(s): {', '.join(fresh)}"
    return "No pending migrations"


def maybe_auto_migrate(cfg: Optional[StoreConfig] = None) -> Tuple[bool, str]:
    """
    Startup hook: migrate when DB_AUTO_MIGRATE=1 and the Postgres store is in use.

    Returns (did_attempt, message). Migration errors propagate to the caller.
    """
    cfg = cfg or load_store_config()
    if not cfg.auto_migrate:
        return False, "DB_AUTO_MIGRATE is disabled"
    if cfg.backend != "postgres" or cfg.dsn is None:
        return False, "Store backend is not postgres"
    return True, summarize(apply_migrations(dsn=cfg.dsn))


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="python -m lawlzer.storage.migrate", description="Auth store migrations")
    parser.add_argument(
        "--status",
        action="store_true",
        help="List migrations without applying them; exit 1 if any is pending or modified",
    )
    args = parser.parse_args(argv)

    cfg = load_store_config()
    if cfg.dsn is None:
        print("Postgres not configured (set POSTGRES_DSN or POSTGRES_* env vars).", file=sys.stderr)
        return 2

    if args.status:
        statuses = migration_status(dsn=cfg.dsn)
        for s in statuses:
            print(s.describe())
        return 0 if all(s.state is MigrationState.APPLIED for s in statuses) else 1

    try:
        statuses = apply_migrations(dsn=cfg.dsn)
    except MigrationError as e:
        print(f"Migration failed: {e}", file=sys.stderr)
        return 1
    for s in statuses:
        print(s.describe())
    print(summarize(statuses))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
