"""
Where users and sessions live.

`AUTH_STORE` picks the backend. Left unset, Postgres is chosen as soon as a connection is
configured (`POSTGRES_DSN`, or all of `POSTGRES_HOST/DB/USER/PASSWORD`), otherwise memory.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from psycopg.conninfo import make_conninfo

from lawlzer.core.env import env_bool, env_int, env_str
from lawlzer.storage.base import AuthStore

BACKENDS = ("memory", "postgres")


@dataclass(frozen=True)
class StoreConfig:
    backend: str
    # libpq conninfo; None when Postgres isn't configured.
    dsn: Optional[str]
    auto_migrate: bool
    connect_timeout_seconds: Optional[int] = None


def postgres_dsn_from_env(connect_timeout: Optional[int] = None) -> Optional[str]:
    """
    Resolve the Postgres connection string.

    `POSTGRES_DSN` wins over the parts. The parts go through psycopg's conninfo builder, which
    quotes passwords with spaces or quotes in them. `connect_timeout`, when given, overrides
    whatever the DSN says.
    """
    extra = {"connect_timeout": connect_timeout} if connect_timeout else {}
    dsn = env_str("POSTGRES_DSN")
    if dsn:
        return make_conninfo(dsn, **extra) if extra else dsn

    host, db, user, pw = (env_str(f"POSTGRES_{k}") for k in ("HOST", "DB", "USER", "PASSWORD"))
    if not (host and db and user and pw):
        return None
    port = env_str("POSTGRES_PORT")
    if port:
        extra["port"] = port
    return make_conninfo(host=host, dbname=db, user=user, password=pw, **extra)


def load_store_config() -> StoreConfig:
    requested = (env_str("AUTH_STORE") or "").lower()
    if requested and requested not in BACKENDS:
        raise ValueError(f"AUTH_STORE must be one of {', '.join(BACKENDS)}; got {requested!r}")

    timeout = env_int("POSTGRES_CONNECT_TIMEOUT", 0, minimum=0) or None
    dsn = postgres_dsn_from_env(timeout)
    return StoreConfig(
        backend=requested or ("postgres" if dsn else "memory"),
        dsn=dsn,
        auto_migrate=env_bool("DB_AUTO_MIGRATE", False),
        connect_timeout_seconds=timeout,
    )


def build_store(cfg: Optional[StoreConfig] = None) -> AuthStore:
    cfg = cfg or load_store_config()
    if cfg.backend == "memory":
        from lawlzer.storage.memory_store import InMemoryAuthStore

        return InMemoryAuthStore()

    if cfg.dsn is None:
        raise RuntimeError("AUTH_STORE=postgres but Postgres is not configured (set POSTGRES_DSN or POSTGRES_*)")
    from lawlzer.storage.postgres_store import PostgresAuthStore

    return PostgresAuthStore(dsn=cfg.dsn)
