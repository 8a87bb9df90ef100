"""User + session persistence.

`InMemoryAuthStore` serves tests and single-process development; `PostgresAuthStore`
imports psycopg, so it is only loaded when the postgres backend is selected.
"""

from lawlzer.storage.base import AuthStore, StoreError, UniquenessConflict
from lawlzer.storage.memory_store import InMemoryAuthStore

__all__ = ["AuthStore", "StoreError", "UniquenessConflict", "InMemoryAuthStore"]
