"""
Pytest config.

Local imports like `import lawlzer` rely on the repo root being on sys.path. When invoking a
global `pytest` entrypoint that doesn't happen reliably during collection, so we pin it here.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

_ENV_PREFIXES = ("AUTH_", "POSTGRES_")


@pytest.fixture(autouse=True)
def _isolated_auth_env(monkeypatch: pytest.MonkeyPatch):
    """
    Start every test from an empty auth/store environment.

    Tests that need configuration set it with `monkeypatch.setenv` and call
    `load_auth_config.cache_clear()` themselves.
    """
    from lawlzer.auth.config import load_auth_config

    for name in list(os.environ):
        if name.startswith(_ENV_PREFIXES) or name == "DB_AUTO_MIGRATE":
            monkeypatch.delenv(name, raising=False)
    load_auth_config.cache_clear()
    yield
    load_auth_config.cache_clear()


@pytest.fixture()
def fake_http():
    from fakes import FakeHttp

    return FakeHttp()
