"""Pytest configuration shared across the suite."""

from __future__ import annotations

import pytest

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from app.services.account_store import AccountStore
from app.services.message_store import MessageStore
from app.services.token_cipher import TokenCipherService


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "social_sync.db")


@pytest.fixture
def account_store(db_path) -> AccountStore:
    return AccountStore(db_path, TokenCipherService(secret="store-secret"))


@pytest.fixture
def message_store(db_path) -> MessageStore:
    return MessageStore(db_path)
