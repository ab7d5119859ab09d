"""Root pytest configuration and shared fixtures.

Provides common test fixtures used across all test modules:
- t0: aware UTC anchor instant on an hour boundary
- tokens/pair: a WVARA/USDC pool priced at 5 USD per WVARA
- test_settings: Settings with zero backoff and a small backlog bound
- memory_repo / sqlite_session_factory: persistence backends
- sleeps: recording no-op sleep for retry tests
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dex_rollup.core.config import Settings
from dex_rollup.core.models import Base
from dex_rollup.core.records import Pair, Token
from dex_rollup.persistence.memory import InMemorySnapshotRepository

VARA = "0xvara"
USDC = "0xusdc"
FOO = "0xfoo"
PAIR = "0xpair-vara-usdc"


@pytest.fixture
def t0() -> datetime:
    """2025-03-01 12:00:00 UTC."""
    return datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def vara_token() -> Token:
    return Token(id=VARA, symbol="WVARA", decimals=12, name="Wrapped Vara", total_supply=10**9 * 10**12)


@pytest.fixture
def usdc_token() -> Token:
    return Token(id=USDC, symbol="USDC", decimals=6, name="USD Coin")


@pytest.fixture
def foo_token() -> Token:
    return Token(id=FOO, symbol="FOO", decimals=18, name="Foo", total_supply=None)


@pytest.fixture
def vara_usdc_pair() -> Pair:
    """1,000 WVARA against 5,000 USDC: spot 5 USD per WVARA."""
    return Pair(
        id=PAIR,
        token0=VARA,
        token1=USDC,
        reserve0=1_000 * 10**12,
        reserve1=5_000 * 10**6,
        total_supply=10**15,
    )


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        flush_max_attempts=3,
        flush_deadline_seconds=60.0,
        flush_backoff_initial_seconds=0.0,
        flush_backoff_max_seconds=0.0,
        flush_backoff_jitter_seconds=0.0,
        max_unflushed_blocks=3,
        backlog_flush_deadline_seconds=0.0,
    )


@pytest.fixture
def memory_repo() -> InMemorySnapshotRepository:
    return InMemorySnapshotRepository()


@pytest.fixture
def sqlite_session_factory() -> sessionmaker:
    """In-memory SQLite database with the full schema, shared by all sessions."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def sleeps() -> list[float]:
    """Collects requested sleep durations; pass ``sleeps.append`` as sleep."""
    return []
