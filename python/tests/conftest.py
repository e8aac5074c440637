"""Shared pytest fixtures for BleepSwift tests.

Every test talks to a fresh in-memory FakeSwift through httpx.MockTransport,
so no network access or real Swift cluster is needed. The fake's module is
importable directly because the tests directory is on sys.path.
"""

import pytest
from fake_swift import FakeSwift

from bleepswift.account import Account
from bleepswift.backend import TokenBackend
from bleepswift.container import Container


@pytest.fixture
def fake() -> FakeSwift:
    """A fresh fake Swift cluster with all middlewares enabled."""
    return FakeSwift()


@pytest.fixture
async def backend(fake: FakeSwift):
    """A TokenBackend holding a valid token for the fake cluster."""
    client = fake.client()
    yield TokenBackend(fake.endpoint_url, fake.token, client=client)
    await client.aclose()


@pytest.fixture
def account(backend: TokenBackend) -> Account:
    """An Account handle for the fake cluster's default account."""
    return Account(backend)


@pytest.fixture
async def container(account: Account) -> Container:
    """An existing, empty container named "test"."""
    return await account.container("test").ensure_exists()


@pytest.fixture
async def segment_container(account: Account) -> Container:
    """An existing, empty container named "test_segments"."""
    return await account.container("test_segments").ensure_exists()
