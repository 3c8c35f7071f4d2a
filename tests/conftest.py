import os

# Keep test runs off the real log directory and off Redis.
os.environ.setdefault("BARTOK_LOG_FILE", "0")
os.environ.setdefault("BARTOK_STORE", "memory")

import pytest

from bartok import barcode_tokens
from bartok.config import TokenPolicy
from bartok.lifecycle import TokenLifecycleManager
from bartok.store import InMemoryTokenStore


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy() -> TokenPolicy:
    return TokenPolicy(active_window_seconds=300, grace_buffer_seconds=120)


@pytest.fixture
def store(clock: FakeClock) -> InMemoryTokenStore:
    return InMemoryTokenStore(clock=clock)


@pytest.fixture
def manager(store: InMemoryTokenStore, policy: TokenPolicy) -> TokenLifecycleManager:
    return TokenLifecycleManager(store, policy)


@pytest.fixture
def default_manager(manager: TokenLifecycleManager):
    barcode_tokens.set_manager(manager)
    yield manager
    barcode_tokens.set_manager(None)
