import pytest

from cryptomovers.cache import MemoryStore
from movers_testing import FrozenClock


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def memory_store():
    return MemoryStore(max_size=100)
