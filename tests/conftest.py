# tests/conftest.py
import pytest

from rpi_adapter.core.clock import ManualClock
from rpi_adapter.core.state import PortConfig, PortRole
from rpi_adapter.core.state_store import StateStore
from rpi_adapter.hw.mock import MockLineDriver, MockSensorDriver


@pytest.fixture
def clock():
    return ManualClock(start_ms=1_000.0, start_ts=1_700_000_000.0)


@pytest.fixture
def store():
    return StateStore()


@pytest.fixture
def driver():
    return MockLineDriver(board_model=4)


@pytest.fixture
def sensors():
    return MockSensorDriver()


def port(pin, role, **kw):
    return PortConfig(pin=pin, role=PortRole(role), **kw)


def gpio_changes(store, path):
    """Wartości opublikowane na danej ścieżce, w kolejności zapisu."""
    changes, _, _ = store.changes_since(0)
    return [ch.val for ch in changes if ch.path == path]
