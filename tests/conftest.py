from datetime import datetime, timedelta

import pytest

from qr_checkin import create_app
from qr_checkin.extensions import check_in_service
from qr_checkin.services.check_in_policy import CheckInMode, SessionState
from qr_checkin.services.reconciliation_service import ReconciliationEngine
from qr_checkin.services.storage import MemoryKeyValueStore

ORGANIZER_PIN = '2468'


class FakeClock:
    """Wall clock for record timestamps that only moves when told to."""

    def __init__(self, start=None):
        self.current = start or datetime(2026, 3, 14, 9, 0, 0)

    def __call__(self):
        return self.current

    def advance(self, seconds=1):
        self.current += timedelta(seconds=seconds)
        return self.current


class FakeMonotonic:
    """Monotonic clock in seconds for the debounce guard."""

    def __init__(self):
        self.current = 1000.0

    def __call__(self):
        return self.current

    def advance(self, milliseconds):
        self.current += milliseconds / 1000


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def monotonic():
    return FakeMonotonic()


@pytest.fixture()
def store():
    return MemoryKeyValueStore()


@pytest.fixture()
def engine(store, clock, monotonic):
    return ReconciliationEngine(
        store=store,
        organizer_pin=ORGANIZER_PIN,
        clock=clock,
        monotonic=monotonic
    )


@pytest.fixture()
def device_engine(store, clock, monotonic):
    return ReconciliationEngine(
        store=store,
        dedup_key='device_id',
        scan_fallback='device_id',
        organizer_pin=ORGANIZER_PIN,
        clock=clock,
        monotonic=monotonic
    )


@pytest.fixture()
def organizer_state():
    return SessionState(mode=CheckInMode.ORGANIZER_SCAN, unlocked=True)


@pytest.fixture()
def app():
    app = create_app('testing')
    yield app


@pytest.fixture()
def client(app):
    with app.test_client() as c:
        yield c


@pytest.fixture()
def organizer_client(client):
    res = client.post('/check-in/unlock', json={'pin': ORGANIZER_PIN})
    assert res.status_code == 200
    res = client.post('/check-in/mode', json={'mode': CheckInMode.ORGANIZER_SCAN})
    assert res.status_code == 200
    return client


@pytest.fixture()
def service(app):
    return check_in_service
