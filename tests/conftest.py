"""Shared fixtures for the booking sync test suite.

Provides an in-memory document store, a fixed clock, a fully wired
BookingCore, a store that can be told to fail writes under given paths,
and a temp-file SQLite DatabaseManager.
"""
import os
import shutil
import tempfile

import pytest

from bookings.core import BookingCore
from bookings.notifications import Notifier
from bookings.paths import crew_path, customer_path
from database.store import InMemoryDocumentStore, StoreError

FIXED_NOW = "2025-01-15T10:00:00+00:00"


def fixed_clock():
    return FIXED_NOW


class RecordingNotifier(Notifier):
    """Collects notification calls instead of sending them."""

    def __init__(self):
        self.events = []

    def booking_created(self, booking_id, booking):
        self.events.append(("created", booking_id))

    def booking_cancelled(self, booking_id, booking):
        self.events.append(("cancelled", booking_id))

    def payment_received(self, booking_id, booking, amount):
        self.events.append(("payment", booking_id, amount))


class FlakyStore(InMemoryDocumentStore):
    """In-memory store whose single-document writes fail under chosen prefixes."""

    def __init__(self):
        super().__init__()
        self.failing_prefixes = set()

    def _check(self, path):
        for prefix in self.failing_prefixes:
            if path.startswith(prefix):
                raise StoreError(f"simulated write failure: {path}")

    def set(self, path, fields, merge=False):
        self._check(path)
        super().set(path, fields, merge)

    def update(self, path, fields):
        self._check(path)
        super().update(path, fields)

    def delete(self, path):
        self._check(path)
        super().delete(path)


@pytest.fixture
def clock():
    """Stable clock for deterministic timestamps."""
    return fixed_clock


@pytest.fixture
def store():
    """Fresh in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def core(store, notifier):
    """BookingCore wired on the in-memory store."""
    return BookingCore(store, notifier=notifier, clock=fixed_clock)


@pytest.fixture
def flaky_store():
    return FlakyStore()


@pytest.fixture
def flaky_core(flaky_store, notifier):
    """BookingCore wired on a store that can fail selected writes."""
    return BookingCore(flaky_store, notifier=notifier, clock=fixed_clock)


def _seed(target):
    def add_crews(*crew_ids, hours=0.0, amount=0.0):
        for crew_id in crew_ids:
            target.store.set(crew_path(crew_id), {
                "name": crew_id, "hours": hours, "totalAmount": amount,
            })

    def add_customer(customer_id="cust-1"):
        target.store.set(customer_path(customer_id), {
            "dueAmount": 0.0, "totalAmount": 0.0, "hours": 0.0,
        })

    def make_booking(booking_id="b1", customer_id="cust-1", hours=2,
                     professionals=1, total=100.0, **extra):
        if not target.store.exists(customer_path(customer_id)):
            add_customer(customer_id)
        data = {
            "customerId": customer_id,
            "date": "2025-01-20",
            "time": "09:00",
            "hours": hours,
            "professionals": professionals,
            "totalAmount": total,
        }
        data.update(extra)
        target.lifecycle.create_booking(data, booking_id=booking_id)
        return booking_id

    return add_crews, add_customer, make_booking


@pytest.fixture
def add_crews(core):
    """Create crew ledger documents on the in-memory store."""
    return _seed(core)[0]


@pytest.fixture
def add_customer(core):
    return _seed(core)[1]


@pytest.fixture
def make_booking(core):
    """Create a booking (and its customer account) through the lifecycle."""
    return _seed(core)[2]


@pytest.fixture
def flaky_seed(flaky_core):
    """(add_crews, add_customer, make_booking) bound to flaky_core."""
    return _seed(flaky_core)


@pytest.fixture
def temp_db():
    """Yield a fresh DatabaseManager bound to a temp SQLite database."""
    from database.manager import DatabaseManager

    temp_dir = tempfile.mkdtemp(prefix="booking-sync-tests-")
    db_path = os.path.join(temp_dir, "test.db")
    manager = DatabaseManager(database_url=f"sqlite:///{db_path}", clock=fixed_clock)
    manager.create_tables()

    try:
        yield manager
    finally:
        manager.close()
        shutil.rmtree(temp_dir, ignore_errors=True)
