"""Crew ledger reconciler tests."""
import pytest

from bookings.errors import CrewNotFound
from bookings.ledger import CrewLedgerReconciler, share_legs
from bookings.paths import crew_path
from bookings.records import BookingView


def _view(hours=2, professionals=3, total=150.0):
    return BookingView.from_document("b1", {
        "customerId": "cust-1", "hours": hours,
        "professionals": professionals, "totalAmount": total,
    })


class TestApplyDelta:
    """Hours and amounts never go below zero."""

    def test_missing_crew_raises(self, core):
        with pytest.raises(CrewNotFound):
            core.ledger.apply_delta("ghost", 2, 50)

    def test_adds(self, core, add_crews):
        add_crews("c1")
        result = core.ledger.apply_delta("c1", 2, 50.0)
        assert result == {"hours": 2.0, "totalAmount": 50.0}
        assert core.store.get(crew_path("c1"))["totalAmount"] == 50.0

    def test_floor_at_zero(self, core, add_crews):
        add_crews("c1", hours=1.0, amount=20.0)
        result = core.ledger.apply_delta("c1", -5, -100.0)
        assert result == {"hours": 0.0, "totalAmount": 0.0}

    def test_repeated_reversal_stays_at_zero(self, core, add_crews):
        add_crews("c1")
        view = _view()
        core.ledger.apply_share(view, "c1", 1)
        for _ in range(3):
            core.ledger.apply_share(view, "c1", -1)
        crew = core.store.get(crew_path("c1"))
        assert crew["hours"] == 0.0
        assert crew["totalAmount"] == 0.0

    def test_string_ledger_values_are_parsed(self, core):
        core.store.set(crew_path("c1"), {"hours": "3", "totalAmount": "40.5"})
        assert core.ledger.apply_delta("c1", 1, 0.5) == {"hours": 4.0, "totalAmount": 41.0}


class TestShares:
    """Share computation and leg construction."""

    def test_share_is_total_over_professionals(self):
        assert _view().share == pytest.approx(50.0)

    def test_share_with_single_professional(self):
        assert _view(professionals=1, total=100.0).share == pytest.approx(100.0)

    def test_share_legs_sign(self):
        legs = share_legs(_view(), ["c1", "c2"], -1, "test")
        assert [leg["crewId"] for leg in legs] == ["c1", "c2"]
        assert all(leg["hoursDelta"] == -2 for leg in legs)
        assert all(leg["amountDelta"] == pytest.approx(-50.0) for leg in legs)

    def test_apply_share_conservation(self, core, add_crews):
        add_crews("c1", "c2", "c3")
        view = _view()
        for crew_id in ("c1", "c2", "c3"):
            core.ledger.apply_share(view, crew_id, 1)
        core.ledger.apply_share(view, "c2", -1)

        assert core.store.get(crew_path("c1"))["totalAmount"] == pytest.approx(50.0)
        assert core.store.get(crew_path("c2"))["totalAmount"] == pytest.approx(0.0)
        assert core.store.get(crew_path("c3"))["hours"] == pytest.approx(2.0)


class TestSettlement:
    """Crew payment settlement and history."""

    def test_settle_records_and_resets(self, core, add_crews):
        add_crews("c1", hours=6.0, amount=300.0)
        record = core.ledger.settle_payment("c1", notes="January")

        crew = core.store.get(crew_path("c1"))
        assert record["amount"] == 300.0
        assert record["hours"] == 6.0
        assert record["notes"] == "January"
        assert crew["hours"] == 0.0
        assert crew["totalAmount"] == 0.0

    def test_settle_explicit_amount(self, core, add_crews):
        add_crews("c1", hours=6.0, amount=300.0)
        assert core.ledger.settle_payment("c1", amount=250)["amount"] == 250.0

    def test_settle_negative_amount_rejected(self, core, add_crews):
        add_crews("c1", amount=10.0)
        with pytest.raises(ValueError):
            core.ledger.settle_payment("c1", amount=-1)
        assert core.store.get(crew_path("c1"))["totalAmount"] == 10.0

    def test_settle_missing_crew(self, core):
        with pytest.raises(CrewNotFound):
            core.ledger.settle_payment("ghost")

    def test_history_newest_first(self, store, add_crews):
        stamps = iter(["2025-01-01T00:00:00", "2025-02-01T00:00:00"])
        ledger = CrewLedgerReconciler(store, clock=lambda: next(stamps))
        add_crews("c1", amount=10.0)
        ledger.settle_payment("c1")
        store.update(crew_path("c1"), {"totalAmount": 20.0})
        ledger.settle_payment("c1")

        history = ledger.payment_history("c1")
        assert [r["settledAt"] for r in history] == [
            "2025-02-01T00:00:00", "2025-01-01T00:00:00",
        ]
        assert [r["amount"] for r in history] == [20.0, 10.0]


class TestInitializeLedgers:

    def test_backfills_missing_fields(self, core):
        core.store.set(crew_path("old"), {"name": "old"})
        core.store.set(crew_path("new"), {"name": "new", "hours": 3.0, "totalAmount": 9.0})

        result = core.ledger.initialize_crew_ledgers()

        assert result == {"total": 2, "updated": 1}
        assert core.store.get(crew_path("old"))["totalAmount"] == 0.0
        assert core.store.get(crew_path("new"))["hours"] == 3.0
