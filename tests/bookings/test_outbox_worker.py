"""Sync intent (outbox) and reconciliation worker tests."""
import pytest

from bookings.errors import PartialSyncFailure
from bookings.outbox import (
    INTENT_ABANDONED, INTENT_DONE, INTENT_FAILED, INTENT_PENDING, LEG_DONE,
    LEG_FAILED, ReconciliationWorker, SyncOutbox,
)
from bookings.paths import booking_path, crew_path, intent_path, mirror_path


class TestCommit:
    """Master write plus intent record, then legs."""

    def test_successful_transition_marks_intent_done(self, core, make_booking):
        make_booking("b1")
        result = core.assignments.assign_crew("b1", "C1")

        intent = core.outbox.get_intent(result.intent_id)
        assert intent["state"] == INTENT_DONE
        assert intent["operation"] == "assign_crew"
        assert intent["attempts"] == 1
        assert all(leg["state"] == LEG_DONE for leg in intent["legs"])

    def test_mirror_failure_is_partial(self, flaky_core, flaky_store, flaky_seed):
        _, _, make_booking = flaky_seed
        make_booking("b1")
        flaky_store.failing_prefixes.add("users/cust-1/bookings")

        result = flaky_core.assignments.assign_crew("b1", "C1")

        assert not result.ok
        assert isinstance(result.failure, PartialSyncFailure)
        assert result.failure.booking_id == "b1"
        assert result.failure.customer_id == "cust-1"
        assert result.failure.status == "assigned"
        # master is committed even though the mirror leg failed
        assert flaky_store.get(booking_path("b1"))["assignedStatus"] == "assigned"
        assert flaky_core.outbox.get_intent(result.intent_id)["state"] == INTENT_FAILED

    def test_ledger_failure_is_partial(self, flaky_core, flaky_store, flaky_seed):
        add_crews, _, make_booking = flaky_seed
        add_crews("C1")
        make_booking("b1")
        flaky_core.assignments.assign_crew("b1", "C1")
        flaky_store.failing_prefixes.add("crews/")

        result = flaky_core.assignments.confirm_crew("b1", "C1")

        assert [leg["kind"] for leg in result.failed_legs] == ["ledger"]
        assert flaky_store.get(mirror_path("b1", "cust-1"))["assignedStatus"] == "confirm"

    def test_unknown_leg_kind_fails(self, store):
        outbox = SyncOutbox(store)
        store.set(booking_path("b1"), {"hours": 1})
        result = outbox.commit("b1", "cust-1", "test", None, [{"kind": "mystery"}])
        assert result.failed_legs[0]["error"].startswith("no handler")


class TestReconciliationWorker:
    """Failed legs are replayed until they succeed or are abandoned."""

    def test_replays_failed_mirror_leg(self, flaky_core, flaky_store, flaky_seed):
        _, _, make_booking = flaky_seed
        make_booking("b1")
        flaky_store.failing_prefixes.add("users/cust-1/bookings")
        result = flaky_core.assignments.assign_crew("b1", "C1")
        assert not result.ok

        flaky_store.failing_prefixes.clear()
        stats = flaky_core.worker.run_once()

        assert stats["processed"] == 1
        assert stats["recovered"] == 1
        assert flaky_store.get(mirror_path("b1", "cust-1"))["assignedStatus"] == "assigned"
        intent = flaky_core.outbox.get_intent(result.intent_id)
        assert intent["state"] == INTENT_DONE
        assert intent["attempts"] == 2

    def test_replay_applies_ledger_once(self, flaky_core, flaky_store, flaky_seed):
        add_crews, _, make_booking = flaky_seed
        add_crews("C1", "C2")
        make_booking("b1", professionals=2, hours=2, total=100.0)
        flaky_core.assignments.assign_crew("b1", "C1")
        flaky_core.assignments.assign_crew("b1", "C2")
        flaky_store.failing_prefixes.add("crews/C2")

        flaky_core.assignments.set_status("b1", "confirm")
        assert flaky_store.get(crew_path("C1"))["totalAmount"] == pytest.approx(50.0)
        assert flaky_store.get(crew_path("C2"))["totalAmount"] == 0.0

        flaky_store.failing_prefixes.clear()
        flaky_core.worker.run_once()
        flaky_core.worker.run_once()

        assert flaky_store.get(crew_path("C1"))["totalAmount"] == pytest.approx(50.0)
        assert flaky_store.get(crew_path("C2"))["totalAmount"] == pytest.approx(50.0)

    def test_abandons_after_max_attempts(self, flaky_core, flaky_store, flaky_seed):
        _, _, make_booking = flaky_seed
        make_booking("b1")
        flaky_store.failing_prefixes.add("users/cust-1/bookings")
        result = flaky_core.assignments.assign_crew("b1", "C1")

        worker = ReconciliationWorker(flaky_core.outbox, max_attempts=3)
        first = worker.run_once()
        second = worker.run_once()
        third = worker.run_once()

        assert first["failed"] == 1
        assert second["abandoned"] == 1
        assert third["processed"] == 0
        assert flaky_core.outbox.get_intent(result.intent_id)["state"] == INTENT_ABANDONED

    def test_stale_pending_intent_is_resumed(self, core, make_booking):
        make_booking("b1")
        core.store.update(booking_path("b1"), {"assignedStatus": "assigned"})
        core.store.set(intent_path("stuck"), {
            "bookingId": "b1", "customerId": "cust-1", "operation": "assign_crew",
            "status": "assigned", "state": INTENT_PENDING, "attempts": 0,
            "createdAt": "2025-01-15T09:00:00+00:00",
            "updatedAt": "2025-01-15T09:00:00+00:00",
            "legs": [{"kind": "mirror", "op": "sync", "status": "assigned",
                      "fields": {}, "state": "pending"}],
        })

        stats = core.worker.run_once()

        assert stats["recovered"] == 1
        assert core.store.get(mirror_path("b1", "cust-1"))["assignedStatus"] == "assigned"

    def test_fresh_pending_intent_is_left_alone(self, core, make_booking):
        make_booking("b1")
        core.store.set(intent_path("inflight"), {
            "bookingId": "b1", "customerId": "cust-1", "state": INTENT_PENDING,
            "createdAt": "2025-01-15T10:00:00+00:00",
            "updatedAt": "2025-01-15T10:00:00+00:00",
            "legs": [],
        })
        assert core.worker.run_once()["processed"] == 0

    def test_purge_completed(self, core, make_booking):
        make_booking("b1")
        core.assignments.assign_crew("b1", "C1")
        purged = core.worker.purge_completed()
        assert purged == 2
        assert core.outbox.list_intents() == []


# ============================================================
# Replays against newer state
# ============================================================
class TestReplaySafety:
    """Replaying an old intent must not undo or repeat later work."""

    def test_replayed_mirror_leg_uses_current_master(self, flaky_core, flaky_store, flaky_seed):
        _, _, make_booking = flaky_seed
        make_booking("b1", professionals=2)
        flaky_store.failing_prefixes.add("users/cust-1/bookings")
        first = flaky_core.assignments.assign_crew("b1", "C1")
        assert not first.ok

        flaky_store.failing_prefixes.clear()
        second = flaky_core.assignments.assign_crew("b1", "C2")
        assert second.ok

        stats = flaky_core.worker.run_once()

        mirror = flaky_store.get(mirror_path("b1", "cust-1"))
        assert stats["recovered"] == 1
        assert mirror["assignedStatus"] == "assigned"
        assert mirror["assignedCrews"] == ["C1", "C2"]
        assert flaky_core.validator.validate("b1", "cust-1").in_sync

    def test_unrecorded_intent_state_is_reported(self, flaky_core, flaky_store, flaky_seed):
        add_crews, _, make_booking = flaky_seed
        add_crews("C1")
        make_booking("b1", hours=2, total=100.0)
        flaky_core.assignments.assign_crew("b1", "C1")
        flaky_store.failing_prefixes.add("syncIntents/")

        result = flaky_core.assignments.confirm_crew("b1", "C1")

        assert not result.ok
        assert isinstance(result.failure, PartialSyncFailure)
        assert result.failure.failed_legs[-1]["kind"] == "intent"
        assert flaky_core.outbox.get_intent(result.intent_id)["state"] == INTENT_PENDING
        assert flaky_store.get(crew_path("C1"))["totalAmount"] == pytest.approx(100.0)

    def test_resumed_intent_does_not_reapply_ledger(self, flaky_core, flaky_store, flaky_seed):
        add_crews, _, make_booking = flaky_seed
        add_crews("C1")
        make_booking("b1", hours=2, total=100.0)
        flaky_core.assignments.assign_crew("b1", "C1")
        flaky_store.failing_prefixes.add("syncIntents/")
        result = flaky_core.assignments.confirm_crew("b1", "C1")

        flaky_core.outbox.clock = lambda: "2025-01-15T10:10:00+00:00"
        assert flaky_core.worker.run_once()["processed"] == 1
        flaky_store.failing_prefixes.clear()
        assert flaky_core.worker.run_once()["recovered"] == 1

        crew = flaky_store.get(crew_path("C1"))
        assert crew["totalAmount"] == pytest.approx(100.0)
        assert crew["hours"] == pytest.approx(2.0)
        assert flaky_core.outbox.get_intent(result.intent_id)["state"] == INTENT_DONE

    def test_ledger_leg_id_is_applied_once(self, core, add_crews):
        add_crews("C1")
        leg = {"crewId": "C1", "hoursDelta": 2, "amountDelta": 40.0,
               "reason": "test", "legId": "intent-1-0"}

        core.ledger.apply_leg(leg)
        core.ledger.apply_leg(leg)

        crew = core.store.get(crew_path("C1"))
        assert crew["totalAmount"] == pytest.approx(40.0)
        assert crew["appliedLegs"] == ["intent-1-0"]

    def test_account_leg_id_is_applied_once(self, core, add_customer):
        add_customer("cust-1")
        leg = {"customerId": "cust-1", "dueDelta": 30.0, "legId": "intent-2-1"}

        core.accounts.apply_leg(leg)
        core.accounts.apply_leg(leg)

        assert core.accounts.get("cust-1")["dueAmount"] == pytest.approx(30.0)
