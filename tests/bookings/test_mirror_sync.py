"""Mirror repository and status sync engine tests."""
import pytest

from bookings.errors import MasterNotFound
from bookings.paths import booking_path, mirror_path

FIXED_NOW = "2025-01-15T10:00:00+00:00"


# ============================================================
# MirrorRepository
# ============================================================
class TestMirrorRepository:
    """create/delete/repair/force_sync on the customer mirror."""

    def test_create_stamps_provenance(self, core):
        ok = core.mirrors.create_mirror("b1", "cust-1", {"hours": 2})
        mirror = core.mirrors.get_mirror("b1", "cust-1")
        assert ok is True
        assert mirror["hours"] == 2
        assert mirror["mirroredAt"] == FIXED_NOW
        assert mirror["createdAt"] == FIXED_NOW

    def test_create_keeps_existing_created_at(self, core):
        core.mirrors.create_mirror("b1", "cust-1", {"createdAt": "2024-12-01T00:00:00"})
        assert core.mirrors.get_mirror("b1", "cust-1")["createdAt"] == "2024-12-01T00:00:00"

    def test_create_failure_returns_false(self, flaky_core, flaky_store):
        flaky_store.failing_prefixes.add("users/")
        assert flaky_core.mirrors.create_mirror("b1", "cust-1", {"hours": 2}) is False

    def test_delete_is_idempotent(self, core):
        core.mirrors.create_mirror("b1", "cust-1", {})
        assert core.mirrors.delete_mirror("b1", "cust-1") is True
        assert core.mirrors.delete_mirror("b1", "cust-1") is True
        assert core.mirrors.get_mirror("b1", "cust-1") is None

    def test_repair_without_master_fails(self, core):
        assert core.mirrors.repair_mirror("missing", "cust-1") is False

    def test_repair_copies_master(self, core, make_booking):
        make_booking("b1")
        core.store.delete(mirror_path("b1", "cust-1"))

        assert core.mirrors.repair_mirror("b1", "cust-1") is True
        mirror = core.mirrors.get_mirror("b1", "cust-1")
        master = core.store.get(booking_path("b1"))
        for key, value in master.items():
            assert mirror[key] == value
        assert mirror["lastSyncAt"] == FIXED_NOW

    def test_repair_is_idempotent(self, core, make_booking):
        make_booking("b1")
        core.mirrors.repair_mirror("b1", "cust-1")
        first = core.mirrors.get_mirror("b1", "cust-1")
        core.mirrors.repair_mirror("b1", "cust-1")
        assert core.mirrors.get_mirror("b1", "cust-1") == first

    def test_force_sync_stamps(self, core, make_booking):
        make_booking("b1")
        assert core.mirrors.force_sync("b1", "cust-1") is True
        assert core.mirrors.get_mirror("b1", "cust-1")["forceSyncedAt"] == FIXED_NOW

    def test_force_sync_overwrites_drift(self, core, make_booking):
        make_booking("b1")
        core.store.update(mirror_path("b1", "cust-1"), {"assignedStatus": "confirm"})
        core.mirrors.force_sync("b1", "cust-1")
        assert core.mirrors.get_mirror("b1", "cust-1")["assignedStatus"] == "unassigned"


# ============================================================
# StatusSyncEngine
# ============================================================
class TestSyncStatus:
    """The single choke point for mirror status updates."""

    def test_missing_master_raises(self, core):
        with pytest.raises(MasterNotFound):
            core.sync.sync_status("missing", "cust-1", "assigned")

    def test_updates_status_and_fields(self, core, make_booking):
        make_booking("b1")
        ok = core.sync.sync_status("b1", "cust-1", "assigned",
                                   {"assignedCrews": ["c1"], "professionalsAssigned": 1})
        mirror = core.mirrors.get_mirror("b1", "cust-1")
        assert ok is True
        assert mirror["assignedStatus"] == "assigned"
        assert mirror["assignedCrews"] == ["c1"]
        assert mirror["lastSyncAt"] == FIXED_NOW
        assert mirror["updatedAt"] == FIXED_NOW

    def test_recreates_deleted_mirror_in_same_call(self, core, make_booking):
        make_booking("b1", hours=3)
        core.store.delete(mirror_path("b1", "cust-1"))

        ok = core.sync.sync_status("b1", "cust-1", "assigned")

        mirror = core.mirrors.get_mirror("b1", "cust-1")
        assert ok is True
        assert mirror is not None
        assert mirror["hours"] == 3
        assert mirror["assignedStatus"] == "assigned"

    def test_repair_failure_returns_false(self, flaky_core, flaky_store, flaky_seed):
        _, _, make_booking = flaky_seed
        make_booking("b1")
        flaky_store.delete(mirror_path("b1", "cust-1"))
        flaky_store.failing_prefixes.add("users/cust-1/bookings")

        assert flaky_core.sync.sync_status("b1", "cust-1", "assigned") is False

    def test_update_failure_returns_false(self, flaky_core, flaky_store, flaky_seed):
        _, _, make_booking = flaky_seed
        make_booking("b1")
        flaky_store.failing_prefixes.add("users/cust-1/bookings")
        assert flaky_core.sync.sync_status("b1", "cust-1", "assigned") is False

    def test_sync_booking_update_keeps_status(self, core, make_booking):
        make_booking("b1")
        ok = core.sync.sync_booking_update("b1", "cust-1", {"date": "2025-02-01"})
        mirror = core.mirrors.get_mirror("b1", "cust-1")
        assert ok is True
        assert mirror["date"] == "2025-02-01"
        assert mirror["assignedStatus"] == "unassigned"

    def test_resync_customer(self, core, make_booking):
        make_booking("b1")
        make_booking("b2")
        make_booking("b3", customer_id="other")
        core.store.update(booking_path("b1"), {"assignedStatus": "drop"})
        core.store.delete(mirror_path("b2", "cust-1"))

        result = core.sync.resync_customer("cust-1")

        assert result == {"total": 2, "synced": 2, "errors": []}
        assert core.mirrors.get_mirror("b1", "cust-1")["assignedStatus"] == "drop"
        assert core.mirrors.get_mirror("b2", "cust-1") is not None
