"""Scheduler wiring tests for the reconciliation sweep."""
import pytest

from business.scheduler import Scheduler, schedule_reconciliation


class FakeWorker:
    def __init__(self, fail=False):
        self.runs = 0
        self.purges = 0
        self.fail = fail

    def run_once(self):
        self.runs += 1
        if self.fail:
            raise RuntimeError("store offline")
        return {"processed": 0}

    def purge_completed(self):
        self.purges += 1
        return 0


@pytest.fixture
def scheduler():
    sched = Scheduler()
    sched.start()
    try:
        yield sched
    finally:
        sched.stop()


class TestScheduleReconciliation:

    def test_jobs_registered(self, scheduler):
        schedule_reconciliation(scheduler, FakeWorker(), minutes=7)
        job = scheduler.get_job("reconcile_sync_intents")
        assert job is not None
        assert job.trigger.interval.total_seconds() == 7 * 60
        assert scheduler.get_job("purge_sync_intents") is not None

    def test_job_runs_worker(self, scheduler):
        worker = FakeWorker()
        schedule_reconciliation(scheduler, worker, minutes=5)
        scheduler.get_job("reconcile_sync_intents").func()
        scheduler.get_job("purge_sync_intents").func()
        assert worker.runs == 1
        assert worker.purges == 1

    def test_job_swallows_worker_errors(self, scheduler):
        worker = FakeWorker(fail=True)
        schedule_reconciliation(scheduler, worker, minutes=5)
        scheduler.get_job("reconcile_sync_intents").func()
        assert worker.runs == 1

    def test_remove_job(self, scheduler):
        schedule_reconciliation(scheduler, FakeWorker(), minutes=5)
        scheduler.remove_job("reconcile_sync_intents")
        assert scheduler.get_job("reconcile_sync_intents") is None
        # removing twice only logs
        scheduler.remove_job("reconcile_sync_intents")
