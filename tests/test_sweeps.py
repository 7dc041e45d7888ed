import os

import pytest
from sqlalchemy.exc import OperationalError

import main
from app.services.scheduler import Scheduler
from app.workers import sweeps


@pytest.fixture
def no_dispose(monkeypatch):
    async def dispose():
        return None

    monkeypatch.setattr(sweeps.db, "dispose_engine", dispose)


def test_task_runs_sweep_on_a_fresh_scheduler(monkeypatch, no_dispose):
    seen = []

    async def fake_cleanup(self, now=None):
        seen.append(self.run_sweeps)
        return 2, 1

    monkeypatch.setattr(Scheduler, "cleanup_sweep", fake_cleanup)
    assert sweeps.cleanup_sweep() == (2, 1)
    assert seen == [False]


def test_database_errors_are_retried(monkeypatch, no_dispose):
    async def broken(self, now=None):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr(Scheduler, "reminder_sweep", broken)
    # called directly (outside a worker) celery re-raises the database error
    with pytest.raises(OperationalError):
        sweeps.reminder_sweep()


def test_beat_schedule_covers_every_sweep():
    tasks = {entry["task"] for entry in sweeps.celery_app.conf.beat_schedule.values()}
    assert tasks == {
        "app.workers.sweeps.reminder_sweep",
        "app.workers.sweeps.followup_sweep",
        "app.workers.sweeps.cleanup_sweep",
    }


@pytest.mark.skipif("SCHEDULER_RUN_SWEEPS" in os.environ, reason="deployment overrides the default")
def test_api_process_leaves_sweeps_to_beat():
    assert main.settings.SCHEDULER_RUN_SWEEPS is False
    assert main.scheduler.run_sweeps is False
    assert Scheduler().run_sweeps is False
