from backup_providers import SyncResult
from errors import NotConfiguredError, SyncInProgressError
from scheduler import SchedulerManager


class StubOrchestrator:
    def __init__(self, outcome) -> None:
        self.outcome = outcome
        self.calls = 0

    def sync_bidirectional(self) -> SyncResult:
        self.calls += 1
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def test_auto_sync_disabled_by_default() -> None:
    manager = SchedulerManager(StubOrchestrator(SyncResult(True, 1)), interval_minutes=0)
    manager.start()
    assert not manager.scheduler.running
    manager.stop()


def test_job_skips_when_not_configured_or_busy() -> None:
    for outcome in (NotConfiguredError("no creds"), SyncInProgressError("busy")):
        orchestrator = StubOrchestrator(outcome)
        SchedulerManager(orchestrator, interval_minutes=5)._run_job("test")
        assert orchestrator.calls == 1


def test_job_registered_when_enabled() -> None:
    orchestrator = StubOrchestrator(SyncResult(True, 1))
    manager = SchedulerManager(orchestrator, interval_minutes=15)
    manager.start()
    try:
        job = manager.scheduler.get_job("auto_sync")
        assert job is not None
        manager._run_job("test")
        assert orchestrator.calls == 1
    finally:
        manager.stop()
