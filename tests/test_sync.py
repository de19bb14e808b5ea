import threading
import time
from datetime import date

import pytest

from backup_providers import BackupProvider, FolderBackupProvider, SyncResult
from database import RecordStore
from errors import (
    NotConfiguredError,
    StoreReopenError,
    StoreUnavailableError,
    SyncInProgressError,
    TransferError,
)
from models import CLIENT_ID_KEY, CLIENT_SECRET_KEY, LAST_SYNC_KEY
from schemas import ExpenseIn
from services import CategoryService, ExpenseService, SettingService
from sync import SyncContext, SyncOrchestrator, SyncPhase, SyncStatus


class FakeProvider(BackupProvider):
    def __init__(self, store: RecordStore, result: SyncResult = None) -> None:
        self.store = store
        self.result = result or SyncResult(True, 1_700_000_000_000)
        self.raises = None
        self.authenticated = True
        self.auth_error = None
        self.logged_out = False
        self.calls: list[str] = []
        self.store_open_during_transfer: list[bool] = []
        self.entered = threading.Event()
        self.release = None

    def is_authenticated(self) -> bool:
        if self.auth_error:
            raise self.auth_error
        return self.authenticated

    def authenticate(self) -> None:
        self.authenticated = True

    def logout(self) -> None:
        self.logged_out = True
        self.authenticated = False

    def _run(self, name: str) -> SyncResult:
        self.calls.append(name)
        self.store_open_during_transfer.append(self.store.is_open)
        self.entered.set()
        if self.release is not None:
            self.release.wait(5)
        if self.raises:
            raise self.raises
        return self.result

    def push(self) -> SyncResult:
        return self._run("push")

    def pull(self) -> SyncResult:
        return self._run("pull")

    def sync(self) -> SyncResult:
        return self._run("sync")


def make_store(tmp_path) -> RecordStore:
    tmp_path.mkdir(parents=True, exist_ok=True)
    store = RecordStore(f"sqlite:///{tmp_path / 'expenses.db'}")
    store.open()
    return store


def set_credentials(store: RecordStore, client_id="client", secret="secret") -> None:
    with store.session() as session:
        settings = SettingService(session)
        if client_id is not None:
            settings.set(CLIENT_ID_KEY, client_id)
        if secret is not None:
            settings.set(CLIENT_SECRET_KEY, secret)


def read_setting(store: RecordStore, key: str):
    with store.session() as session:
        return SettingService(session).get(key)


def make_orchestrator(tmp_path, provider_cls=FakeProvider, timeout_secs=5.0):
    store = make_store(tmp_path)
    built: list[BackupProvider] = []

    def factory(client_id: str, client_secret: str) -> BackupProvider:
        provider = provider_cls(store)
        built.append(provider)
        return provider

    context = SyncContext(store, factory)
    return store, context, SyncOrchestrator(store, context, timeout_secs), built


def test_status_without_credentials(tmp_path) -> None:
    store, context, orchestrator, built = make_orchestrator(tmp_path)

    assert orchestrator.status() == SyncStatus(connected=False, last_sync=None)
    assert context.get_instance() is None
    assert built == []


def test_status_with_only_client_id(tmp_path) -> None:
    store, context, orchestrator, built = make_orchestrator(tmp_path)
    set_credentials(store, secret=None)
    context.setting_changed(CLIENT_ID_KEY)

    assert orchestrator.status() == SyncStatus(connected=False, last_sync=None)
    assert built == []


@pytest.mark.parametrize("operation", ["push_to_cloud", "pull_from_cloud", "sync_bidirectional"])
def test_transfer_success_quiesces_and_records_timestamp(tmp_path, operation) -> None:
    store, context, orchestrator, built = make_orchestrator(tmp_path)
    set_credentials(store)

    result = getattr(orchestrator, operation)()

    assert result == SyncResult(True, 1_700_000_000_000)
    provider = built[0]
    assert provider.store_open_during_transfer == [False]
    assert store.is_open
    assert orchestrator.phase == SyncPhase.idle
    assert read_setting(store, LAST_SYNC_KEY) == "1700000000000"
    assert orchestrator.status() == SyncStatus(connected=True, last_sync=1_700_000_000_000)


def test_failed_result_reopens_store_without_timestamp(tmp_path) -> None:
    store, context, orchestrator, built = make_orchestrator(tmp_path)
    set_credentials(store)
    provider = context.get_instance()
    provider.result = SyncResult(False, None, "remote conflict")

    result = orchestrator.push_to_cloud()

    assert not result.success
    assert result.error == "remote conflict"
    assert store.is_open
    assert read_setting(store, LAST_SYNC_KEY) is None


@pytest.mark.parametrize(
    "error, message",
    [
        (TransferError("quota exceeded"), "quota exceeded"),
        (ConnectionError("network down"), "network down"),
    ],
)
def test_raising_provider_reopens_store(tmp_path, error, message) -> None:
    store, context, orchestrator, built = make_orchestrator(tmp_path)
    set_credentials(store)
    context.get_instance().raises = error

    result = orchestrator.sync_bidirectional()

    assert result == SyncResult(False, None, message)
    assert store.is_open
    with store.session() as session:
        assert CategoryService(session).list_all()
    assert read_setting(store, LAST_SYNC_KEY) is None


def test_not_configured_fails_before_closing_store(tmp_path) -> None:
    store, context, orchestrator, built = make_orchestrator(tmp_path)

    with pytest.raises(NotConfiguredError):
        orchestrator.push_to_cloud()
    with pytest.raises(NotConfiguredError):
        orchestrator.authenticate()

    assert store.is_open
    assert orchestrator.phase == SyncPhase.idle


def test_store_unavailable_during_transfer(tmp_path) -> None:
    store, context, orchestrator, built = make_orchestrator(tmp_path)
    set_credentials(store)
    seen: list[type] = []

    class SessionCheckingProvider(FakeProvider):
        def push(self) -> SyncResult:
            try:
                self.store.session()
            except StoreUnavailableError as exc:
                seen.append(type(exc))
            return super().push()

    context.provider_factory = lambda client_id, secret: SessionCheckingProvider(store)
    context.invalidate()

    assert orchestrator.push_to_cloud().success
    assert seen == [StoreUnavailableError]


def test_concurrent_sync_is_rejected(tmp_path) -> None:
    store, context, orchestrator, built = make_orchestrator(tmp_path)
    set_credentials(store)
    provider = context.get_instance()
    provider.release = threading.Event()
    results: list[SyncResult] = []

    worker = threading.Thread(target=lambda: results.append(orchestrator.push_to_cloud()))
    worker.start()
    assert provider.entered.wait(5)
    assert orchestrator.phase == SyncPhase.transferring

    with pytest.raises(SyncInProgressError):
        orchestrator.pull_from_cloud()

    provider.release.set()
    worker.join(5)
    assert results and results[0].success
    assert provider.calls == ["push"]
    assert store.is_open


def test_transfer_timeout_reopens_store(tmp_path) -> None:
    store, context, orchestrator, built = make_orchestrator(tmp_path, timeout_secs=0.05)
    set_credentials(store)
    provider = context.get_instance()
    provider.release = threading.Event()

    result = orchestrator.push_to_cloud()
    provider.release.set()

    assert not result.success
    assert "timed out" in result.error
    assert store.is_open
    assert read_setting(store, LAST_SYNC_KEY) is None


def wait_for_idle(orchestrator: SyncOrchestrator, seconds: float = 5.0) -> None:
    deadline = time.monotonic() + seconds
    while orchestrator.phase != SyncPhase.idle and time.monotonic() < deadline:
        time.sleep(0.01)
    assert orchestrator.phase == SyncPhase.idle


def test_timed_out_transfer_blocks_next_sync_until_it_finishes(tmp_path) -> None:
    store, context, orchestrator, built = make_orchestrator(tmp_path, timeout_secs=0.05)
    set_credentials(store)
    provider = context.get_instance()
    provider.release = threading.Event()

    assert not orchestrator.pull_from_cloud().success
    assert store.is_open
    assert orchestrator.phase == SyncPhase.transferring

    with pytest.raises(SyncInProgressError):
        orchestrator.push_to_cloud()
    assert provider.calls == ["pull"]

    provider.release.set()
    wait_for_idle(orchestrator)

    provider.release = None
    assert orchestrator.push_to_cloud().success
    assert provider.calls == ["pull", "push"]


def test_reopen_failure_is_fatal(tmp_path, monkeypatch) -> None:
    store, context, orchestrator, built = make_orchestrator(tmp_path)
    set_credentials(store)
    context.get_instance()

    def broken_open() -> None:
        raise OSError("disk gone")

    monkeypatch.setattr(store, "open", broken_open)

    with pytest.raises(StoreReopenError):
        orchestrator.push_to_cloud()
    assert orchestrator.phase == SyncPhase.idle


def test_credential_change_invalidates_provider(tmp_path) -> None:
    store, context, orchestrator, built = make_orchestrator(tmp_path)
    set_credentials(store)

    first = context.get_instance()
    assert context.get_instance() is first

    context.setting_changed("currency_symbol")
    assert context.get_instance() is first

    set_credentials(store, secret="rotated")
    context.setting_changed(CLIENT_SECRET_KEY)
    second = context.get_instance()
    assert second is not first
    assert len(built) == 2

    context.invalidate()
    context.invalidate()
    assert len(built) == 2


def test_status_degrades_when_provider_query_fails(tmp_path) -> None:
    store, context, orchestrator, built = make_orchestrator(tmp_path)
    set_credentials(store)
    context.get_instance().auth_error = TransferError("token endpoint unreachable")

    assert orchestrator.status() == SyncStatus(connected=False, last_sync=None)


def test_logout_discards_provider(tmp_path) -> None:
    store, context, orchestrator, built = make_orchestrator(tmp_path)
    assert orchestrator.logout() is True

    set_credentials(store)
    provider = context.get_instance()
    assert orchestrator.authenticate() is True

    assert orchestrator.logout() is True
    assert provider.logged_out
    assert context.get_instance() is not provider


def test_folder_round_trip_restores_data(tmp_path) -> None:
    store = make_store(tmp_path / "local")
    remote = tmp_path / "remote"
    set_credentials(store)
    context = SyncContext(
        store,
        lambda client_id, secret: FolderBackupProvider(
            store.path, remote, client_id, secret
        ),
    )
    orchestrator = SyncOrchestrator(store, context, timeout_secs=10)

    assert orchestrator.status().connected is False
    assert orchestrator.authenticate() is True

    with store.session() as session:
        category = CategoryService(session).list_all()[0]
        expense = ExpenseService(session).create(
            ExpenseIn(amount_cents=4_200, date=date(2026, 2, 1), category_id=category.id)
        )
        expense_id = expense.id

    pushed = orchestrator.push_to_cloud()
    assert pushed.success
    assert (remote / "client" / "expenses.db").exists()

    with store.session() as session:
        ExpenseService(session).delete(expense_id)

    pulled = orchestrator.pull_from_cloud()
    assert pulled.success
    with store.session() as session:
        assert ExpenseService(session).get(expense_id).amount_cents == 4_200

    status = orchestrator.status()
    assert status.connected is True
    assert status.last_sync == pulled.timestamp
