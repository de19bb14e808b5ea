from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from backup_providers import BackupProvider, SyncResult, build_provider
from config import get_settings
from database import RecordStore
from errors import NotConfiguredError, SyncInProgressError, TransferError
from models import CLIENT_ID_KEY, CLIENT_SECRET_KEY, CREDENTIAL_KEYS, LAST_SYNC_KEY
from services import SettingService

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[str, str], BackupProvider]


class SyncPhase(str, Enum):
    idle = "idle"
    quiescing = "quiescing"
    transferring = "transferring"
    reopening = "reopening"


@dataclass(frozen=True)
class SyncStatus:
    connected: bool
    last_sync: Optional[int]


class SyncContext:
    """Holds the backup provider built from the stored credentials.

    The provider is built on first use and dropped whenever a credential
    setting changes, so the next call rebuilds it from the new values.
    """

    def __init__(
        self, store: RecordStore, provider_factory: Optional[ProviderFactory] = None
    ) -> None:
        self.store = store
        self.provider_factory = provider_factory or self._default_factory
        self._provider: Optional[BackupProvider] = None
        self._lock = threading.Lock()

    def _default_factory(self, client_id: str, client_secret: str) -> BackupProvider:
        settings = get_settings()
        return build_provider(
            settings.sync_provider,
            self.store.path,
            settings.sync_remote_dir,
            client_id,
            client_secret,
        )

    def _read_credentials(self) -> tuple[Optional[str], Optional[str]]:
        with self.store.session() as session:
            settings = SettingService(session)
            return settings.get(CLIENT_ID_KEY), settings.get(CLIENT_SECRET_KEY)

    def get_instance(self) -> Optional[BackupProvider]:
        with self._lock:
            if self._provider is not None:
                return self._provider
            client_id, client_secret = self._read_credentials()
            if not client_id or not client_secret:
                return None
            self._provider = self.provider_factory(client_id, client_secret)
            logger.info(f"sync_provider_built: type={type(self._provider).__name__}")
            return self._provider

    def invalidate(self) -> None:
        with self._lock:
            if self._provider is not None:
                logger.info("sync_provider_invalidated")
            self._provider = None

    def setting_changed(self, key: str) -> None:
        if key in CREDENTIAL_KEYS:
            self.invalidate()


class SyncOrchestrator:
    def __init__(
        self,
        store: RecordStore,
        context: SyncContext,
        timeout_secs: Optional[float] = None,
    ) -> None:
        self.store = store
        self.context = context
        if timeout_secs is None:
            timeout_secs = get_settings().sync_timeout_secs
        self.timeout_secs = timeout_secs
        self.phase = SyncPhase.idle
        self._running = threading.Lock()
        self._abandoned: Optional[Future] = None

    def _require_provider(self) -> BackupProvider:
        provider = self.context.get_instance()
        if provider is None:
            raise NotConfiguredError(
                "Sync not configured. Please set the OAuth client credentials in settings."
            )
        return provider

    def _last_sync(self) -> Optional[int]:
        with self.store.session() as session:
            raw = SettingService(session).get(LAST_SYNC_KEY)
        if not raw:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"sync_status: unparseable last_sync={raw!r}")
            return None

    def status(self) -> SyncStatus:
        try:
            provider = self.context.get_instance()
            if provider is None:
                return SyncStatus(connected=False, last_sync=None)
            connected = provider.is_authenticated()
            last_sync = self._last_sync()
        except Exception:
            logger.warning("sync_status: provider query failed", exc_info=True)
            return SyncStatus(connected=False, last_sync=None)
        return SyncStatus(connected=connected, last_sync=last_sync)

    def authenticate(self) -> bool:
        provider = self._require_provider()
        try:
            provider.authenticate()
        except TransferError as exc:
            logger.error(f"sync_authenticate: failed error={exc}")
            return False
        logger.info("sync_authenticate: success=True")
        return True

    def logout(self) -> bool:
        provider = self.context.get_instance()
        if provider is not None:
            try:
                provider.logout()
            finally:
                self.context.invalidate()
        logger.info("sync_logout")
        return True

    def push_to_cloud(self) -> SyncResult:
        return self._transfer("push", lambda provider: provider.push())

    def pull_from_cloud(self) -> SyncResult:
        return self._transfer("pull", lambda provider: provider.pull())

    def sync_bidirectional(self) -> SyncResult:
        return self._transfer("sync", lambda provider: provider.sync())

    def _transfer(
        self, name: str, operation: Callable[[BackupProvider], SyncResult]
    ) -> SyncResult:
        if not self._running.acquire(blocking=False):
            raise SyncInProgressError("A sync operation is already running")
        self._abandoned = None
        try:
            provider = self._require_provider()
            self.phase = SyncPhase.quiescing
            with self.store.quiesced():
                self.phase = SyncPhase.transferring
                result = self._call_with_timeout(name, provider, operation)
                self.phase = SyncPhase.reopening

            if result.success and result.timestamp is not None:
                with self.store.session() as session:
                    SettingService(session).set(LAST_SYNC_KEY, str(result.timestamp))
            logger.info(
                f"sync_{name}: success={result.success} "
                f"timestamp={result.timestamp} error={result.error}"
            )
            return result
        finally:
            abandoned = self._abandoned
            if abandoned is None:
                self._release()
            else:
                # The timed-out call still owns the provider until it returns.
                self.phase = SyncPhase.transferring
                abandoned.add_done_callback(self._release_after_abandoned)

    def _release(self) -> None:
        self._abandoned = None
        self.phase = SyncPhase.idle
        self._running.release()

    def _release_after_abandoned(self, future: Future) -> None:
        logger.warning(f"sync_abandoned_transfer_finished: cancelled={future.cancelled()}")
        self._release()

    def _call_with_timeout(
        self,
        name: str,
        provider: BackupProvider,
        operation: Callable[[BackupProvider], SyncResult],
    ) -> SyncResult:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"sync-{name}")
        future = executor.submit(operation, provider)
        try:
            return future.result(timeout=self.timeout_secs)
        except FuturesTimeoutError:
            if not future.cancel():
                self._abandoned = future
            logger.error(f"sync_{name}: timed out after {self.timeout_secs:g}s")
            return SyncResult(
                False, None, f"Transfer timed out after {self.timeout_secs:g}s"
            )
        except TransferError as exc:
            return SyncResult(False, None, str(exc))
        except Exception as exc:
            logger.exception(f"sync_{name}: provider raised")
            return SyncResult(False, None, str(exc) or type(exc).__name__)
        finally:
            executor.shutdown(wait=False)
