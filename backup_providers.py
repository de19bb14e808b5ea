from __future__ import annotations

import logging
import os
import re
import shutil
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from itsdangerous import BadSignature, URLSafeSerializer

from errors import TransferError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncResult:
    success: bool
    timestamp: Optional[int]  # epoch milliseconds
    error: Optional[str] = None


def now_millis() -> int:
    return int(time.time() * 1000)


class BackupProvider(ABC):
    """Remote copy of the expenses database file.

    Transfers run while the local store is closed, so implementations may
    read and replace the database file freely. Failures are raised as
    TransferError or returned as an unsuccessful SyncResult.
    """

    @abstractmethod
    def is_authenticated(self) -> bool: ...

    @abstractmethod
    def authenticate(self) -> None: ...

    @abstractmethod
    def logout(self) -> None: ...

    @abstractmethod
    def push(self) -> SyncResult: ...

    @abstractmethod
    def pull(self) -> SyncResult: ...

    @abstractmethod
    def sync(self) -> SyncResult: ...


def _slug(value: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9._-]+", "-", value).strip("-.")
    return slug or "default"


class FolderBackupProvider(BackupProvider):
    """Mirrors the database into a directory, e.g. a mounted cloud drive.

    The session is a token signed with the client secret and stored next to
    the local database; changing either credential invalidates it.
    """

    def __init__(
        self, db_path: Path, remote_dir: Path, client_id: str, client_secret: str
    ) -> None:
        self.db_path = db_path
        self.client_id = client_id
        self.remote_path = remote_dir / _slug(client_id) / db_path.name
        self.token_path = db_path.with_name(db_path.name + ".sync-session")
        self._serializer = URLSafeSerializer(client_secret, salt="sync-session")

    def is_authenticated(self) -> bool:
        if not self.token_path.exists():
            return False
        try:
            data = self._serializer.loads(self.token_path.read_text().strip())
        except BadSignature:
            return False
        return data.get("c") == self.client_id

    def authenticate(self) -> None:
        try:
            self.remote_path.parent.mkdir(parents=True, exist_ok=True)
            token = self._serializer.dumps({"c": self.client_id, "ts": now_millis()})
            self.token_path.write_text(token)
        except OSError as exc:
            raise TransferError(f"Remote folder not reachable: {exc}") from exc
        logger.info(f"folder_provider_authenticated: remote={self.remote_path.parent}")

    def logout(self) -> None:
        self.token_path.unlink(missing_ok=True)

    def _require_session(self) -> None:
        if not self.is_authenticated():
            raise TransferError("Not authenticated with the backup provider")

    @staticmethod
    def _copy(src: Path, dst: Path) -> None:
        partial = dst.with_name(dst.name + ".partial")
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, partial)
            os.replace(partial, dst)
        except OSError as exc:
            partial.unlink(missing_ok=True)
            raise TransferError(f"Copy {src} -> {dst} failed: {exc}") from exc

    def push(self) -> SyncResult:
        self._require_session()
        if not self.db_path.exists():
            return SyncResult(False, None, "Local database file does not exist")
        self._copy(self.db_path, self.remote_path)
        logger.info(f"folder_provider_push: remote={self.remote_path}")
        return SyncResult(True, now_millis())

    def pull(self) -> SyncResult:
        self._require_session()
        if not self.remote_path.exists():
            return SyncResult(False, None, "No remote backup found")
        self._copy(self.remote_path, self.db_path)
        for suffix in ("-wal", "-shm"):
            self.db_path.with_name(self.db_path.name + suffix).unlink(missing_ok=True)
        logger.info(f"folder_provider_pull: remote={self.remote_path}")
        return SyncResult(True, now_millis())

    def sync(self) -> SyncResult:
        self._require_session()
        if not self.remote_path.exists():
            return self.push()
        if not self.db_path.exists():
            return self.pull()
        local_mtime = self.db_path.stat().st_mtime_ns
        remote_mtime = self.remote_path.stat().st_mtime_ns
        if local_mtime > remote_mtime:
            return self.push()
        if remote_mtime > local_mtime:
            return self.pull()
        return SyncResult(True, now_millis())


def build_provider(
    name: str, db_path: Path, remote_dir: Path, client_id: str, client_secret: str
) -> BackupProvider:
    provider = (name or "folder").lower()
    if provider == "folder":
        return FolderBackupProvider(db_path, remote_dir, client_id, client_secret)
    raise ValueError(f"Unsupported sync provider: {provider}")
