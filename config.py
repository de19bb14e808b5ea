import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        data_dir: Path,
        database_url: str,
        timezone: str,
        sync_provider: str,
        sync_remote_dir: Path,
        sync_timeout_secs: float,
        auto_sync_minutes: int,
    ) -> None:
        self.data_dir = data_dir
        self.database_url = database_url
        self.timezone = timezone
        self.sync_provider = sync_provider
        self.sync_remote_dir = sync_remote_dir
        self.sync_timeout_secs = sync_timeout_secs
        self.auto_sync_minutes = auto_sync_minutes


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "expenses.db"
    database_url = os.getenv("EXPENSES_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("EXPENSES_TIMEZONE", "Europe/Berlin")
    sync_provider = os.getenv("EXPENSES_SYNC_PROVIDER", "folder")
    sync_remote_dir = Path(
        os.getenv("EXPENSES_SYNC_REMOTE_DIR", str(data_dir / "remote"))
    ).resolve()
    sync_timeout_secs = float(os.getenv("EXPENSES_SYNC_TIMEOUT_SECS", "120"))
    auto_sync_minutes = int(os.getenv("EXPENSES_AUTO_SYNC_MINUTES", "0"))
    return Settings(
        data_dir=data_dir,
        database_url=database_url,
        timezone=timezone,
        sync_provider=sync_provider,
        sync_remote_dir=sync_remote_dir,
        sync_timeout_secs=sync_timeout_secs,
        auto_sync_minutes=auto_sync_minutes,
    )
