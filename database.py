import logging
import threading
from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from typing import Callable, Iterator, Optional, TypeVar

from sqlalchemy import event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings
from errors import StoreReopenError, StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _create_engine(database_url: str) -> Engine:
    connect_args: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    from sqlalchemy import create_engine

    eng = create_engine(database_url, connect_args=connect_args)
    if database_url.startswith("sqlite"):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


class Base(DeclarativeBase):
    pass


class RecordStore:
    """Process-wide handle on the expenses database.

    The store is either open (sessions can be created) or closed (every
    session request fails with StoreUnavailableError). Sync closes it while
    the database file is handed to the backup provider.
    """

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url
        self._engine: Optional[Engine] = None
        self._sessionmaker: Optional[sessionmaker] = None
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        database = make_url(self.database_url).database
        if not database or database == ":memory:":
            raise ValueError("Record store is not backed by a file")
        return Path(database).resolve()

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def open(self) -> None:
        with self._lock:
            if self._engine is not None:
                return
            from seed import seed_defaults

            engine = _create_engine(self.database_url)
            Base.metadata.create_all(engine)
            factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
            with factory() as session:
                seed_defaults(session)
            self._engine = engine
            self._sessionmaker = factory
            logger.info(f"store_open: url={self.database_url}")

    def close(self) -> None:
        with self._lock:
            if self._engine is None:
                return
            self._engine.dispose()
            self._engine = None
            self._sessionmaker = None
            logger.info("store_closed")

    def session(self) -> Session:
        with self._lock:
            if self._sessionmaker is None:
                raise StoreUnavailableError("Record store is closed")
            return self._sessionmaker()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        session = self.session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def run_transaction(self, unit_of_work: Callable[[Session], T]) -> T:
        with self.session_scope() as session:
            return unit_of_work(session)

    @contextmanager
    def quiesced(self) -> Iterator[None]:
        """Close the store for the duration of the block, then reopen it.

        The reopen runs on every exit path, including exceptions raised
        inside the block.
        """
        self.close()
        try:
            yield
        finally:
            try:
                self.open()
            except Exception as exc:
                logger.critical(f"store_reopen_failed: url={self.database_url}")
                raise StoreReopenError("Record store could not be reopened") from exc


@lru_cache(maxsize=1)
def get_store() -> RecordStore:
    return RecordStore(get_settings().database_url)
