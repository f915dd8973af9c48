from contextlib import contextmanager
from typing import Iterator, Optional

import pybreaker
from loguru import logger
from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from rental_engine.config.settings import Settings
from rental_engine.core.exceptions import ConflictError, PersistenceError
from rental_engine.realtime.feed import ChangeFeed, FeedSubscription, RowFilter

# PostgreSQL serialization_failure / deadlock_detected
_CONFLICT_SQLSTATES = {"40001", "40P01"}

SNAPSHOT_ISOLATION = "REPEATABLE READ"


def get_engine(database_url: str, isolation_level: Optional[str] = None):
    kwargs = {"pool_pre_ping": True, "future": True}
    if isolation_level:
        kwargs["isolation_level"] = isolation_level
    if database_url.startswith("sqlite"):
        # writers queue on the database lock instead of failing immediately
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 15}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, otherwise each checkout sees an empty database
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def get_sessionmaker(database_url: str, isolation_level: Optional[str] = None) -> sessionmaker:
    engine = get_engine(database_url, isolation_level)
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def snapshot_options(dialect_name: str) -> dict:
    """Execution options that pin a read session to one snapshot.

    SQLite already reads a single snapshot per transaction. PostgreSQL at its
    default READ COMMITTED takes a fresh one per statement.
    """
    if dialect_name == "postgresql":
        return {"isolation_level": SNAPSHOT_ISOLATION}
    return {}


def is_write_conflict(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) in _CONFLICT_SQLSTATES:
        return True
    return "database is locked" in str(orig or exc).lower()


class PersistenceGateway:
    """Transactional access to the store plus its change feed.

    ``transaction()`` commits on a clean exit and rolls back on any exception.
    Store failures are translated into the engine's error taxonomy: lost write
    races become ``ConflictError`` (safe to retry the whole transaction),
    everything else operational becomes ``PersistenceError``.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        feed: Optional[ChangeFeed] = None,
        breaker: Optional[pybreaker.CircuitBreaker] = None,
    ):
        self._session_factory = session_factory
        self.feed = feed or ChangeFeed()
        self.feed.attach(session_factory)
        self._breaker = breaker

    @classmethod
    def from_settings(
        cls, settings: Settings, breaker: Optional[pybreaker.CircuitBreaker] = None
    ) -> "PersistenceGateway":
        return cls(
            get_sessionmaker(settings.database_url, settings.isolation_level),
            ChangeFeed(buffer=settings.change_feed_buffer),
            breaker,
        )

    @property
    def engine(self):
        return self._session_factory.kw["bind"]

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        with self._guard():
            session = self._session_factory()
            try:
                yield session
                # commit and feed publish as one step, so publish order is commit order
                session.flush()
                with self.feed.commit_lock:
                    session.commit()
            except BaseException:
                session.rollback()
                raise
            finally:
                session.close()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Read-only unit of work; every query inside shares one snapshot."""
        with self._guard():
            session = self._session_factory()
            try:
                options = snapshot_options(self.engine.dialect.name)
                if options:
                    session.connection(execution_options=options)
                yield session
            finally:
                session.rollback()
                session.close()

    def subscribe(self, table: Optional[str] = None, row_filter: RowFilter = None) -> FeedSubscription:
        return self.feed.subscribe(table, row_filter)

    @contextmanager
    def _guard(self):
        try:
            if self._breaker is None:
                with self._translate_errors():
                    yield
            else:
                with self._breaker.calling(), self._translate_errors():
                    yield
        except pybreaker.CircuitBreakerError as e:
            logger.error(f"Store circuit breaker open: {e}")
            raise PersistenceError("Store unavailable (circuit open)") from e

    @contextmanager
    def _translate_errors(self):
        try:
            yield
        except StaleDataError as e:
            raise ConflictError(f"Concurrent update detected: {e}") from e
        except IntegrityError as e:
            raise ConflictError(f"Integrity conflict: {e.orig}") from e
        except OperationalError as e:
            if is_write_conflict(e):
                raise ConflictError(f"Write conflict: {e.orig}") from e
            logger.error(f"Store operation failed: {e}")
            raise PersistenceError(str(e.orig or e)) from e
        except DBAPIError as e:
            if is_write_conflict(e):
                raise ConflictError(f"Write conflict: {e.orig}") from e
            logger.error(f"Store operation failed: {e}")
            raise PersistenceError(str(e.orig or e)) from e
