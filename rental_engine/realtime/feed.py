"""Commit-ordered change feed built on SQLAlchemy session events.

Changes are buffered per session in ``after_flush`` and published only from
``after_commit``, so observers never see rows of a rolled-back transaction.
Writers commit under ``ChangeFeed.commit_lock``, which keeps the publish order
equal to the commit order across threads.
Delivery is at-most-once: a subscriber whose buffer is full loses the event and
is flagged with a gap, and a dropped subscription is not replayed.
"""
import queue
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from loguru import logger
from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from rental_engine.monitoring.metrics import MetricsCollector

_PENDING_KEY = "rental_engine.pending_changes"


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: ChangeType
    row_before: Optional[Dict[str, Any]] = None
    row_after: Optional[Dict[str, Any]] = None
    sequence: int = 0

    @property
    def row(self) -> Dict[str, Any]:
        return self.row_after if self.row_after is not None else (self.row_before or {})

    @property
    def row_id(self):
        return self.row.get("id")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "event_type": self.event_type.value,
            "row_before": self.row_before,
            "row_after": self.row_after,
            "sequence": self.sequence,
        }


RowFilter = Union[Callable[[Dict[str, Any]], bool], Mapping[str, Any], None]


def compile_filter(row_filter: RowFilter) -> Callable[[Dict[str, Any]], bool]:
    if row_filter is None:
        return lambda row: True
    if callable(row_filter):
        return row_filter
    expected = dict(row_filter)
    return lambda row: all(row.get(k) == v for k, v in expected.items())


class FeedDisconnected(Exception):
    pass


_CLOSED = object()


@dataclass(eq=False)
class FeedSubscription:
    table: Optional[str]
    predicate: Callable[[Dict[str, Any]], bool]
    buffer: int
    _queue: "queue.Queue" = field(init=False, repr=False)
    _gap: threading.Event = field(init=False, repr=False, default_factory=threading.Event)
    closed: bool = field(init=False, default=False)

    def __post_init__(self):
        self._queue = queue.Queue(maxsize=self.buffer)

    def matches(self, change: ChangeEvent) -> bool:
        if self.table is not None and change.table != self.table:
            return False
        return self.predicate(change.row)

    def offer(self, change: ChangeEvent) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(change)
            return True
        except queue.Full:
            self._gap.set()
            MetricsCollector.record_change_dropped()
            return False

    def get(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            raise FeedDisconnected()
        return item

    def take_gap(self) -> bool:
        had_gap = self._gap.is_set()
        self._gap.clear()
        return had_gap

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # anything still queued is lost with the connection
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
        self._queue.put_nowait(_CLOSED)


def _column_keys(state) -> List[str]:
    return [attr.key for attr in state.mapper.column_attrs]


def _row_after(obj) -> Dict[str, Any]:
    state = inspect(obj)
    return {key: state.dict.get(key) for key in _column_keys(state)}


def _row_before(obj) -> Dict[str, Any]:
    state = inspect(obj)
    row = {}
    for key in _column_keys(state):
        history = state.attrs[key].history
        if history.deleted:
            row[key] = history.deleted[0]
        elif history.unchanged:
            row[key] = history.unchanged[0]
        else:
            row[key] = state.dict.get(key)
    return row


class ChangeFeed:
    def __init__(self, buffer: int = 1000):
        self._buffer = buffer
        self._lock = threading.Lock()
        # held by the gateway across commit so publish order is commit order
        self.commit_lock = threading.Lock()
        self._sequence = 0
        self._subscriptions: List[FeedSubscription] = []

    def attach(self, session_factory) -> None:
        """Hook the feed into every session produced by ``session_factory``."""
        event.listen(session_factory, "after_flush", self._after_flush)
        event.listen(session_factory, "after_commit", self._after_commit)
        event.listen(session_factory, "after_rollback", self._after_rollback)

    def subscribe(
        self, table: Optional[str] = None, row_filter: RowFilter = None
    ) -> FeedSubscription:
        subscription = FeedSubscription(table, compile_filter(row_filter), self._buffer)
        with self._lock:
            self._subscriptions.append(subscription)
        logger.debug(f"Change feed subscription opened for table={table or '*'}")
        return subscription

    def unsubscribe(self, subscription: FeedSubscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
        subscription.close()

    def publish(self, changes: List[ChangeEvent]) -> List[ChangeEvent]:
        published = []
        with self._lock:
            for change in changes:
                self._sequence += 1
                change = ChangeEvent(
                    change.table,
                    change.event_type,
                    change.row_before,
                    change.row_after,
                    self._sequence,
                )
                for subscription in self._subscriptions:
                    if subscription.matches(change):
                        subscription.offer(change)
                published.append(change)
        return published

    def drop_subscriptions(self) -> None:
        with self._lock:
            subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.close()
        logger.warning(f"Change feed dropped {len(subscriptions)} subscription(s)")

    def _after_flush(self, session: Session, flush_context) -> None:  # noqa: ARG002
        pending = session.info.setdefault(_PENDING_KEY, [])
        for obj in session.new:
            pending.append(
                ChangeEvent(obj.__tablename__, ChangeType.INSERT, None, _row_after(obj))
            )
        for obj in session.dirty:
            if not session.is_modified(obj, include_collections=False):
                continue
            pending.append(
                ChangeEvent(
                    obj.__tablename__, ChangeType.UPDATE, _row_before(obj), _row_after(obj)
                )
            )
        for obj in session.deleted:
            pending.append(
                ChangeEvent(obj.__tablename__, ChangeType.DELETE, _row_before(obj), None)
            )

    def _after_commit(self, session: Session) -> None:
        pending = session.info.pop(_PENDING_KEY, None)
        if pending:
            self.publish(pending)

    def _after_rollback(self, session: Session) -> None:
        session.info.pop(_PENDING_KEY, None)
