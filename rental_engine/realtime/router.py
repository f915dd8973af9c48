import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from rental_engine.monitoring.metrics import MetricsCollector
from rental_engine.realtime.feed import (
    ChangeEvent,
    ChangeFeed,
    FeedDisconnected,
    FeedSubscription,
    RowFilter,
    compile_filter,
)


@dataclass(eq=False)
class Observer:
    table: str
    callback: Callable[[ChangeEvent], None]
    predicate: Callable[[Dict[str, Any]], bool]
    on_resync: Optional[Callable[[], None]] = None

    def matches(self, change: ChangeEvent) -> bool:
        # rows leaving the filter are delivered too, so projections can drop them
        if change.row_after is not None and self.predicate(change.row_after):
            return True
        return change.row_before is not None and self.predicate(change.row_before)


class ChangeRouter:
    """Fans committed change events out to per-table observers.

    One daemon thread drains a single feed subscription, so events reach
    observers in the feed's commit order. After a dropped subscription or a
    buffer overflow the router reconnects without replay and asks every
    observer that registered ``on_resync`` to rebuild its state.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        reconnect_delay_sec: float = 1.0,
        poll_interval_sec: float = 0.2,
    ):
        self._feed = feed
        self._reconnect_delay_sec = reconnect_delay_sec
        self._poll_interval_sec = poll_interval_sec
        self._lock = threading.RLock()
        self._observers: Dict[str, List[Observer]] = {}
        self._worker: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._subscription: Optional[FeedSubscription] = None
        self._connected = threading.Event()

    def register(
        self,
        table: str,
        callback: Callable[[ChangeEvent], None],
        row_filter: RowFilter = None,
        on_resync: Optional[Callable[[], None]] = None,
    ) -> Observer:
        observer = Observer(table, callback, compile_filter(row_filter), on_resync)
        with self._lock:
            self._observers.setdefault(table, []).append(observer)
            MetricsCollector.set_registered_observers(self._count())
        logger.debug(f"Observer registered on {table}")
        return observer

    def unregister(self, observer: Observer) -> None:
        with self._lock:
            observers = self._observers.get(observer.table, [])
            if observer in observers:
                observers.remove(observer)
            MetricsCollector.set_registered_observers(self._count())

    def observers_for(self, table: str) -> List[Observer]:
        with self._lock:
            return list(self._observers.get(table, []))

    def _count(self) -> int:
        return sum(len(observers) for observers in self._observers.values())

    def dispatch(self, change: ChangeEvent) -> int:
        delivered = 0
        for observer in self.observers_for(change.table):
            if not observer.matches(change):
                continue
            try:
                observer.callback(change)
                delivered += 1
            except Exception:
                MetricsCollector.record_observer_error(change.table)
                logger.exception(
                    f"Observer failed on {change.event_type.value} #{change.sequence} "
                    f"for {change.table}"
                )
        if delivered:
            MetricsCollector.record_change_dispatched(change.table)
        return delivered

    def resync_all(self) -> None:
        with self._lock:
            observers = [o for group in self._observers.values() for o in group]
        for observer in observers:
            if observer.on_resync is None:
                continue
            try:
                observer.on_resync()
            except Exception:
                MetricsCollector.record_observer_error(observer.table)
                logger.exception(f"Observer resync failed for {observer.table}")

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def wait_connected(self, timeout: Optional[float] = None) -> bool:
        return self._connected.wait(timeout)

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._worker = threading.Thread(
            target=self._run, name="change-router", daemon=True
        )
        self._worker.start()
        logger.info("Change router started")

    def stop(self, timeout: float = 2.0) -> None:
        self._stop_event.set()
        if self._worker:
            self._worker.join(timeout=timeout)
        self._worker = None
        logger.info("Change router stopped")

    def _connect(self) -> FeedSubscription:
        self._subscription = self._feed.subscribe()
        self._connected.set()
        return self._subscription

    def _run(self) -> None:
        subscription = self._connect()
        try:
            while not self._stop_event.is_set():
                try:
                    change = subscription.get(timeout=self._poll_interval_sec)
                except FeedDisconnected:
                    self._connected.clear()
                    logger.warning(
                        f"Change feed dropped, reconnecting in {self._reconnect_delay_sec}s "
                        "(missed events are not replayed)"
                    )
                    if self._stop_event.wait(self._reconnect_delay_sec):
                        break
                    subscription = self._connect()
                    self.resync_all()
                    continue

                if subscription.take_gap():
                    logger.warning("Change feed buffer overflowed; observers must resync")
                    self.resync_all()
                if change is not None:
                    self.dispatch(change)
        finally:
            self._connected.clear()
            self._feed.unsubscribe(subscription)
