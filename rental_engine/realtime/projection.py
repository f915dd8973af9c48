import threading
from typing import Any, Callable, Dict, Iterable, List, Optional

from rental_engine.realtime.feed import ChangeEvent, ChangeType, RowFilter, compile_filter
from rental_engine.realtime.router import ChangeRouter, Observer


class LocalProjection:
    """In-memory copy of a table slice kept current by applying deltas.

    Inserts append, updates replace and deletes remove by identity. After a
    feed gap the projection reloads itself through ``fetch`` since missed
    events are never replayed.
    """

    def __init__(
        self,
        fetch: Optional[Callable[[], Iterable[Dict[str, Any]]]] = None,
        key: str = "id",
    ):
        self._fetch = fetch
        self._key = key
        self._predicate = compile_filter(None)
        self._lock = threading.Lock()
        self._rows: Dict[Any, Dict[str, Any]] = {}
        self.resync_count = 0

    def load(self, rows: Iterable[Dict[str, Any]]) -> None:
        fresh = {row[self._key]: dict(row) for row in rows}
        with self._lock:
            self._rows = fresh

    def apply(self, change: ChangeEvent) -> None:
        with self._lock:
            if change.event_type is ChangeType.DELETE or not self._predicate(change.row_after):
                self._rows.pop(change.row[self._key], None)
            else:
                self._rows[change.row_after[self._key]] = dict(change.row_after)

    def resync(self) -> None:
        if self._fetch is not None:
            self.load(self._fetch())
        self.resync_count += 1

    def attach(
        self, router: ChangeRouter, table: str, row_filter: RowFilter = None
    ) -> Observer:
        self._predicate = compile_filter(row_filter)
        return router.register(table, self.apply, row_filter, on_resync=self.resync)

    def get(self, key) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._rows.get(key)
            return dict(row) if row is not None else None

    def rows(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(row) for row in self._rows.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)
