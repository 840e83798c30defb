from dataclasses import dataclass, field
from typing import Generic, Optional, Tuple, TypeVar
import threading

from crib_hunter.models.results import SearchState


T = TypeVar("T")


class SingleSlotQueue(Generic[T]):
    """Thread-safe, size=1, latest-wins queue. Consumers read the latest item."""

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._has_value = False
        self._value: Optional[T] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._condition:
            return self._closed

    def publish(self, item: T) -> None:
        """Replace whatever is waiting. Publishing after close is a no-op."""
        with self._condition:
            if self._closed:
                return
            self._value = item
            self._has_value = True
            self._condition.notify()

    def close(self) -> None:
        with self._condition:
            self._closed = True
            self._condition.notify_all()

    def get(self, timeout: Optional[float] = None) -> Optional[T]:
        """Block until a value is available or the queue is closed. Returns None once closed and drained."""
        with self._condition:
            ok = self._condition.wait_for(lambda: self._has_value or self._closed, timeout)
            if not ok:
                raise TimeoutError("queue get() timed out")
            if not self._has_value:
                return None
            v = self._value
            self._value = None
            self._has_value = False
            return v


@dataclass(frozen=True, slots=True)
class SearchSnapshot:
    """Immutable view of a search run for the progress display."""

    state_version: int
    state: SearchState
    samples: int
    work_items_total: int = 0
    work_items_done: int = 0
    combinations_tried: int = 0
    max_combinations: int = 0
    current_item: str = ""
    matches: Tuple[str, ...] = field(default_factory=tuple)
    result: str = ""

    @property
    def complete(self) -> bool:
        return self.state in (
            SearchState.CONFIRMED,
            SearchState.LOW_CONFIDENCE,
            SearchState.PARTIAL_KEYSTREAM,
            SearchState.UNRESOLVED,
        )

    @property
    def completion_percent(self) -> float:
        if not self.work_items_total:
            return 100.0 if self.complete else 0.0
        return self.work_items_done / self.work_items_total * 100


class ProgressPublisher:
    """Numbers snapshots and forwards them to an optional queue."""

    def __init__(self, state_queue: Optional[SingleSlotQueue[SearchSnapshot]] = None, samples: int = 0):
        self.state_queue = state_queue
        self.samples = samples
        self._lock = threading.Lock()
        self._version = 0
        self.last: Optional[SearchSnapshot] = None

    def publish(self, state: SearchState, **fields) -> SearchSnapshot:
        with self._lock:
            self._version += 1
            snapshot = SearchSnapshot(state_version=self._version, state=state, samples=self.samples, **fields)
            self.last = snapshot
        if self.state_queue is not None:
            self.state_queue.publish(snapshot)
        return snapshot
