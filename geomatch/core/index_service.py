"""
Index handle: owns the currently served reference index and its lifecycle.

Readers take one attribute read of the served state and search it without
locking. Writers (warmup, rebuild, swap, invalidate) serialize on a lock and
publish a new state with a single assignment.
"""

import threading
from dataclasses import asdict
from typing import List, NamedTuple, Optional, Sequence

from ..util.logging import logger
from ..vector.hnsw import HNSWIndex, HNSWParams
from ..vector.index import EmptyIndex, ExactIndex, IVectorIndex
from ..vector.snapshot import load_snapshot, save_snapshot
from ..vector.types import Match, ReferenceVector
from . import config
from .catalog import load_catalog
from .errors import GeoMatchError, IndexUnavailableError, SnapshotError


class ServedState(NamedTuple):
    index: IVectorIndex
    source: str  # snapshot | rebuilt | exact | empty | swapped
    degraded: bool = False
    degraded_reason: Optional[str] = None


class IndexHandle:
    """Passable handle to the served index. Create one per process and hand it to callers."""

    def __init__(self, index: Optional[IVectorIndex] = None, dimension: Optional[int] = None,
                 params: Optional[HNSWParams] = None):
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._params = params
        if index is None:
            self._state = ServedState(EmptyIndex(dimension), "empty")
        else:
            self._state = ServedState(index, "swapped")
            self._ready.set()

    @property
    def current(self) -> IVectorIndex:
        return self._state.index

    @property
    def source(self) -> str:
        return self._state.source

    @property
    def degraded(self) -> bool:
        return self._state.degraded

    @property
    def degraded_reason(self) -> Optional[str]:
        return self._state.degraded_reason

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    @property
    def params(self) -> HNSWParams:
        return self._params or config.get_hnsw_params()

    def _publish(self, state: ServedState) -> IVectorIndex:
        old = self._state.index
        self._state = state
        return old

    def swap(self, index: IVectorIndex, source: str = "swapped") -> IVectorIndex:
        """Atomically serve ``index``; returns the previously served one."""
        with self._lock:
            old = self._publish(ServedState(index, source))
        self._ready.set()
        logger.log_operation("index.swap", "success", {"source": source, "size": len(index)})
        return old

    def invalidate(self) -> IVectorIndex:
        """Replace the served index with an empty placeholder of the same dimension."""
        with self._lock:
            old = self._publish(ServedState(EmptyIndex(self._state.index.dimension), "empty"))
        logger.log_operation("index.invalidate", "success", {"previous_size": len(old)})
        return old

    def rebuild(self, references: Sequence[ReferenceVector], dimension: Optional[int] = None,
                snapshot_path=None) -> HNSWIndex:
        """Build a fresh graph over ``references`` and serve it.

        Build errors propagate; the previously served index stays in place.
        When ``snapshot_path`` is given the new graph is also persisted.
        """
        index = HNSWIndex.build(references, self.params, dimension)
        if snapshot_path is not None:
            save_snapshot(index, snapshot_path)
        with self._lock:
            self._publish(ServedState(index, "rebuilt"))
        self._ready.set()
        return index

    def warmup(self, catalog_path=None, snapshot_path=None, dimension: Optional[int] = None,
               rebuild_if_stale: Optional[bool] = None, persist: Optional[bool] = None) -> bool:
        """Load the catalog, restore or rebuild the graph, and serve it.

        I/O and integrity failures never escape: the handle falls back to an
        exact index over the loaded references, or to an empty placeholder, and
        reports ``degraded``.

        Returns:
            True when a graph index is served without degradation
        """
        catalog_path = catalog_path or config.get_catalog_path()
        snapshot_path = snapshot_path or config.get_snapshot_path()
        rebuild_if_stale = config.REBUILD_IF_STALE if rebuild_if_stale is None else rebuild_if_stale
        persist = config.PERSIST_REBUILT_INDEX if persist is None else persist

        with self._lock:
            try:
                try:
                    state = self._warmup_state(catalog_path, snapshot_path, dimension, rebuild_if_stale, persist)
                except Exception as e:
                    logger.error(f"Unexpected warmup failure: {type(e).__name__}: {e}")
                    state = ServedState(EmptyIndex(dimension), "empty", True,
                                         f"warmup failed: {type(e).__name__}: {e}")
                self._publish(state)
            finally:
                self._ready.set()

        if state.degraded:
            logger.log_degraded(state.degraded_reason, {"source": state.source, "size": len(state.index)})
        else:
            logger.log_operation("index.warmup", "success", {"source": state.source, "size": len(state.index)})
        return not state.degraded

    def _warmup_state(self, catalog_path, snapshot_path, dimension, rebuild_if_stale, persist) -> ServedState:
        try:
            catalog = load_catalog(catalog_path, dimension)
        except GeoMatchError as e:
            return ServedState(EmptyIndex(dimension), "empty", True, f"catalog unavailable: {e}")

        references = catalog.references
        try:
            index = load_snapshot(snapshot_path, references, catalog.dimension, self.params)
            return ServedState(index, "snapshot")
        except SnapshotError as e:
            if not rebuild_if_stale:
                return self._exact_fallback(references, catalog.dimension, f"snapshot unusable: {e}")

        try:
            index = HNSWIndex.build(references, self.params, catalog.dimension)
        except GeoMatchError as e:
            return self._exact_fallback(references, catalog.dimension, f"index build failed: {e}")

        if persist:
            try:
                save_snapshot(index, snapshot_path)
            except (OSError, SnapshotError) as e:
                logger.warning(f"Rebuilt index could not be persisted to {snapshot_path}: {e}")
        return ServedState(index, "rebuilt")

    @staticmethod
    def _exact_fallback(references, dimension, reason: str) -> ServedState:
        try:
            return ServedState(ExactIndex(references, dimension), "exact", True, reason)
        except GeoMatchError as e:
            return ServedState(EmptyIndex(dimension), "empty", True, f"{reason}; exact fallback failed: {e}")

    def warmup_in_background(self, **kwargs) -> threading.Thread:
        """Run ``warmup`` on a daemon thread so the caller can start accepting requests."""
        # a served index keeps answering while it is re-warmed
        if len(self._state.index) == 0:
            self._ready.clear()
        thread = threading.Thread(target=self.warmup, kwargs=kwargs, name="geomatch-warmup", daemon=True)
        thread.start()
        return thread

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        return self._ready.wait(timeout)

    def served(self) -> ServedState:
        """The currently served state; search and inspect it as one consistent view."""
        return self._state

    def search(self, query_vector, k: int, ef: Optional[int] = None,
               state: Optional[ServedState] = None) -> List[Match]:
        """Search the served index, or ``state`` when the caller already holds one.

        Raises:
            IndexUnavailableError: degraded with nothing to search
        """
        if state is None:
            state = self._state
        if state.degraded and len(state.index) == 0:
            raise IndexUnavailableError(f"no index available: {state.degraded_reason}")
        return state.index.search(query_vector, k, ef)

    def status(self, state: Optional[ServedState] = None) -> dict:
        if state is None:
            state = self._state
        params = None
        if isinstance(state.index, HNSWIndex):
            params = asdict(state.index.params)
        return {
            "source": state.source,
            "size": len(state.index),
            "dimension": state.index.dimension,
            "degraded": state.degraded,
            "degraded_reason": state.degraded_reason,
            "ready": self.ready,
            "params": params,
        }
