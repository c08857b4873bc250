'''
Build-once nearest-neighbour index over the locations dataset.

The first query (or an explicit ensure_ready call) loads the CSV and builds a
haversine BallTree. If the tree cannot be built the index answers from a
linear scan instead; if the load itself fails the error is cached and every
later query re-raises it.
'''

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

import numpy as np
import structlog
from sklearn.neighbors import BallTree

from geonear.CONSTANTS import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_LEAF_SIZE,
    DEFAULT_NEIGHBORS,
    MAX_NEIGHBORS,
)
from geonear.data_prep import LoadResult, load_records, resolve_source_path
from geonear.errors import LoadError
from geonear.geo import (
    clamp_latitude,
    clamp_limit,
    haversine_m,
    normalize_longitude,
    round_meters,
)
from geonear.records import IndexState, IndexStats, NearestResult, PointRecord

log = structlog.get_logger(__name__)


def build_ball_tree(coords_rad: np.ndarray, leaf_size: int = DEFAULT_LEAF_SIZE) -> BallTree:
    '''
    Inputs:
        coords_rad: (N, 2) array of [lat, lon] in radians
        leaf_size: BallTree leaf size
    Returns:
        BallTree using the haversine metric (distances in radians)
    '''
    return BallTree(coords_rad, leaf_size=leaf_size, metric="haversine")


@dataclass(frozen=True, eq=False)
class _TreeState:
    records: Tuple[PointRecord, ...]
    coords: np.ndarray  # (N, 2) [lat, lon] in degrees
    tree: BallTree

    kind = IndexState.READY_TREE

    def candidates(self, lat: float, lon: float, k: int) -> np.ndarray:
        q = np.radians([[lat, lon]])
        dist, idx = self.tree.query(q, k=k)
        # query() keeps an arbitrary subset of points tied at the k-th
        # distance; widen to every point within it so ranking can pick
        # the lowest dataset positions
        kth = dist[0][-1]
        within = self.tree.query_radius(q, r=kth * (1 + 1e-9) + 1e-12)[0]
        return np.union1d(idx[0], within)


@dataclass(frozen=True, eq=False)
class _LinearState:
    records: Tuple[PointRecord, ...]
    coords: np.ndarray

    kind = IndexState.READY_LINEAR

    def candidates(self, lat: float, lon: float, k: int) -> np.ndarray:
        log.warning("spatial_index_unavailable", fallback="linear_scan", rows=len(self.records))
        distances = haversine_m(lat, lon, self.coords[:, 0], self.coords[:, 1])
        return np.argsort(distances, kind="stable")[:k]


@dataclass(frozen=True, eq=False)
class _FailedState:
    error: LoadError

    kind = IndexState.FAILED


def _as_load_error(exc: Exception) -> LoadError:
    if isinstance(exc, LoadError):
        return exc
    error = LoadError(f"Unexpected failure while loading locations: {exc}")
    error.__cause__ = exc
    return error


class NearestIndex:
    '''
    Thread-safe, lazily built k-nearest-neighbour index.

    Exactly one load and one tree build happen per instance, no matter how
    many threads query concurrently; callers that arrive mid-build wait on it.
    '''

    def __init__(
        self,
        candidates: Iterable[Path] = (),
        override: Optional[Path] = None,
        *,
        loader: Callable[..., LoadResult] = load_records,
        tree_factory: Callable[..., object] = build_ball_tree,
        leaf_size: int = DEFAULT_LEAF_SIZE,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self._candidates = list(candidates)
        self._override = override
        self._loader = loader
        self._tree_factory = tree_factory
        self._leaf_size = leaf_size
        self._chunk_size = chunk_size

        self._lock = threading.Lock()
        self._built = threading.Event()
        self._building = False
        self._state = None
        self._stats: Optional[IndexStats] = None

    @classmethod
    def from_settings(cls, settings) -> "NearestIndex":
        return cls(
            settings.source_candidates(),
            settings.locations_csv_path,
            leaf_size=settings.index_leaf_size,
            chunk_size=settings.csv_chunk_size,
        )

    @property
    def state(self) -> IndexState:
        if self._built.is_set():
            return self._state.kind
        return IndexState.BUILDING if self._building else IndexState.UNBUILT

    def get_stats(self) -> Optional[IndexStats]:
        if not self._built.is_set():
            return None
        return self._stats

    def ensure_ready(self) -> None:
        '''
        Build the index on first use and cache the outcome.

        Raises:
            LoadError - the cached load failure, on this and every later call
        '''
        if not self._built.is_set():
            with self._lock:
                if not self._built.is_set():
                    self._building = True
                    try:
                        self._state, self._stats = self._build()
                    finally:
                        self._building = False
                    self._built.set()

        if isinstance(self._state, _FailedState):
            raise self._state.error

    def find_nearest(self, latitude: float, longitude: float, limit=DEFAULT_NEIGHBORS) -> List[NearestResult]:
        '''
        Return up to `limit` records closest to (latitude, longitude).

        Inputs are normalized rather than rejected: latitude is clamped to
        [-90, 90], longitude wraps into [-180, 180) and limit is coerced into
        [1, MAX_NEIGHBORS].

        Returns:
            List[NearestResult] - ascending by distance; ties keep dataset order
        Raises:
            LoadError - if the dataset failed to load
        '''
        self.ensure_ready()
        state = self._state
        if not state.records:
            return []

        k = min(clamp_limit(limit, MAX_NEIGHBORS, DEFAULT_NEIGHBORS), len(state.records))
        lat = clamp_latitude(float(latitude))
        lon = normalize_longitude(float(longitude))

        positions = np.asarray(state.candidates(lat, lon, k))
        distances = haversine_m(lat, lon, state.coords[positions, 0], state.coords[positions, 1])
        order = np.lexsort((positions, distances))[:k]

        return [
            NearestResult(record=state.records[p], distance_meters=round_meters(d))
            for p, d in zip(positions[order], distances[order])
        ]

    def _build(self):
        started = time.perf_counter()
        source_path = ""
        try:
            source = resolve_source_path(self._candidates, self._override)
            source_path = str(source)
            loaded = self._loader(source, chunk_size=self._chunk_size)
        except Exception as exc:
            error = _as_load_error(exc)
            log.error(
                "locations_load_failed",
                path=source_path or None,
                error_code=error.error_code,
                error=str(error),
            )
            stats = IndexStats(
                source_path=source_path,
                total_rows_seen=0,
                total_rows_indexed=0,
                total_rows_skipped=0,
                build_duration_millis=self._elapsed_ms(started),
                built_at=datetime.now(timezone.utc),
                using_tree_index=False,
            )
            return _FailedState(error), stats

        records = tuple(loaded.records)
        coords = np.array(
            [[r.latitude, r.longitude] for r in records], dtype=float
        ).reshape(-1, 2)
        state = self._index(records, coords, source_path)

        stats = IndexStats(
            source_path=source_path,
            total_rows_seen=loaded.total_rows_seen,
            total_rows_indexed=len(records),
            total_rows_skipped=loaded.total_rows_skipped,
            build_duration_millis=self._elapsed_ms(started),
            built_at=datetime.now(timezone.utc),
            using_tree_index=isinstance(state, _TreeState),
        )
        log.info(
            "locations_indexed",
            path=source_path,
            rows=stats.total_rows_indexed,
            skipped=stats.total_rows_skipped,
            duration_ms=stats.build_duration_millis,
            using_tree_index=stats.using_tree_index,
        )
        return state, stats

    def _index(self, records, coords, source_path):
        if not records:
            log.info("locations_empty", path=source_path)
            return _LinearState(records, coords)

        try:
            tree = self._tree_factory(np.radians(coords), leaf_size=self._leaf_size)
        except Exception as exc:
            log.warning(
                "spatial_index_build_failed",
                path=source_path,
                error=str(exc),
                fallback="linear_scan",
            )
            return _LinearState(records, coords)

        return _TreeState(records, coords, tree)

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int(round((time.perf_counter() - started) * 1000))
