"""
Semantic Cache: response reuse keyed by embedding similarity.

Entries are partitioned into one region per task type; a lookup only ever
compares against its own region, with a per-task-type similarity threshold.
Memory is bounded by a byte budget. When an insert needs room, the least
recently used entry is evicted together with every entry of its region that
is similar enough to have served as a hit for it, so no near-duplicate
stragglers outlive their cluster.

Locking: each region has its own lock (lookups take only that). Inserts and
evictions serialize on the cache-wide budget lock and take region locks
beneath it. The byte counter and hit/miss stats sit behind a leaf lock.
"""

import itertools
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import numpy as np

from iris.config.settings import DEFAULT_SIMILARITY_THRESHOLDS
from iris.core.types import TaskType

from .embeddings import Embedder, cosine_similarities

logger = logging.getLogger(__name__)

ENTRY_OVERHEAD_BYTES = 256
_SIMILARITY_EPSILON = 1e-6


@dataclass(eq=False)
class CacheEntry:
    """Cached response. Only ``last_accessed_at`` and ``hit_count`` change after creation."""

    entry_id: int
    embedding: np.ndarray = field(repr=False)
    query: str
    task_type: TaskType
    response: str
    created_at: float
    last_accessed_at: float
    size_bytes: int
    provider_id: str | None = None
    hit_count: int = 0


@dataclass
class _Region:
    entries: dict[int, CacheEntry] = field(default_factory=dict)
    by_query: dict[str, int] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _matrix: np.ndarray | None = field(default=None, repr=False)
    _matrix_ids: list[int] = field(default_factory=list, repr=False)

    def invalidate_matrix(self) -> None:
        self._matrix = None
        self._matrix_ids = []

    def matrix(self) -> tuple[np.ndarray, list[int]]:
        if self._matrix is None:
            self._matrix_ids = list(self.entries)
            if self._matrix_ids:
                self._matrix = np.stack([self.entries[i].embedding for i in self._matrix_ids])
            else:
                self._matrix = np.zeros((0, 0), dtype=np.float32)
        return self._matrix, self._matrix_ids


class SemanticCache:
    """Similarity-based response cache with a hard memory budget."""

    def __init__(
        self,
        embedder: Embedder,
        memory_budget_bytes: int = 64 * 1024 * 1024,
        similarity_thresholds: dict[TaskType, float] | None = None,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.embedder = embedder
        self.memory_budget_bytes = memory_budget_bytes
        self.thresholds = dict(DEFAULT_SIMILARITY_THRESHOLDS)
        if similarity_thresholds:
            self.thresholds.update(similarity_thresholds)
        self.ttl_seconds = ttl_seconds
        self._clock = clock

        self._regions: dict[TaskType, _Region] = {}
        self._regions_lock = threading.Lock()
        self._budget_lock = threading.Lock()
        self._usage_lock = threading.Lock()
        self._ids = itertools.count(1)

        self._used_bytes = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

        logger.info(
            "SemanticCache initialized: budget=%d bytes, ttl=%s", memory_budget_bytes, ttl_seconds
        )

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _region(self, task_type: TaskType) -> _Region:
        region = self._regions.get(task_type)
        if region is None:
            with self._regions_lock:
                region = self._regions.setdefault(task_type, _Region())
        return region

    def threshold(self, task_type: TaskType) -> float:
        return self.thresholds.get(task_type, DEFAULT_SIMILARITY_THRESHOLDS[TaskType.GENERAL])

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return self.ttl_seconds is not None and now - entry.created_at > self.ttl_seconds

    def _remove_locked(self, region: _Region, entry_id: int) -> CacheEntry | None:
        entry = region.entries.pop(entry_id, None)
        if entry is None:
            return None
        if region.by_query.get(entry.query) == entry_id:
            del region.by_query[entry.query]
        region.invalidate_matrix()
        with self._usage_lock:
            self._used_bytes -= entry.size_bytes
        return entry

    def _purge_expired_locked(self, region: _Region, now: float) -> None:
        if self.ttl_seconds is None:
            return
        expired = [eid for eid, e in region.entries.items() if self._expired(e, now)]
        for eid in expired:
            self._remove_locked(region, eid)
        if expired:
            with self._usage_lock:
                self._expirations += len(expired)

    def _best_match_locked(
        self, region: _Region, vector: np.ndarray, task_type: TaskType
    ) -> CacheEntry | None:
        if not region.entries:
            return None
        matrix, ids = region.matrix()
        scores = cosine_similarities(matrix, vector)
        best = int(np.argmax(scores))
        if scores[best] >= self.threshold(task_type) - _SIMILARITY_EPSILON:
            return region.entries[ids[best]]
        return None

    def _touch_locked(self, entry: CacheEntry, now: float) -> None:
        entry.last_accessed_at = now
        entry.hit_count += 1

    def _count(self, hit: bool) -> None:
        with self._usage_lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1

    @staticmethod
    def entry_size(vector: np.ndarray, query: str, response: str) -> int:
        return (
            int(vector.nbytes)
            + len(query.encode("utf-8"))
            + len(response.encode("utf-8"))
            + ENTRY_OVERHEAD_BYTES
        )

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    def lookup(self, query: str, task_type: TaskType) -> CacheEntry | None:
        """Return the best same-task-type entry at or above the threshold, or None."""
        region = self._region(task_type)
        now = self._clock()

        with region.lock:
            self._purge_expired_locked(region, now)
            if not region.entries:
                self._count(False)
                return None
            exact_id = region.by_query.get(query)
            if exact_id is not None:
                entry = region.entries[exact_id]
                self._touch_locked(entry, now)
                self._count(True)
                return entry

        vector = self.embedder.embed(query)

        with region.lock:
            entry = self._best_match_locked(region, vector, task_type)
            if entry is not None and not self._expired(entry, now):
                self._touch_locked(entry, now)
                self._count(True)
                logger.debug("Semantic cache hit for %s (entry %d)", task_type, entry.entry_id)
                return entry

        self._count(False)
        return None

    def insert(
        self,
        query: str,
        task_type: TaskType,
        response: str,
        provider_id: str | None = None,
    ) -> CacheEntry | None:
        """
        Store a response. Returns the stored entry, the existing equivalent
        entry if one is already cached, or None if the entry cannot fit.
        """
        vector = self.embedder.embed(query)
        size = self.entry_size(vector, query, response)
        if size > self.memory_budget_bytes:
            logger.warning(
                "Cache entry of %d bytes exceeds the %d byte budget; not cached",
                size,
                self.memory_budget_bytes,
            )
            return None

        region = self._region(task_type)
        with self._budget_lock:
            with region.lock:
                existing_id = region.by_query.get(query)
                existing = (
                    region.entries[existing_id]
                    if existing_id is not None
                    else self._best_match_locked(region, vector, task_type)
                )
                if existing is not None and not self._expired(existing, self._clock()):
                    return existing

            while self.memory_usage() + size > self.memory_budget_bytes:
                if not self._evict_lru_cluster():
                    break

            now = self._clock()
            entry = CacheEntry(
                entry_id=next(self._ids),
                embedding=vector,
                query=query,
                task_type=task_type,
                response=response,
                created_at=now,
                last_accessed_at=now,
                size_bytes=size,
                provider_id=provider_id,
            )
            with region.lock:
                region.entries[entry.entry_id] = entry
                region.by_query[query] = entry.entry_id
                region.invalidate_matrix()
                with self._usage_lock:
                    self._used_bytes += size
        return entry

    def _evict_lru_cluster(self) -> bool:
        """Evict the LRU entry and its similarity cluster. Caller holds the budget lock."""
        victim: CacheEntry | None = None
        victim_region: _Region | None = None
        for region in list(self._regions.values()):
            with region.lock:
                for entry in region.entries.values():
                    if victim is None or entry.last_accessed_at < victim.last_accessed_at:
                        victim, victim_region = entry, region
        if victim is None or victim_region is None:
            return False

        with victim_region.lock:
            if victim.entry_id not in victim_region.entries:
                return True
            matrix, ids = victim_region.matrix()
            scores = cosine_similarities(matrix, victim.embedding)
            threshold = self.threshold(victim.task_type) - _SIMILARITY_EPSILON
            cluster = [eid for eid, score in zip(ids, scores) if score >= threshold]
            if victim.entry_id not in cluster:
                cluster.append(victim.entry_id)
            freed = 0
            for eid in cluster:
                removed = self._remove_locked(victim_region, eid)
                if removed is not None:
                    freed += removed.size_bytes
        with self._usage_lock:
            self._evictions += len(cluster)
        logger.debug(
            "Evicted cluster of %d %s entries (%d bytes) around entry %d",
            len(cluster),
            victim.task_type,
            freed,
            victim.entry_id,
        )
        return True

    def invalidate(self, task_type: TaskType | None = None) -> int:
        """Drop every entry of one task type, or all entries. Returns the count removed."""
        removed = 0
        with self._budget_lock:
            if task_type is None:
                regions = list(self._regions.values())
            else:
                regions = [self._regions[task_type]] if task_type in self._regions else []
            for region in regions:
                with region.lock:
                    for eid in list(region.entries):
                        if self._remove_locked(region, eid) is not None:
                            removed += 1
        if removed:
            logger.info("Invalidated %d cache entries (%s)", removed, task_type or "all task types")
        return removed

    def memory_usage(self) -> int:
        with self._usage_lock:
            return self._used_bytes

    def __len__(self) -> int:
        return sum(len(r.entries) for r in list(self._regions.values()))

    def hit_rate(self) -> float:
        with self._usage_lock:
            total = self._hits + self._misses
            return self._hits / total if total else 0.0

    def stats(self) -> dict:
        with self._usage_lock:
            hits, misses = self._hits, self._misses
            evictions, expirations = self._evictions, self._expirations
            used = self._used_bytes
        total = hits + misses
        return {
            'entries': len(self),
            'memory_bytes': used,
            'memory_budget_bytes': self.memory_budget_bytes,
            'hits': hits,
            'misses': misses,
            'hit_rate': hits / total if total else 0.0,
            'evictions': evictions,
            'expirations': expirations,
            'entries_by_task_type': {
                t.value: len(r.entries) for t, r in list(self._regions.items())
            },
        }
