"""
Similarity indexes over the live records of one database.

Both implementations rank by cosine similarity on unit-normalized vectors
and break ties by insertion order. IVFIndex partitions vectors around
k-means centroids and scans clusters best-bound first, stopping only when
no unscanned cluster can hold a better candidate, so it returns exactly what
FlatIndex returns.
"""

import heapq
import math
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np

# Absorbs float rounding in the cluster upper bounds
_BOUND_SLACK = 1e-9

RankedId = Tuple[str, float]


def normalize(values: np.ndarray) -> np.ndarray:
    """Return a unit vector, or zeros for a zero-norm input."""
    norm = np.linalg.norm(values)
    if norm == 0 or not np.isfinite(norm):
        return np.zeros_like(values, dtype=np.float64)
    return values / norm


class _TopK:
    """Bounded min-heap keeping the best (cosine, earliest sequence) entries."""

    def __init__(self, k: int):
        self.k = k
        self._heap = []

    @property
    def full(self) -> bool:
        return len(self._heap) >= self.k

    @property
    def worst(self) -> float:
        return self._heap[0][0]

    def push(self, cosine: float, sequence: int, record_id: str) -> None:
        entry = (cosine, -sequence, record_id)
        if len(self._heap) < self.k:
            heapq.heappush(self._heap, entry)
        elif entry[:2] > self._heap[0][:2]:
            heapq.heapreplace(self._heap, entry)

    def ranked(self) -> List[RankedId]:
        return [(record_id, cosine) for cosine, _, record_id in sorted(self._heap, reverse=True)]


class IVectorIndex(ABC):
    """Abstract interface for similarity index operations."""

    @abstractmethod
    def add(self, record_id: str, sequence: int, values: np.ndarray) -> None:
        """Index a live record, replacing any previous entry with the same id."""
        pass

    @abstractmethod
    def remove(self, record_id: str) -> None:
        """Drop a record from the index (soft delete or overwrite)."""
        pass

    @abstractmethod
    def search(self, query: np.ndarray, top_k: int,
               accept: Optional[Callable[[str], bool]] = None,
               min_similarity: float = -1.0) -> List[RankedId]:
        """Return up to top_k (record_id, cosine) pairs, best first."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove every entry."""
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass


class FlatIndex(IVectorIndex):
    """Linear scan over every indexed vector."""

    def __init__(self, dimensions: int):
        self.dimensions = dimensions
        self._vectors: Dict[str, np.ndarray] = {}   # record_id -> unit vector
        self._sequences: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._vectors

    def add(self, record_id: str, sequence: int, values: np.ndarray) -> None:
        self._vectors[record_id] = normalize(np.asarray(values, dtype=np.float64))
        self._sequences[record_id] = sequence

    def remove(self, record_id: str) -> None:
        self._vectors.pop(record_id, None)
        self._sequences.pop(record_id, None)

    def clear(self) -> None:
        self._vectors.clear()
        self._sequences.clear()

    def search(self, query: np.ndarray, top_k: int,
               accept: Optional[Callable[[str], bool]] = None,
               min_similarity: float = -1.0) -> List[RankedId]:
        if top_k <= 0 or not self._vectors:
            return []

        unit_query = normalize(np.asarray(query, dtype=np.float64))
        best = _TopK(top_k)
        self._score_into(best, self._vectors.keys(), unit_query, accept, min_similarity)
        return best.ranked()

    def _score_into(self, best: _TopK, record_ids: Iterable[str], unit_query: np.ndarray,
                    accept: Optional[Callable[[str], bool]], min_similarity: float) -> None:
        candidates = [rid for rid in record_ids if accept is None or accept(rid)]
        if not candidates:
            return

        matrix = np.stack([self._vectors[rid] for rid in candidates])
        # Row-wise sum keeps each score independent of which other rows are present
        cosines = np.sum(matrix * unit_query, axis=1)
        for rid, cosine in zip(candidates, cosines):
            cosine = float(cosine)
            if cosine >= min_similarity:
                best.push(cosine, self._sequences[rid], rid)


class IVFIndex(FlatIndex):
    """
    Inverted-file index with exact results.

    Below min_records live vectors the index scans linearly. At or above it,
    vectors are clustered with k-means (sqrt(n) lists, capped at max_lists)
    and new vectors join their nearest centroid. Centroids are retrained
    whenever the collection grows by retrain_growth since the last training.

    Each cluster keeps the largest distance from its centroid to any member
    ever assigned. For a unit query q and centroid c at distance d, every
    member x satisfies |q - x| >= d - radius, so its cosine is at most
    1 - max(0, d - radius)^2 / 2. Clusters are scanned in descending bound
    order and scanning stops once the current k-th best beats the next bound.
    """

    def __init__(self, dimensions: int, min_records: int = 3, max_lists: int = 64,
                 retrain_growth: float = 2.0, iterations: int = 10, seed: int = 0):
        super().__init__(dimensions)
        self.min_records = min_records
        self.max_lists = max_lists
        self.retrain_growth = retrain_growth
        self.iterations = iterations
        self.seed = seed
        self._reset_clusters()

    def _reset_clusters(self) -> None:
        self._centroids: Optional[np.ndarray] = None
        self._radii: Optional[np.ndarray] = None
        self._lists: List[Dict[str, None]] = []
        self._assignment: Dict[str, int] = {}
        # Zero-norm vectors have no direction and are always scanned
        self._unclustered: Dict[str, None] = {}
        self._trained_size = 0

    @property
    def trained(self) -> bool:
        return self._centroids is not None

    @property
    def list_count(self) -> int:
        return 0 if self._centroids is None else len(self._centroids)

    def add(self, record_id: str, sequence: int, values: np.ndarray) -> None:
        if record_id in self._vectors:
            self._unassign(record_id)
        super().add(record_id, sequence, values)

        if self._centroids is None:
            if len(self._vectors) >= self.min_records:
                self.train()
        elif len(self._vectors) >= self._trained_size * self.retrain_growth:
            self.train()
        else:
            self._assign(record_id)

    def remove(self, record_id: str) -> None:
        if record_id not in self._vectors:
            return
        self._unassign(record_id)
        super().remove(record_id)
        if len(self._vectors) < self.min_records:
            self._reset_clusters()

    def clear(self) -> None:
        super().clear()
        self._reset_clusters()

    def train(self) -> None:
        """Recompute centroids with k-means and reassign every vector."""
        self._reset_clusters()
        self._trained_size = len(self._vectors)

        directed = [rid for rid, vec in self._vectors.items() if vec.any()]
        self._unclustered = {rid: None for rid, vec in self._vectors.items() if not vec.any()}
        if not directed:
            return

        data = np.stack([self._vectors[rid] for rid in directed])
        list_count = min(self.max_lists, max(1, int(math.sqrt(len(directed)))))
        rng = np.random.default_rng(self.seed)
        centroids = data[rng.choice(len(directed), size=list_count, replace=False)].copy()

        for _ in range(self.iterations):
            labels = self._nearest(data, centroids)
            moved = False
            for c in range(list_count):
                members = data[labels == c]
                if len(members):
                    mean = members.mean(axis=0)
                    if not np.array_equal(mean, centroids[c]):
                        centroids[c] = mean
                        moved = True
            if not moved:
                break

        self._centroids = centroids
        self._radii = np.zeros(list_count, dtype=np.float64)
        self._lists = [{} for _ in range(list_count)]
        for rid in directed:
            self._assign(rid)

    @staticmethod
    def _nearest(data: np.ndarray, centroids: np.ndarray) -> np.ndarray:
        distances = (
            np.sum(data * data, axis=1)[:, None]
            - 2.0 * data @ centroids.T
            + np.sum(centroids * centroids, axis=1)[None, :]
        )
        return np.argmin(distances, axis=1)

    def _assign(self, record_id: str) -> None:
        vector = self._vectors[record_id]
        if not vector.any():
            self._unclustered[record_id] = None
            return

        cluster = int(self._nearest(vector[None, :], self._centroids)[0])
        self._lists[cluster][record_id] = None
        self._assignment[record_id] = cluster
        distance = float(np.linalg.norm(vector - self._centroids[cluster]))
        if distance > self._radii[cluster]:
            self._radii[cluster] = distance

    def _unassign(self, record_id: str) -> None:
        self._unclustered.pop(record_id, None)
        cluster = self._assignment.pop(record_id, None)
        if cluster is not None:
            self._lists[cluster].pop(record_id, None)

    def search(self, query: np.ndarray, top_k: int,
               accept: Optional[Callable[[str], bool]] = None,
               min_similarity: float = -1.0) -> List[RankedId]:
        unit_query = normalize(np.asarray(query, dtype=np.float64))
        if self._centroids is None or not unit_query.any():
            return super().search(query, top_k, accept, min_similarity)
        if top_k <= 0:
            return []

        best = _TopK(top_k)
        self._score_into(best, list(self._unclustered), unit_query, accept, min_similarity)

        gaps = np.linalg.norm(self._centroids - unit_query, axis=1) - self._radii
        bounds = 1.0 - np.square(np.maximum(gaps, 0.0)) / 2.0 + _BOUND_SLACK

        for cluster in np.argsort(-bounds, kind="stable"):
            members = self._lists[cluster]
            if not members:
                continue
            bound = float(bounds[cluster])
            if bound < min_similarity:
                break
            if best.full and best.worst > bound:
                break
            self._score_into(best, list(members), unit_query, accept, min_similarity)

        return best.ranked()
