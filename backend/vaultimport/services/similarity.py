"""Near-duplicate detection over perceptual hashes.

The oracle scores a pair of assets in [0, 1]; a pair is similar when the
score is strictly greater than the threshold. The default oracle compares
hex-encoded perceptual hashes by Hamming distance. Candidate pairs come
from a banded bucket index instead of comparing every pair: if two hashes
differ in fewer bits than there are bands, at least one band is identical,
so the index misses nothing below that distance.
"""

from __future__ import annotations

import math
from collections import defaultdict, deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol

from vaultimport.core.config import settings


class SimilarityOracle(Protocol):
    """Pluggable pairwise similarity."""

    def score(self, left: str, right: str) -> float | None:
        """Similarity of two perceptual hashes, or None if not comparable."""
        ...

    def max_distance(self, hash_bits: int, threshold: float) -> int:
        """Largest bit distance that can still score above ``threshold``."""
        ...


class PerceptualHashOracle:
    """score = 1 - hamming / bits over equal-length hex hashes."""

    def score(self, left: str, right: str) -> float | None:
        if not left or not right or len(left) != len(right):
            return None
        try:
            distance = (int(left, 16) ^ int(right, 16)).bit_count()
        except ValueError:
            return None
        return 1.0 - distance / (len(left) * 4)

    def max_distance(self, hash_bits: int, threshold: float) -> int:
        # score > threshold  <=>  distance < (1 - threshold) * bits
        return max(math.ceil((1.0 - threshold) * hash_bits) - 1, 0)


@dataclass(frozen=True)
class HashedItem:
    item_id: str
    perceptual_hash: str
    fingerprint: str | None = None


@dataclass(frozen=True)
class SimilarPair:
    left: str
    right: str
    score: float


class PerceptualHashIndex:
    """Buckets hashes by band so lookups only compare plausible neighbours."""

    def __init__(self, bands: int | None = None):
        self.bands = bands or settings.phash_bands
        self._buckets: dict[tuple[int, int, str], list[HashedItem]] = defaultdict(list)

    def add(self, item: HashedItem) -> None:
        for key in self._keys(item.perceptual_hash):
            self._buckets[key].append(item)

    def candidates(self, perceptual_hash: str) -> list[HashedItem]:
        """Items sharing at least one band with ``perceptual_hash``."""
        seen: dict[str, HashedItem] = {}
        for key in self._keys(perceptual_hash):
            for item in self._buckets.get(key, ()):
                seen.setdefault(item.item_id, item)
        return list(seen.values())

    def _keys(self, perceptual_hash: str) -> list[tuple[int, int, str]]:
        value = perceptual_hash.lower()
        width = len(value)
        bands = max(1, min(self.bands, width))
        # Exactly `bands` chunks, sizes differing by at most one character
        bounds = [width * i // bands for i in range(bands + 1)]
        return [(width, bounds[i], value[bounds[i]:bounds[i + 1]]) for i in range(bands)]


def bands_for(oracle: SimilarityOracle, hash_bits: int, threshold: float) -> int:
    """Band count that guarantees full recall at ``threshold``."""
    needed = oracle.max_distance(hash_bits, threshold) + 1
    return min(max(settings.phash_bands, needed), hash_bits // 4 or 1)


class SimilarityIndex:
    """Banded indexes per hash length, sized for full recall at ``threshold``."""

    def __init__(self, threshold: float, oracle: SimilarityOracle | None = None):
        self.threshold = threshold
        self.oracle = oracle or PerceptualHashOracle()
        self._by_width: dict[int, PerceptualHashIndex] = {}

    def add(self, item: HashedItem) -> None:
        self._index_for(len(item.perceptual_hash)).add(item)

    def candidates(self, perceptual_hash: str) -> list[HashedItem]:
        index = self._by_width.get(len(perceptual_hash))
        return index.candidates(perceptual_hash) if index is not None else []

    def _index_for(self, width: int) -> PerceptualHashIndex:
        index = self._by_width.get(width)
        if index is None:
            index = PerceptualHashIndex(bands=bands_for(self.oracle, width * 4, self.threshold))
            self._by_width[width] = index
        return index


def find_similar_pairs(
    items: Sequence[HashedItem],
    threshold: float,
    oracle: SimilarityOracle | None = None,
) -> list[SimilarPair]:
    """All pairs scoring above ``threshold``.

    Pairs that share a content fingerprint are exact duplicates and are not
    reported here.
    """
    oracle = oracle or PerceptualHashOracle()
    by_width: dict[int, list[HashedItem]] = defaultdict(list)
    for item in items:
        if item.perceptual_hash:
            by_width[len(item.perceptual_hash)].append(item)

    pairs: list[SimilarPair] = []
    for width, group in by_width.items():
        index = PerceptualHashIndex(bands=bands_for(oracle, width * 4, threshold))
        for item in group:
            for other in index.candidates(item.perceptual_hash):
                if item.fingerprint and item.fingerprint == other.fingerprint:
                    continue
                score = oracle.score(item.perceptual_hash, other.perceptual_hash)
                if score is not None and score > threshold:
                    left, right = sorted((item.item_id, other.item_id))
                    pairs.append(SimilarPair(left=left, right=right, score=score))
            index.add(item)
    return pairs


def best_match(
    perceptual_hash: str,
    items: Iterable[HashedItem],
    threshold: float,
    oracle: SimilarityOracle | None = None,
) -> tuple[str, float] | None:
    """Id and score of the closest item above ``threshold``, if any."""
    oracle = oracle or PerceptualHashOracle()
    best: tuple[str, float] | None = None
    for item in items:
        score = oracle.score(perceptual_hash, item.perceptual_hash)
        if score is None or score <= threshold:
            continue
        if best is None or score > best[1]:
            best = (item.item_id, score)
    return best


def connected_components(
    node_ids: Iterable[str],
    edges: Iterable[tuple[str, str]],
) -> list[list[str]]:
    """Group nodes joined by edges; singletons are dropped."""
    adjacency: dict[str, set[str]] = defaultdict(set)
    for left, right in edges:
        adjacency[left].add(right)
        adjacency[right].add(left)

    visited: set[str] = set()
    components: list[list[str]] = []
    for node_id in node_ids:
        if node_id in visited or node_id not in adjacency:
            continue
        component: list[str] = []
        queue = deque([node_id])
        visited.add(node_id)
        while queue:
            current = queue.popleft()
            component.append(current)
            for neighbour in sorted(adjacency[current]):
                if neighbour not in visited:
                    visited.add(neighbour)
                    queue.append(neighbour)
        components.append(sorted(component))
    return components
