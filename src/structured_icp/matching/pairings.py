"""
Pairings

Container for the correspondences found in one ICP iteration: point-to-point,
plane-to-plane and point-to-plane. "this" always refers to the reference
(global) cloud and "other" to the moving (local) cloud, in its own frame.
A new Pairings is built for every iteration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

import numpy as np

from ..clouds.layered_cloud import PlanePatch


@dataclass(eq=False)
class MatchedPlane:
    p_this: PlanePatch
    p_other: PlanePatch


@dataclass(eq=False)
class PointPlanePair:
    pl_this: PlanePatch
    pt_other: np.ndarray


@dataclass
class LayerMatchStats:
    """How many local primitives of a layer were queried and how many got paired."""

    considered: int = 0
    matched: int = 0


def _empty_points() -> np.ndarray:
    return np.empty((0, 3), dtype=np.float64)


def _empty_idx() -> np.ndarray:
    return np.empty((0,), dtype=np.int64)


@dataclass(eq=False)
class Pairings:
    idx_this: np.ndarray = field(default_factory=_empty_idx)
    idx_other: np.ndarray = field(default_factory=_empty_idx)
    points_this: np.ndarray = field(default_factory=_empty_points)
    points_other: np.ndarray = field(default_factory=_empty_points)
    paired_planes: List[MatchedPlane] = field(default_factory=list)
    paired_pt2pl: List[PointPlanePair] = field(default_factory=list)
    # (number of consecutive point pairs, weight), in insertion order
    point_weights: List[Tuple[int, float]] = field(default_factory=list)
    layer_stats: Dict[str, LayerMatchStats] = field(default_factory=dict)

    @property
    def num_point_pairs(self) -> int:
        return int(len(self.idx_this))

    def size(self) -> int:
        return self.num_point_pairs + len(self.paired_planes) + len(self.paired_pt2pl)

    def empty(self) -> bool:
        return self.size() == 0

    def add_point_pairs(
        self,
        idx_this: np.ndarray,
        idx_other: np.ndarray,
        points_this: np.ndarray,
        points_other: np.ndarray,
    ) -> int:
        """
        Append point-to-point correspondences.

        Returns:
            Number of pairs added.
        """
        idx_this = np.asarray(idx_this, dtype=np.int64).reshape(-1)
        idx_other = np.asarray(idx_other, dtype=np.int64).reshape(-1)
        points_this = np.asarray(points_this, dtype=np.float64).reshape(-1, 3)
        points_other = np.asarray(points_other, dtype=np.float64).reshape(-1, 3)
        n = len(idx_this)
        if not (len(idx_other) == len(points_this) == len(points_other) == n):
            raise ValueError("Point pairing arrays must all have the same length")
        if n == 0:
            return 0
        self.idx_this = np.concatenate([self.idx_this, idx_this])
        self.idx_other = np.concatenate([self.idx_other, idx_other])
        self.points_this = np.vstack([self.points_this, points_this])
        self.points_other = np.vstack([self.points_other, points_other])
        return n

    def record_layer(self, layer: str, considered: int, matched: int) -> None:
        stats = self.layer_stats.setdefault(layer, LayerMatchStats())
        stats.considered += int(considered)
        stats.matched += int(matched)

    def correspondences_ratio(self, layer: str) -> float:
        """Fraction of the queried primitives of ``layer`` that found a pairing."""
        stats = self.layer_stats.get(layer)
        if stats is None or stats.considered == 0:
            return 0.0
        return min(1.0, stats.matched / stats.considered)

    def merge(self, other: "Pairings") -> "Pairings":
        """Append all correspondences of ``other`` to this set (in place)."""
        n_before = self.num_point_pairs
        self.add_point_pairs(other.idx_this, other.idx_other, other.points_this, other.points_other)
        self.paired_planes.extend(other.paired_planes)
        self.paired_pt2pl.extend(other.paired_pt2pl)

        # Weight runs cover a prefix of the pairs; uncovered pairs weigh 1.0
        if other.point_weights:
            self._pad_weights(n_before)
            self.point_weights.extend(other.point_weights)

        for layer, stats in other.layer_stats.items():
            self.record_layer(layer, stats.considered, stats.matched)
        return self

    def _pad_weights(self, n_before: int) -> None:
        covered = sum(n for n, _ in self.point_weights)
        if covered < n_before:
            self.point_weights.append((n_before - covered, 1.0))

    def point_pair_weights(self) -> np.ndarray:
        """Per-pair weights expanded from ``point_weights`` (1.0 where unspecified)."""
        n = self.num_point_pairs
        w = np.ones(n, dtype=np.float64)
        start = 0
        for count, weight in self.point_weights:
            end = min(n, start + count)
            w[start:end] = weight
            start = end
        return w

    def __repr__(self) -> str:
        return (
            f"Pairings(points={self.num_point_pairs}, planes={len(self.paired_planes)}, "
            f"pt2pl={len(self.paired_pt2pl)})"
        )
