"""
Layered Point Clouds

A layered ("structured") point cloud groups its primitives into named
layers: raw points, plane centroids, and plane patches. Alignment only ever
reads these clouds; the nearest-neighbor indices attached to each layer are
built lazily on first use and cached for later queries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

import numpy as np
from sklearn.neighbors import NearestNeighbors

from ..utils.logging import setup_logger

logger = setup_logger(__name__)

PT_LAYER_RAW = "raw"
PT_LAYER_PLANE_CENTROIDS = "plane_centroids"


def _as_points(points: np.ndarray, name: str) -> np.ndarray:
    arr = np.array(points, dtype=np.float64, copy=True)
    if arr.size == 0:
        arr = np.empty((0, 3), dtype=np.float64)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError(f"Layer '{name}' must be an Nx3 array, got shape {arr.shape}")
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class PlanePatch:
    """A planar patch given by its centroid and unit normal."""

    centroid: np.ndarray
    normal: np.ndarray

    def __post_init__(self):
        c = np.asarray(self.centroid, dtype=np.float64).reshape(3)
        n = np.asarray(self.normal, dtype=np.float64).reshape(3)
        norm = float(np.linalg.norm(n))
        if norm == 0.0 or not np.isfinite(norm):
            raise ValueError("Plane normal must be a finite, non-zero vector")
        object.__setattr__(self, "centroid", c)
        object.__setattr__(self, "normal", n / norm)

    def signed_distance(self, point: np.ndarray) -> float:
        return float(self.normal @ (np.asarray(point, dtype=np.float64) - self.centroid))


@dataclass(eq=False)
class LayeredCloud:
    """
    Point cloud partitioned into named layers.

    Attributes:
        point_layers: Mapping layer name -> (N, 3) array of points.
        planes: Plane patches of the cloud. When given and no
            ``plane_centroids`` layer is provided, that layer is derived from
            the patch centroids.

    Example:
        >>> pc = LayeredCloud({"raw": np.random.rand(100, 3)})
        >>> pc.layer_names
        {'raw'}
    """

    point_layers: Dict[str, np.ndarray] = field(default_factory=dict)
    planes: List[PlanePatch] = field(default_factory=list)
    _nn_cache: Dict[str, NearestNeighbors] = field(default_factory=dict, init=False, repr=False)
    _planes_nn: Optional[NearestNeighbors] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        layers = {name: _as_points(pts, name) for name, pts in dict(self.point_layers).items()}
        planes = list(self.planes)
        for p in planes:
            if not isinstance(p, PlanePatch):
                raise ValueError(f"Expected PlanePatch instances, got {type(p).__name__}")
        if planes and PT_LAYER_PLANE_CENTROIDS not in layers:
            layers[PT_LAYER_PLANE_CENTROIDS] = _as_points(
                np.array([p.centroid for p in planes]), PT_LAYER_PLANE_CENTROIDS
            )
        self.point_layers = layers
        self.planes = planes

    @classmethod
    def from_points(cls, points: np.ndarray, *, layer: str = PT_LAYER_RAW) -> "LayeredCloud":
        return cls({layer: points})

    @classmethod
    def from_layers(
        cls,
        layers: Mapping[str, np.ndarray],
        planes: Optional[Iterable[PlanePatch]] = None,
    ) -> "LayeredCloud":
        return cls(dict(layers), list(planes or []))

    # ------------------------ Queries ------------------------
    @property
    def layer_names(self) -> set:
        return set(self.point_layers)

    def layer_size(self, name: str) -> int:
        pts = self.point_layers.get(name)
        return 0 if pts is None else int(len(pts))

    def size(self) -> int:
        """Total number of points over all layers."""
        return int(sum(len(p) for p in self.point_layers.values()))

    def empty(self) -> bool:
        return self.size() == 0 and not self.planes

    @property
    def plane_centroids(self) -> np.ndarray:
        if not self.planes:
            return np.empty((0, 3), dtype=np.float64)
        return np.array([p.centroid for p in self.planes])

    @property
    def plane_normals(self) -> np.ndarray:
        if not self.planes:
            return np.empty((0, 3), dtype=np.float64)
        return np.array([p.normal for p in self.planes])

    # ------------------------ Spatial index ------------------------
    def nearest_neighbors(self, layer: str) -> NearestNeighbors:
        """
        Return a fitted k-d tree over one point layer.

        Raises:
            KeyError: If the layer does not exist.
            ValueError: If the layer is empty.
        """
        nbrs = self._nn_cache.get(layer)
        if nbrs is None:
            pts = self.point_layers[layer]
            if len(pts) == 0:
                raise ValueError(f"Cannot index empty layer '{layer}'")
            logger.debug("Building KD-Tree for layer '%s' (%d points).", layer, len(pts))
            nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(pts.copy())
            self._nn_cache[layer] = nbrs
        return nbrs

    def planes_nearest_neighbors(self) -> NearestNeighbors:
        """Return a fitted k-d tree over the plane centroids."""
        if self._planes_nn is None:
            if not self.planes:
                raise ValueError("Cannot index planes of a cloud without planes")
            self._planes_nn = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(
                self.plane_centroids
            )
        return self._planes_nn
