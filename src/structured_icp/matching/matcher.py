"""
Matcher Interfaces

A matcher looks for correspondences between a reference (global) layered
cloud and a moving (local) one, given a candidate pose of the local cloud in
the global frame. Matchers are configured from plain parameter maps so that
they can be created by name from a config file.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional
import time

import numpy as np

from ..clouds.layered_cloud import LayeredCloud
from ..utils.poses import transform_points
from .pairings import Pairings


@dataclass
class LayerMatchingParams:
    """
    Matching parameters for one point layer, derived once per alignment.

    Attributes:
        max_dist_for_correspondence: Base distance threshold (meters).
        max_angular_dist_for_correspondence: Angular threshold (radians). The
            effective threshold for a point at range ``r`` from the local
            cloud origin is ``max_dist + max_ang * r``.
        only_keep_closest: Keep only the nearest global point per local point.
        decimation: Use every ``decimation``-th local point.
        max_pairs: When > 0, the decimation is recomputed from the number of
            local points actually selected so that about this many are queried.
        weight: Weight of the point pairs of this layer in the solvers.
    """

    max_dist_for_correspondence: float
    max_angular_dist_for_correspondence: float = 0.0
    only_keep_closest: bool = True
    decimation: int = 1
    max_pairs: int = 0
    weight: float = 1.0


@dataclass
class TransformedLocalPointCloud:
    points: np.ndarray
    idxs: np.ndarray
    local_min: np.ndarray
    local_max: np.ndarray


def transform_local_to_global(
    points: np.ndarray,
    local_pose: np.ndarray,
    max_local_points: int = 0,
    local_points_sample_seed: Optional[int] = None,
) -> TransformedLocalPointCloud:
    """
    Transform local points into the global frame, optionally on a random subset.

    Args:
        points: Local points (N x 3).
        local_pose: 4x4 pose of the local cloud in the global frame.
        max_local_points: If > 0 and N exceeds it, draw this many points uniformly
            at random (without replacement).
        local_points_sample_seed: Seed for the random subset. ``None`` uses a
            time-derived seed, so the subset is not reproducible.

    Returns:
        TransformedLocalPointCloud with the transformed points, the indices of
        the local points used, and their bounding box.
    """
    n = len(points)
    if max_local_points <= 0 or n <= max_local_points:
        idxs = np.arange(n, dtype=np.int64)
    else:
        seed = local_points_sample_seed if local_points_sample_seed is not None else time.time_ns()
        rng = np.random.default_rng(seed)
        idxs = rng.permutation(n)[:max_local_points].astype(np.int64)

    transformed = transform_points(points[idxs], local_pose)
    if len(transformed):
        local_min = transformed.min(axis=0)
        local_max = transformed.max(axis=0)
    else:
        local_min = np.full(3, np.inf)
        local_max = np.full(3, -np.inf)
    return TransformedLocalPointCloud(transformed, idxs, local_min, local_max)


class Matcher(ABC):
    """Common interface of all matchers."""

    def initialize(self, params: Mapping[str, Any]) -> None:
        """
        Configure the matcher from a parameter map.

        Raises:
            ValueError: On parameters the matcher does not know.
        """
        for key, value in dict(params).items():
            if key.startswith("_") or key not in vars(self):
                raise ValueError(f"{type(self).__name__}: unknown parameter '{key}'")
            setattr(self, key, value)

    @abstractmethod
    def match(
        self,
        pc_global: LayeredCloud,
        pc_local: LayeredCloud,
        local_pose: np.ndarray,
        layer_params: Optional[Mapping[str, LayerMatchingParams]] = None,
    ) -> Pairings:
        """
        Find correspondences for the local cloud placed at ``local_pose``.

        Args:
            pc_global: Reference cloud.
            pc_local: Moving cloud, in its own frame.
            local_pose: 4x4 pose of the moving cloud in the reference frame.
            layer_params: Optional per-layer parameters derived by the ICP
                controller. When given, point layers missing from it are skipped.

        Returns:
            A new Pairings instance.
        """


class PointsMatcherBase(Matcher):
    """
    Base class for matchers working layer by layer on point layers.

    Attributes:
        weight_pt2pt_layers: Optional layer -> weight map. When not empty, only
            the listed layers are matched and a ``(count, weight)`` entry is
            recorded for each layer that produced pairings. Otherwise the
            weight comes from the controller's ``layer_params``, if given.
        max_local_points: Maximum number of local points per layer (0 = all).
        local_points_sample_seed: Seed for the random subset of local points.
    """

    def __init__(
        self,
        weight_pt2pt_layers: Optional[Dict[str, float]] = None,
        max_local_points: int = 0,
        local_points_sample_seed: Optional[int] = None,
    ):
        self.weight_pt2pt_layers: Dict[str, float] = dict(weight_pt2pt_layers or {})
        self.max_local_points = max_local_points
        self.local_points_sample_seed = local_points_sample_seed

    def initialize(self, params: Mapping[str, Any]) -> None:
        params = dict(params)
        weights = params.pop("weight_pt2pt_layers", None)
        super().initialize(params)
        if weights is not None:
            self.weight_pt2pt_layers = {str(k): float(v) for k, v in dict(weights).items()}

    def default_layer_params(self) -> LayerMatchingParams:
        return LayerMatchingParams(max_dist_for_correspondence=1.0)

    def match(
        self,
        pc_global: LayeredCloud,
        pc_local: LayeredCloud,
        local_pose: np.ndarray,
        layer_params: Optional[Mapping[str, LayerMatchingParams]] = None,
    ) -> Pairings:
        out = Pairings()

        for name, gl_points in pc_global.point_layers.items():
            # If we have weights and this layer is not listed, skip it
            if self.weight_pt2pt_layers and name not in self.weight_pt2pt_layers:
                continue
            lc_points = pc_local.point_layers.get(name)
            if lc_points is None:
                continue
            if layer_params is not None:
                if name not in layer_params:
                    continue
                params = layer_params[name]
            else:
                params = self.default_layer_params()

            n_before = out.num_point_pairs
            self._match_one_layer(name, pc_global, gl_points, lc_points, local_pose, params, out)
            n_after = out.num_point_pairs

            if n_after != n_before:
                if self.weight_pt2pt_layers:
                    out.point_weights.append((n_after - n_before, self.weight_pt2pt_layers[name]))
                elif layer_params is not None:
                    out.point_weights.append((n_after - n_before, params.weight))

        return out

    def _local_points(
        self, lc_points: np.ndarray, local_pose: np.ndarray, params: LayerMatchingParams
    ) -> TransformedLocalPointCloud:
        tl = transform_local_to_global(
            lc_points, local_pose, int(self.max_local_points or 0), self.local_points_sample_seed
        )
        if params.max_pairs > 0:
            step = max(1, int(len(tl.points) / float(params.max_pairs)))
        else:
            step = max(1, int(params.decimation))
        if step > 1:
            tl = TransformedLocalPointCloud(tl.points[::step], tl.idxs[::step], tl.local_min, tl.local_max)
        return tl

    @abstractmethod
    def _match_one_layer(
        self,
        name: str,
        pc_global: LayeredCloud,
        gl_points: np.ndarray,
        lc_points: np.ndarray,
        local_pose: np.ndarray,
        params: LayerMatchingParams,
        out: Pairings,
    ) -> None:
        """Append the pairings of one layer to ``out``."""
