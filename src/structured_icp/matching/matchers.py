"""
Matcher Implementations

Concrete matchers:
- PointsDistanceThresholdMatcher: nearest neighbors within a distance threshold
- PointsInlierRatioMatcher: the closest fraction of nearest-neighbor pairs
- PlanesMatcher: plane patches by centroid distance and normal angle
- PointToPlaneMatcher: local points against nearby reference planes
"""

from __future__ import annotations

from typing import List, Mapping, Optional

import numpy as np

from ..clouds.layered_cloud import LayeredCloud, PT_LAYER_RAW
from ..utils.logging import setup_logger
from ..utils.poses import rotate_vectors, transform_points
from .matcher import (
    LayerMatchingParams,
    Matcher,
    PointsMatcherBase,
    transform_local_to_global,
)
from .pairings import MatchedPlane, Pairings, PointPlanePair

logger = setup_logger(__name__)

PLANES_STATS_KEY = "planes"


def _boxes_overlap(min_a, max_a, min_b, max_b, margin: float) -> bool:
    return bool(np.all(min_a - margin <= max_b) and np.all(min_b <= max_a + margin))


class PointsDistanceThresholdMatcher(PointsMatcherBase):
    """
    Pair each local point with its nearest global point if closer than a threshold.

    Attributes:
        threshold: Distance threshold (meters). If None, the per-layer
            threshold derived by the ICP controller is used.
    """

    def __init__(self, threshold: Optional[float] = None, **kwargs):
        super().__init__(**kwargs)
        self.threshold = threshold

    def default_layer_params(self) -> LayerMatchingParams:
        return LayerMatchingParams(
            max_dist_for_correspondence=float(self.threshold) if self.threshold is not None else 1.0
        )

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
        tl = self._local_points(lc_points, local_pose, params)
        n_query = len(tl.points)
        if n_query == 0 or len(gl_points) == 0:
            out.record_layer(name, n_query, 0)
            return

        max_dist = float(self.threshold) if self.threshold is not None else params.max_dist_for_correspondence
        ranges = np.linalg.norm(tl.points - local_pose[:3, 3], axis=1)
        thresholds = max_dist + params.max_angular_dist_for_correspondence * ranges

        if not _boxes_overlap(
            tl.local_min, tl.local_max, gl_points.min(axis=0), gl_points.max(axis=0), float(thresholds.max())
        ):
            logger.debug("Layer '%s': local and global bounding boxes do not overlap.", name)
            out.record_layer(name, n_query, 0)
            return

        nbrs = pc_global.nearest_neighbors(name)

        if params.only_keep_closest:
            distances, indices = nbrs.kneighbors(tl.points, n_neighbors=1)
            distances = distances.ravel()
            indices = indices.ravel()
            mask = distances < thresholds
            idx_this = indices[mask]
            idx_other = tl.idxs[mask]
            matched = int(np.count_nonzero(mask))
        else:
            dist_lists, ind_lists = nbrs.radius_neighbors(
                tl.points, radius=float(thresholds.max()), return_distance=True
            )
            this_parts: List[np.ndarray] = []
            other_parts: List[np.ndarray] = []
            matched = 0
            for k, (d, i) in enumerate(zip(dist_lists, ind_lists)):
                keep = i[d < thresholds[k]]
                if len(keep) == 0:
                    continue
                matched += 1
                this_parts.append(keep)
                other_parts.append(np.full(len(keep), tl.idxs[k], dtype=np.int64))
            idx_this = np.concatenate(this_parts) if this_parts else np.empty(0, dtype=np.int64)
            idx_other = np.concatenate(other_parts) if other_parts else np.empty(0, dtype=np.int64)

        out.add_point_pairs(idx_this, idx_other, gl_points[idx_this], lc_points[idx_other])
        out.record_layer(name, n_query, matched)


class PointsInlierRatioMatcher(PointsMatcherBase):
    """
    Pair each local point with its nearest global point, keeping only the
    closest ``inliers_ratio`` fraction of all candidate pairs of the layer.
    """

    def __init__(self, inliers_ratio: float = 0.5, **kwargs):
        super().__init__(**kwargs)
        self.inliers_ratio = inliers_ratio

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
        if not 0.0 < float(self.inliers_ratio) <= 1.0:
            raise ValueError(f"inliers_ratio must be in (0, 1], got {self.inliers_ratio}")

        tl = self._local_points(lc_points, local_pose, params)
        n_query = len(tl.points)
        if n_query == 0 or len(gl_points) == 0:
            out.record_layer(name, n_query, 0)
            return

        distances, indices = pc_global.nearest_neighbors(name).kneighbors(tl.points, n_neighbors=1)
        distances = distances.ravel()
        indices = indices.ravel()

        n_keep = int(np.ceil(self.inliers_ratio * n_query))
        # Stable sort keeps ties in query order, for reproducible outputs
        order = np.argsort(distances, kind="stable")[:n_keep]
        idx_this = indices[order]
        idx_other = tl.idxs[order]

        out.add_point_pairs(idx_this, idx_other, gl_points[idx_this], lc_points[idx_other])
        out.record_layer(name, n_query, n_keep)


class PlanesMatcher(Matcher):
    """
    Pair plane patches whose centroids are close and whose normals agree.

    Attributes:
        distance_threshold: Maximum centroid distance (meters).
        angle_threshold: Maximum angle between normals (radians).
    """

    def __init__(self, distance_threshold: float = 1.0, angle_threshold: float = np.deg2rad(10.0)):
        self.distance_threshold = distance_threshold
        self.angle_threshold = angle_threshold

    def match(
        self,
        pc_global: LayeredCloud,
        pc_local: LayeredCloud,
        local_pose: np.ndarray,
        layer_params: Optional[Mapping[str, LayerMatchingParams]] = None,
    ) -> Pairings:
        out = Pairings()
        if not pc_local.planes:
            return out
        if not pc_global.planes:
            out.record_layer(PLANES_STATS_KEY, len(pc_local.planes), 0)
            return out

        centroids = transform_points(pc_local.plane_centroids, local_pose)
        normals = rotate_vectors(pc_local.plane_normals, local_pose)

        distances, indices = pc_global.planes_nearest_neighbors().kneighbors(centroids, n_neighbors=1)
        distances = distances.ravel()
        indices = indices.ravel()

        global_normals = pc_global.plane_normals[indices]
        cos_ang = np.clip(np.sum(global_normals * normals, axis=1), -1.0, 1.0)
        angles = np.arccos(cos_ang)

        mask = (distances < float(self.distance_threshold)) & (angles < float(self.angle_threshold))
        for k in np.flatnonzero(mask):
            out.paired_planes.append(
                MatchedPlane(p_this=pc_global.planes[indices[k]], p_other=pc_local.planes[k])
            )
        out.record_layer(PLANES_STATS_KEY, len(pc_local.planes), int(np.count_nonzero(mask)))
        return out


class PointToPlaneMatcher(Matcher):
    """
    Pair local points with the nearest reference plane patch.

    A point is paired with the plane whose centroid is nearest, provided the
    centroid lies within ``max_centroid_distance`` and the point is closer
    than ``distance_threshold`` to the plane itself.
    """

    def __init__(
        self,
        layers: Optional[List[str]] = None,
        distance_threshold: float = 0.5,
        max_centroid_distance: float = 5.0,
        max_local_points: int = 0,
        local_points_sample_seed: Optional[int] = None,
    ):
        self.layers = list(layers) if layers is not None else [PT_LAYER_RAW]
        self.distance_threshold = distance_threshold
        self.max_centroid_distance = max_centroid_distance
        self.max_local_points = max_local_points
        self.local_points_sample_seed = local_points_sample_seed

    def match(
        self,
        pc_global: LayeredCloud,
        pc_local: LayeredCloud,
        local_pose: np.ndarray,
        layer_params: Optional[Mapping[str, LayerMatchingParams]] = None,
    ) -> Pairings:
        out = Pairings()
        if not pc_global.planes:
            return out

        nbrs = pc_global.planes_nearest_neighbors()
        global_centroids = pc_global.plane_centroids
        global_normals = pc_global.plane_normals

        for name in self.layers:
            lc_points = pc_local.point_layers.get(name)
            if lc_points is None or len(lc_points) == 0:
                continue
            tl = transform_local_to_global(
                lc_points, local_pose, int(self.max_local_points or 0), self.local_points_sample_seed
            )
            distances, indices = nbrs.kneighbors(tl.points, n_neighbors=1)
            distances = distances.ravel()
            indices = indices.ravel()

            signed = np.sum(global_normals[indices] * (tl.points - global_centroids[indices]), axis=1)
            mask = (distances < float(self.max_centroid_distance)) & (
                np.abs(signed) < float(self.distance_threshold)
            )
            for k in np.flatnonzero(mask):
                out.paired_pt2pl.append(
                    PointPlanePair(
                        pl_this=pc_global.planes[indices[k]],
                        pt_other=np.array(lc_points[tl.idxs[k]], dtype=np.float64),
                    )
                )
            out.record_layer(f"pt2pl/{name}", len(tl.points), int(np.count_nonzero(mask)))
        return out


__all__ = [
    "PLANES_STATS_KEY",
    "PointsDistanceThresholdMatcher",
    "PointsInlierRatioMatcher",
    "PlanesMatcher",
    "PointToPlaneMatcher",
]
