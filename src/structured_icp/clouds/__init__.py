"""
Layered Point Cloud Module

Data structures for point clouds split into named layers of points and
plane patches, with per-layer nearest-neighbor indices.
"""

from .layered_cloud import (
    LayeredCloud,
    PlanePatch,
    PT_LAYER_RAW,
    PT_LAYER_PLANE_CENTROIDS,
)

__all__ = [
    "LayeredCloud",
    "PlanePatch",
    "PT_LAYER_RAW",
    "PT_LAYER_PLANE_CENTROIDS",
]
