"""
Correspondence Matching Module

Pairing containers and the matchers that fill them: point-to-point
(distance threshold, inlier ratio), plane-to-plane and point-to-plane.
Matchers can be created by name through the matcher registry.
"""

from .pairings import Pairings, MatchedPlane, PointPlanePair, LayerMatchStats
from .matcher import (
    Matcher,
    PointsMatcherBase,
    LayerMatchingParams,
    transform_local_to_global,
)
from .matchers import (
    PointsDistanceThresholdMatcher,
    PointsInlierRatioMatcher,
    PlanesMatcher,
    PointToPlaneMatcher,
)
from .registry import (
    MATCHER_REGISTRY,
    register_matcher,
    create_matcher,
    initialize_matchers,
)

__all__ = [
    "Pairings",
    "MatchedPlane",
    "PointPlanePair",
    "LayerMatchStats",
    "Matcher",
    "PointsMatcherBase",
    "LayerMatchingParams",
    "transform_local_to_global",
    "PointsDistanceThresholdMatcher",
    "PointsInlierRatioMatcher",
    "PlanesMatcher",
    "PointToPlaneMatcher",
    "MATCHER_REGISTRY",
    "register_matcher",
    "create_matcher",
    "initialize_matchers",
]
