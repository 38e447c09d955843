"""
Matcher registry: creates matchers from ``{"class": name, "params": {...}}``
descriptors, as found in the ``icp.matchers`` section of the config.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from ..utils.config import MatcherConfig
from ..utils.logging import setup_logger
from .matcher import Matcher
from .matchers import (
    PlanesMatcher,
    PointToPlaneMatcher,
    PointsDistanceThresholdMatcher,
    PointsInlierRatioMatcher,
)

logger = setup_logger(__name__)

MATCHER_REGISTRY: Dict[str, Callable[[], Matcher]] = {
    "points_distance_threshold": PointsDistanceThresholdMatcher,
    "points_inlier_ratio": PointsInlierRatioMatcher,
    "planes_to_planes": PlanesMatcher,
    "points_to_planes": PointToPlaneMatcher,
}


def register_matcher(name: str, factory: Callable[[], Matcher]) -> None:
    """Register a matcher factory under ``name`` (replacing any previous one)."""
    MATCHER_REGISTRY[name] = factory


def create_matcher(name: str, params: Optional[Mapping[str, Any]] = None) -> Matcher:
    """
    Instantiate a registered matcher and configure it.

    Raises:
        KeyError: If ``name`` is not registered.
        ValueError: If ``params`` holds unknown parameters.
    """
    try:
        factory = MATCHER_REGISTRY[name]
    except KeyError:
        raise KeyError(
            f"Unknown matcher '{name}'. Available: {sorted(MATCHER_REGISTRY)}"
        ) from None
    matcher = factory()
    if params:
        matcher.initialize(params)
    logger.debug("Created matcher '%s' with params %s", name, dict(params or {}))
    return matcher


def initialize_matchers(
    descriptors: Iterable[Union[MatcherConfig, Mapping[str, Any]]],
) -> List[Matcher]:
    """Create matchers from a sequence of descriptors (config models or plain dicts)."""
    matchers: List[Matcher] = []
    for desc in descriptors:
        if not isinstance(desc, MatcherConfig):
            desc = MatcherConfig.model_validate(dict(desc))
        matchers.append(create_matcher(desc.class_name, desc.params))
    return matchers
