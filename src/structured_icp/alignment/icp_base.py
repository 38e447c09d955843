"""
ICP Base Implementation

Iteration control shared by all ICP variants. ``ICPBase.align`` validates the
inputs, derives per-layer matching parameters and then repeatedly calls the
variant-specific ``iterate`` until the pose stops changing, no pairings can be
found, or the maximum number of iterations is reached.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
import time

import numpy as np

from ..clouds.layered_cloud import LayeredCloud, PT_LAYER_PLANE_CENTROIDS
from ..matching.matcher import LayerMatchingParams, Matcher
from ..matching.pairings import Pairings
from ..matching.registry import initialize_matchers
from ..utils.config import ICPParameters, MatcherConfig
from ..utils.logging import setup_logger
from ..utils.poses import PoseLike, as_pose_matrix, translation_rotation_step, with_scale
from .results import IterTermReason, Results

logger = setup_logger(__name__)

# Extra distance allowed when pairing plane centroids, which rarely coincide
PLANE_CENTROIDS_EXTRA_DIST = 2.0


class ICPPreconditionError(ValueError):
    """Raised before iterating when the inputs cannot be aligned at all."""


@dataclass(eq=False)
class ICPState:
    """
    Mutable state of one ``align`` call.

    ``pc1`` and ``pc2`` are borrowed from the caller and must not be kept
    after the call returns.
    """

    pc1: LayeredCloud
    pc2: LayeredCloud
    current_solution: np.ndarray = field(default_factory=lambda: np.eye(4))
    current_scale: float = 1.0
    layer_of_largest_pc: str = ""
    layer_params: Dict[str, LayerMatchingParams] = field(default_factory=dict)
    current_pairings: Pairings = field(default_factory=Pairings)


@dataclass(eq=False)
class IterationResult:
    success: bool = False
    new_solution: Optional[np.ndarray] = None
    new_scale: float = 1.0


class ICPBase(ABC):
    """
    Common driver of the ICP algorithms.

    Subclasses implement ``iterate``: run the matchers for the current pose
    estimate and propose a new pose, or report failure when the pairings do
    not constrain the problem.
    """

    def __init__(self, matchers: Optional[Iterable[Matcher]] = None):
        self.matchers: List[Matcher] = list(matchers or [])

    def initialize_matchers(
        self, descriptors: Iterable[Union[MatcherConfig, Mapping[str, Any]]]
    ) -> None:
        """Replace the matchers by the ones described in ``descriptors``."""
        self.matchers = initialize_matchers(descriptors)

    # ------------------------ Main API ------------------------
    def align(
        self,
        pc1: LayeredCloud,
        pc2: LayeredCloud,
        init_guess_m2_wrt_m1: Optional[PoseLike] = None,
        params: Optional[ICPParameters] = None,
    ) -> Results:
        """
        Register two layered clouds.

        Args:
            pc1: Reference cloud.
            pc2: Moving cloud.
            init_guess_m2_wrt_m1: Initial pose of pc2 with respect to pc1, as a
                4x4 matrix or ``(x, y, z, yaw, pitch, roll)``. Identity if None.
            params: ICP parameters (defaults if None).

        Returns:
            Results with the pose of pc2 with respect to pc1.

        Raises:
            ICPPreconditionError: If the clouds cannot be aligned at all.
        """
        if params is None:
            params = ICPParameters()
        init_pose = np.eye(4) if init_guess_m2_wrt_m1 is None else as_pose_matrix(init_guess_m2_wrt_m1)

        self._check_preconditions(pc1, pc2, params)

        logger.info(
            "Starting %s with %d reference and %d moving points (%d/%d planes).",
            type(self).__name__,
            pc1.size(),
            pc2.size(),
            len(pc1.planes),
            len(pc2.planes),
        )
        icp_start = time.time()

        result = Results()
        state = ICPState(pc1=pc1, pc2=pc2, current_solution=init_pose)
        prev_solution = state.current_solution.copy()

        self.prepare_matching_params(state, params)

        for iteration in range(params.max_iterations):
            iter_result = self.iterate(state, params)

            if not iter_result.success:
                result.termination_reason = IterTermReason.NO_PAIRINGS
                result.goodness = 0.0
                logger.warning(
                    "ICP iteration %d: not enough pairings (%r). Stopping.",
                    iteration + 1,
                    state.current_pairings,
                )
                break

            state.current_solution = iter_result.new_solution
            state.current_scale = iter_result.new_scale
            result.n_iterations = iteration + 1

            delta_xyz, delta_rot = translation_rotation_step(prev_solution, state.current_solution)
            logger.debug(
                "Iteration %d: %r, |Δt|=%.6e, Δθ=%.6e rad",
                iteration + 1,
                state.current_pairings,
                delta_xyz,
                delta_rot,
            )

            if delta_xyz < params.min_abs_step_trans and delta_rot < params.min_abs_step_rot:
                result.termination_reason = IterTermReason.STALLED
                break

            prev_solution = state.current_solution.copy()
        else:
            result.termination_reason = IterTermReason.MAX_ITERATIONS

        if result.termination_reason != IterTermReason.NO_PAIRINGS and state.layer_of_largest_pc:
            result.goodness = state.current_pairings.correspondences_ratio(state.layer_of_largest_pc)

        result.optimal_tf = state.current_solution
        result.optimal_scale = state.current_scale

        logger.info(
            "ICP finished in %.4f s: %s after %d iterations, goodness %.3f.",
            time.time() - icp_start,
            result.termination_reason.value,
            result.n_iterations,
            result.goodness,
        )
        return result

    # ------------------------ Helpers ------------------------
    def run_matchers(self, state: ICPState) -> Pairings:
        """Run every matcher for the current pose estimate and merge their pairings."""
        local_pose = with_scale(state.current_solution, state.current_scale)
        pairings = Pairings()
        for matcher in self.matchers:
            pairings.merge(matcher.match(state.pc1, state.pc2, local_pose, state.layer_params))
        return pairings

    def prepare_matching_params(self, state: ICPState, params: ICPParameters) -> None:
        """
        Derive the matching parameters of each layer, including the layer
        weight used by the solvers, and find the largest weighted layer of the
        reference cloud.
        """
        point_count_largest = 0
        state.layer_params = {}

        for name, pts in state.pc1.point_layers.items():
            if name == PT_LAYER_PLANE_CENTROIDS:
                state.layer_params[name] = LayerMatchingParams(
                    max_dist_for_correspondence=params.threshold_dist + PLANE_CENTROIDS_EXTRA_DIST,
                    max_angular_dist_for_correspondence=0.0,
                    only_keep_closest=True,
                    decimation=1,
                    weight=float(params.weight_pt2pt_layers.get(name, 1.0)),
                )
                continue

            if name not in params.weight_pt2pt_layers:
                continue

            if len(pts) > point_count_largest:
                point_count_largest = len(pts)
                state.layer_of_largest_pc = name

            state.layer_params[name] = LayerMatchingParams(
                max_dist_for_correspondence=params.threshold_dist,
                max_angular_dist_for_correspondence=params.threshold_ang,
                only_keep_closest=True,
                decimation=max(1, int(len(pts) / float(params.max_pairs_per_layer))),
                max_pairs=params.max_pairs_per_layer,
                weight=float(params.weight_pt2pt_layers[name]),
            )

    def _check_preconditions(self, pc1: LayeredCloud, pc2: LayeredCloud, params: ICPParameters) -> None:
        if pc1.layer_names != pc2.layer_names:
            raise ICPPreconditionError(
                f"Point layers differ: {sorted(pc1.layer_names)} vs {sorted(pc2.layer_names)}"
            )
        if not pc1.point_layers and not (pc1.planes and pc2.planes):
            raise ICPPreconditionError("Clouds have neither point layers nor planes on both sides")

        count1 = sum(pc1.layer_size(n) for n in params.weight_pt2pt_layers)
        count2 = sum(pc2.layer_size(n) for n in params.weight_pt2pt_layers)
        if count1 == 0 and not pc1.planes:
            raise ICPPreconditionError("Reference cloud has no weighted points and no planes")
        if count2 == 0 and not pc2.planes:
            raise ICPPreconditionError("Moving cloud has no weighted points and no planes")

        if not self.matchers:
            raise ICPPreconditionError("No matchers configured")

    @abstractmethod
    def iterate(self, state: ICPState, params: ICPParameters) -> IterationResult:
        """
        Run one ICP iteration: find pairings for ``state.current_solution``
        (stored in ``state.current_pairings``) and propose a new pose.
        """
