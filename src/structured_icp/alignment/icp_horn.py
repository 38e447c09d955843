"""
ICP with a closed-form pose estimate at each iteration (Horn's method on
layered clouds).
"""

from __future__ import annotations

from ..utils.config import ICPParameters
from ..utils.logging import setup_logger
from .icp_base import ICPBase, ICPState, IterationResult
from .optimal_tf import optimal_tf_horn

logger = setup_logger(__name__)

# Fewer point pairs leave the rotation ill-defined
MIN_POINT_PAIRS = 3


class ICPHornMultiCloud(ICPBase):
    """
    ICP registration for clouds split in layers, solving each iteration in
    closed form from the current pairings.
    """

    def iterate(self, state: ICPState, params: ICPParameters) -> IterationResult:
        state.current_pairings = self.run_matchers(state)
        pairings = state.current_pairings

        if pairings.empty() or pairings.num_point_pairs < MIN_POINT_PAIRS:
            return IterationResult(success=False)

        res = optimal_tf_horn(pairings, params.pairings_weight_parameters)
        if len(res.outliers):
            logger.debug("Robust kernel flagged %d/%d point pairs as outliers.",
                         len(res.outliers), pairings.num_point_pairs)

        return IterationResult(
            success=True,
            new_solution=res.optimal_pose,
            new_scale=res.optimal_scale if params.pairings_weight_parameters.use_scale_estimation
            else state.current_scale,
        )
