"""
Spatial Alignment Module

ICP registration of layered point clouds. ``ICPBase`` drives the iterations;
``ICPHornMultiCloud`` solves each iteration in closed form and
``ICPGaussNewton`` with a linearized least-squares step.
"""

from .results import IterTermReason, Results
from .icp_base import ICPBase, ICPState, IterationResult, ICPPreconditionError
from .optimal_tf import OptimalTFResult, optimal_tf_horn
from .icp_horn import ICPHornMultiCloud
from .icp_gauss_newton import ICPGaussNewton
from .registry import ICP_REGISTRY, create_icp, create_icp_from_config

__all__ = [
    "IterTermReason",
    "Results",
    "ICPBase",
    "ICPState",
    "IterationResult",
    "ICPPreconditionError",
    "OptimalTFResult",
    "optimal_tf_horn",
    "ICPHornMultiCloud",
    "ICPGaussNewton",
    "ICP_REGISTRY",
    "create_icp",
    "create_icp_from_config",
]
