"""
Utility Functions Module

Common utilities used across the structured-icp package:
- Logging setup
- Typed configuration and YAML loading
- Rigid transform helpers (SE(3) exponential/logarithm maps)
"""

from .logging import setup_logger, configure_package_logging
from .config import (
    AppConfig,
    ICPConfig,
    ICPParameters,
    LoggingConfig,
    MatcherConfig,
    PairWeights,
    load_config,
)
from .poses import (
    as_pose_matrix,
    inverse_pose,
    pose_from_xyzypr,
    rotation_error,
    se3_exp,
    se3_log,
    transform_points,
)

__all__ = [
    "setup_logger",
    "configure_package_logging",
    "AppConfig",
    "ICPConfig",
    "ICPParameters",
    "LoggingConfig",
    "MatcherConfig",
    "PairWeights",
    "load_config",
    "as_pose_matrix",
    "inverse_pose",
    "pose_from_xyzypr",
    "rotation_error",
    "se3_exp",
    "se3_log",
    "transform_points",
]
