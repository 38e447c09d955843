"""
Closed-form Pose Estimation

Weighted Horn/Umeyama estimate of the pose that best maps the "other" side of
a set of pairings onto the "this" side. Point pairs constrain rotation and
translation; plane pairs add their normals as extra direction constraints on
the rotation. An optional robust kernel re-weights point pairs by their
residual (iteratively re-weighted least squares).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np

from ..matching.pairings import Pairings
from ..utils.config import PairWeights
from ..utils.logging import setup_logger

logger = setup_logger(__name__)

# Tuning constants for ~95% efficiency under Gaussian noise
HUBER_K = 1.345
TUKEY_C = 4.685
# MAD to standard deviation for Gaussian residuals
MAD_TO_SIGMA = 1.4826
OUTLIER_WEIGHT = 0.1


@dataclass(eq=False)
class OptimalTFResult:
    optimal_pose: np.ndarray = field(default_factory=lambda: np.eye(4))
    optimal_scale: float = 1.0
    # Indices of point pairs the robust kernel considered outliers
    outliers: np.ndarray = field(default_factory=lambda: np.empty(0, dtype=np.int64))


def huber_weights(residuals: np.ndarray, scale: float) -> np.ndarray:
    """
    Huber weights: 1 inside ``HUBER_K * scale``, decaying as 1/r outside.
    """
    delta = HUBER_K * scale
    weights = np.ones_like(residuals)
    outlier_mask = residuals > delta
    weights[outlier_mask] = delta / residuals[outlier_mask]
    return weights


def tukey_weights(residuals: np.ndarray, scale: float) -> np.ndarray:
    """
    Tukey biweight: smooth down-weighting, zero beyond ``TUKEY_C * scale``.
    """
    normalized = residuals / (TUKEY_C * scale)
    weights = np.zeros_like(residuals)
    inlier_mask = normalized <= 1.0
    weights[inlier_mask] = (1 - normalized[inlier_mask] ** 2) ** 2
    return weights


ROBUST_KERNELS = {
    "huber": huber_weights,
    "tukey": tukey_weights,
}


def robust_scale(residuals: np.ndarray, min_scale: float) -> float:
    """Residual scale from the median absolute residual, bounded below by ``min_scale``."""
    if residuals.size == 0:
        return float(min_scale)
    return max(float(min_scale), MAD_TO_SIGMA * float(np.median(np.abs(residuals))))


def _solve_weighted(
    p_this: np.ndarray,
    p_other: np.ndarray,
    w_pts: np.ndarray,
    n_this: np.ndarray,
    n_other: np.ndarray,
    w_planes: np.ndarray,
    c_this: np.ndarray,
    c_other: np.ndarray,
    use_scale: bool,
) -> Tuple[np.ndarray, float]:
    W = float(np.sum(w_pts))
    if W > 0:
        ct = (w_pts[:, None] * p_this).sum(axis=0) / W
        co = (w_pts[:, None] * p_other).sum(axis=0) / W
    elif len(c_this):
        # No usable point pairs: translation from plane centroids
        Wp = float(np.sum(w_planes)) or 1.0
        ct = (w_planes[:, None] * c_this).sum(axis=0) / Wp
        co = (w_planes[:, None] * c_other).sum(axis=0) / Wp
    else:
        ct = np.zeros(3)
        co = np.zeros(3)

    A = p_other - co
    B = p_this - ct

    # Cross-covariance other -> this
    H = (A * w_pts[:, None]).T @ B
    if len(n_this):
        H += (n_other * w_planes[:, None]).T @ n_this

    U, S, Vt = np.linalg.svd(H)
    D = np.eye(3)
    if np.linalg.det(Vt.T @ U.T) < 0:
        D[2, 2] = -1.0
    R = Vt.T @ D @ U.T

    scale = 1.0
    if use_scale and W > 0:
        denom = float(np.sum(w_pts * np.sum(A * A, axis=1)))
        if denom > 0:
            scale = float(np.sum(w_pts * np.sum(B * (A @ R.T), axis=1)) / denom)

    t = ct - scale * (R @ co)

    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = t
    return T, scale


def point_residuals(p_this: np.ndarray, p_other: np.ndarray, pose: np.ndarray, scale: float = 1.0) -> np.ndarray:
    """Euclidean residuals ``|p_this - (scale * R p_other + t)|`` of point pairs."""
    pred = scale * (p_other @ pose[:3, :3].T) + pose[:3, 3]
    return np.linalg.norm(p_this - pred, axis=1)


def optimal_tf_horn(
    pairings: Pairings,
    pair_weights: Optional[PairWeights] = None,
) -> OptimalTFResult:
    """
    Compute the optimal pose mapping ``other`` onto ``this`` for all pairings.

    Args:
        pairings: Point-to-point and plane-to-plane pairings. Point-to-plane
            pairings are not used by this estimator.
        pair_weights: Weighting and robust-kernel settings.

    Returns:
        OptimalTFResult with the pose (and scale, if enabled).

    Raises:
        ValueError: If there are neither point pairs nor plane pairs.
    """
    if pair_weights is None:
        pair_weights = PairWeights()
    if pairings.num_point_pairs == 0 and not pairings.paired_planes:
        raise ValueError("optimal_tf_horn needs at least one point or plane pairing")

    p_this = pairings.points_this
    p_other = pairings.points_other
    w_base = pairings.point_pair_weights()

    if pairings.paired_planes:
        n_this = np.array([m.p_this.normal for m in pairings.paired_planes])
        n_other = np.array([m.p_other.normal for m in pairings.paired_planes])
        c_this = np.array([m.p_this.centroid for m in pairings.paired_planes])
        c_other = np.array([m.p_other.centroid for m in pairings.paired_planes])
        w_planes = np.full(len(n_this), float(pair_weights.plane_weight))
    else:
        n_this = n_other = c_this = c_other = np.empty((0, 3))
        w_planes = np.empty(0)

    def solve(w_pts: np.ndarray) -> Tuple[np.ndarray, float]:
        return _solve_weighted(
            p_this, p_other, w_pts, n_this, n_other, w_planes, c_this, c_other,
            pair_weights.use_scale_estimation,
        )

    pose, scale = solve(w_base)
    outliers = np.empty(0, dtype=np.int64)

    if pair_weights.use_robust_kernel and pairings.num_point_pairs > 0:
        kernel = ROBUST_KERNELS[pair_weights.robust_kernel]
        for _ in range(pair_weights.robust_kernel_iterations):
            residuals = point_residuals(p_this, p_other, pose, scale)
            sigma = robust_scale(residuals, pair_weights.robust_kernel_param)
            k = kernel(residuals, sigma)
            w = w_base * k
            if float(np.sum(w)) <= 0.0:
                logger.debug("Robust kernel rejected every point pair; keeping previous estimate.")
                break
            pose, scale = solve(w)
            outliers = np.flatnonzero(k < OUTLIER_WEIGHT)

    return OptimalTFResult(optimal_pose=pose, optimal_scale=scale, outliers=outliers)
