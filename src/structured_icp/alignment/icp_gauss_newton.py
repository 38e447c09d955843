"""
ICP with a Gauss-Newton correction at each iteration.

All pairing kinds are linearized around the current pose using a left
perturbation ``T <- exp(dx) T`` with ``dx = [v, w]``:

- point-to-point: ``r = T q - p`` (3 rows), ``J = [I, -[T q]x]``
- point-to-plane: ``r = n . (T q - c)`` (1 row), ``J = [n, (T q) x n]``
- plane-to-plane: ``r = R n_o - n_t`` (3 rows), ``J = [0, -[R n_o]x]``,
  plus the point-to-plane row of the moving centroid against the reference plane.
"""

from __future__ import annotations

from typing import List

import numpy as np

from ..matching.pairings import Pairings
from ..utils.config import ICPParameters, PairWeights
from ..utils.logging import setup_logger
from ..utils.poses import rotate_vectors, se3_exp, transform_points, with_scale
from .icp_base import ICPBase, ICPState, IterationResult
from .optimal_tf import ROBUST_KERNELS, robust_scale

logger = setup_logger(__name__)

# Number of degrees of freedom of a rigid pose
POSE_DOF = 6


def _skew_rows(v: np.ndarray) -> np.ndarray:
    """Stack of cross-product matrices, shape (N, 3, 3), for an (N, 3) array."""
    out = np.zeros((len(v), 3, 3))
    out[:, 0, 1] = -v[:, 2]
    out[:, 0, 2] = v[:, 1]
    out[:, 1, 0] = v[:, 2]
    out[:, 1, 2] = -v[:, 0]
    out[:, 2, 0] = -v[:, 1]
    out[:, 2, 1] = v[:, 0]
    return out


def _robust(residual_norms: np.ndarray, weights: PairWeights) -> np.ndarray:
    if not weights.use_robust_kernel or residual_norms.size == 0:
        return np.ones_like(residual_norms)
    sigma = robust_scale(residual_norms, weights.robust_kernel_param)
    return ROBUST_KERNELS[weights.robust_kernel](residual_norms, sigma)


def build_normal_equations(
    pairings: Pairings,
    pose: np.ndarray,
    scale: float,
    weights: PairWeights,
):
    """
    Accumulate ``H = sum J^T w J`` and ``g = sum J^T w r`` over all pairings.

    Returns:
        Tuple ``(H, g, n_rows)``.
    """
    T = with_scale(pose, scale)
    H = np.zeros((POSE_DOF, POSE_DOF))
    g = np.zeros(POSE_DOF)
    n_rows = 0

    # Point-to-point
    if pairings.num_point_pairs:
        pg = transform_points(pairings.points_other, T)
        r = pg - pairings.points_this
        J = np.zeros((len(pg), 3, POSE_DOF))
        J[:, :, :3] = np.eye(3)
        J[:, :, 3:] = -_skew_rows(pg)
        w = pairings.point_pair_weights() * _robust(np.linalg.norm(r, axis=1), weights)
        H += np.einsum("n,nki,nkj->ij", w, J, J)
        g += np.einsum("n,nki,nk->i", w, J, r)
        n_rows += 3 * len(pg)

    # Point-to-plane, and the centroid rows of plane-to-plane pairings
    rows_n: List[np.ndarray] = []
    rows_c: List[np.ndarray] = []
    rows_q: List[np.ndarray] = []
    rows_w: List[float] = []
    for pair in pairings.paired_pt2pl:
        rows_n.append(pair.pl_this.normal)
        rows_c.append(pair.pl_this.centroid)
        rows_q.append(pair.pt_other)
        rows_w.append(weights.pt2pl_weight)
    for pair in pairings.paired_planes:
        rows_n.append(pair.p_this.normal)
        rows_c.append(pair.p_this.centroid)
        rows_q.append(pair.p_other.centroid)
        rows_w.append(weights.plane_weight)

    if rows_n:
        n = np.array(rows_n)
        pg = transform_points(np.array(rows_q), T)
        r = np.sum(n * (pg - np.array(rows_c)), axis=1)
        J = np.hstack([n, np.cross(pg, n)])
        w = np.array(rows_w) * _robust(np.abs(r), weights)
        H += (J * w[:, None]).T @ J
        g += (J * w[:, None]).T @ r
        n_rows += len(r)

    # Plane-to-plane normal alignment
    if pairings.paired_planes:
        n_this = np.array([m.p_this.normal for m in pairings.paired_planes])
        n_other = rotate_vectors(np.array([m.p_other.normal for m in pairings.paired_planes]), pose)
        r = n_other - n_this
        J = np.zeros((len(r), 3, POSE_DOF))
        J[:, :, 3:] = -_skew_rows(n_other)
        w = np.full(len(r), float(weights.plane_weight))
        H += np.einsum("n,nki,nkj->ij", w, J, J)
        g += np.einsum("n,nki,nk->i", w, J, r)
        n_rows += 3 * len(r)

    return H, g, n_rows


class ICPGaussNewton(ICPBase):
    """
    ICP registration for points and planes, using one Gauss-Newton step on the
    linearized residuals of all pairings per iteration.
    """

    def iterate(self, state: ICPState, params: ICPParameters) -> IterationResult:
        state.current_pairings = self.run_matchers(state)
        pairings = state.current_pairings
        if pairings.empty():
            return IterationResult(success=False)

        H, g, n_rows = build_normal_equations(
            pairings, state.current_solution, state.current_scale, params.pairings_weight_parameters
        )
        if n_rows < POSE_DOF or np.linalg.matrix_rank(H) < POSE_DOF:
            logger.debug("Degenerate normal equations (%d rows, rank %d).",
                         n_rows, np.linalg.matrix_rank(H))
            return IterationResult(success=False)

        dx = -np.linalg.solve(H, g)
        return IterationResult(
            success=True,
            new_solution=se3_exp(dx) @ state.current_solution,
            new_scale=state.current_scale,
        )
