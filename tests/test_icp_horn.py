"""
Tests for the ICP iteration controller with the closed-form (Horn) solver.

These tests focus on correctness of the recovered transform, the
termination reasons and the goodness value on synthetic data.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from structured_icp.alignment import (
    ICPHornMultiCloud,
    ICPPreconditionError,
    ICPState,
    IterTermReason,
)
from structured_icp.alignment.icp_base import PLANE_CENTROIDS_EXTRA_DIST
from structured_icp.clouds import LayeredCloud, PlanePatch
from structured_icp.matching import (
    PlanesMatcher,
    PointsDistanceThresholdMatcher,
)
from structured_icp.utils.config import ICPParameters, PairWeights
from structured_icp.utils.poses import (
    inverse_pose,
    pose_from_xyzypr,
    rotation_error,
    transform_points,
)


def _make_random_cloud(n: int = 1000, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    # Anisotropic spread to avoid degenerate covariance
    return rng.normal(size=(n, 3)) * np.array([10.0, 5.0, 2.0])


def _true_pose() -> np.ndarray:
    return pose_from_xyzypr(0.2, -0.1, 0.05, yaw=np.deg2rad(1.0), pitch=np.deg2rad(0.5))


def _moving_copy(points: np.ndarray, T: np.ndarray, noise: float = 0.0, seed: int = 1) -> np.ndarray:
    """Express ``points`` in the frame of a cloud whose pose w.r.t. them is ``T``."""
    rng = np.random.default_rng(seed)
    return transform_points(points, inverse_pose(T)) + noise * rng.normal(size=points.shape)


def _translation_error(Ta: np.ndarray, Tb: np.ndarray) -> float:
    return float(np.linalg.norm(Ta[:3, 3] - Tb[:3, 3]))


def test_three_points_noiseless():
    """Three pairs are enough for an exact solution after one iteration."""
    pts = np.array([[0.0, 0.0, 0.0], [4.0, 0.0, 0.0], [0.0, 3.0, 1.0]])
    T = pose_from_xyzypr(0.2, -0.1, 0.05, yaw=np.deg2rad(3.0))
    pc1 = LayeredCloud.from_points(pts)
    pc2 = LayeredCloud.from_points(_moving_copy(pts, T))

    icp = ICPHornMultiCloud([PointsDistanceThresholdMatcher()])
    res = icp.align(pc1, pc2)

    assert res.termination_reason == IterTermReason.STALLED
    assert res.success
    assert res.n_iterations == 2
    assert rotation_error(res.optimal_tf, T) < 1e-6
    assert _translation_error(res.optimal_tf, T) < 1e-6
    assert res.goodness == pytest.approx(1.0)
    assert res.optimal_scale == 1.0


def test_exact_initial_guess_stalls_immediately():
    pts = np.array([[0.0, 0.0, 0.0], [4.0, 0.0, 0.0], [0.0, 3.0, 1.0], [2.0, 2.0, -1.0]])
    guess = (0.5, 1.0, -0.2, 0.3, 0.0, 0.1)
    T = pose_from_xyzypr(*guess)
    pc1 = LayeredCloud.from_points(pts)
    pc2 = LayeredCloud.from_points(_moving_copy(pts, T))

    res = ICPHornMultiCloud([PointsDistanceThresholdMatcher()]).align(pc1, pc2, guess)
    assert res.termination_reason == IterTermReason.STALLED
    assert res.n_iterations == 1
    assert np.allclose(res.optimal_tf, T, atol=1e-9)


def test_noisy_cloud_converges():
    pts = _make_random_cloud(1000, seed=2)
    T = _true_pose()
    pc1 = LayeredCloud.from_points(pts)
    pc2 = LayeredCloud.from_points(_moving_copy(pts, T, noise=0.1, seed=3))
    params = ICPParameters(threshold_dist=3.0, max_iterations=60)

    res = ICPHornMultiCloud([PointsDistanceThresholdMatcher()]).align(pc1, pc2, params=params)

    assert res.success
    assert rotation_error(res.optimal_tf, T) < 0.01
    assert _translation_error(res.optimal_tf, T) < 0.1
    assert 0.9 <= res.goodness <= 1.0


def test_too_few_pairs_reports_no_pairings():
    pts = np.array([[0.0, 0.0, 0.0], [4.0, 0.0, 0.0]])
    pc1 = LayeredCloud.from_points(pts)
    pc2 = LayeredCloud.from_points(pts + 0.1)
    guess = pose_from_xyzypr(0.0, 0.0, 0.0, yaw=0.01)

    res = ICPHornMultiCloud([PointsDistanceThresholdMatcher()]).align(pc1, pc2, guess)
    assert res.termination_reason == IterTermReason.NO_PAIRINGS
    assert not res.success
    assert res.n_iterations == 0
    assert res.goodness == 0.0
    # The initial guess is returned untouched
    assert np.allclose(res.optimal_tf, guess)


def test_disjoint_clouds_report_no_pairings():
    pts = _make_random_cloud(100, seed=4)
    pc1 = LayeredCloud.from_points(pts)
    pc2 = LayeredCloud.from_points(pts + 500.0)
    res = ICPHornMultiCloud([PointsDistanceThresholdMatcher()]).align(pc1, pc2)
    assert res.termination_reason == IterTermReason.NO_PAIRINGS


def test_max_iterations_is_respected():
    pts = _make_random_cloud(300, seed=5)
    T = _true_pose()
    pc1 = LayeredCloud.from_points(pts)
    pc2 = LayeredCloud.from_points(_moving_copy(pts, T))

    res = ICPHornMultiCloud([PointsDistanceThresholdMatcher()]).align(
        pc1, pc2, params=ICPParameters(max_iterations=1, threshold_dist=3.0)
    )
    assert res.termination_reason == IterTermReason.MAX_ITERATIONS
    assert res.n_iterations == 1
    assert res.success


def test_seeded_subsampling_is_deterministic():
    pts = _make_random_cloud(1000, seed=6)
    T = _true_pose()
    pc1 = LayeredCloud.from_points(pts)
    pc2 = LayeredCloud.from_points(_moving_copy(pts, T, noise=0.05, seed=7))
    params = ICPParameters(threshold_dist=3.0)

    def run():
        matcher = PointsDistanceThresholdMatcher(max_local_points=200, local_points_sample_seed=5)
        return ICPHornMultiCloud([matcher]).align(pc1, pc2, params=params)

    a, b = run(), run()
    assert np.array_equal(a.optimal_tf, b.optimal_tf)
    assert a.n_iterations == b.n_iterations
    assert a.goodness == b.goodness


def test_points_and_planes():
    pts = _make_random_cloud(500, seed=8)
    T = _true_pose()
    planes = [
        PlanePatch(np.array([15.0, 0.0, 0.0]), np.array([1.0, 0.0, 0.0])),
        PlanePatch(np.array([0.0, 12.0, 0.0]), np.array([0.0, 1.0, 0.0])),
        PlanePatch(np.array([0.0, 0.0, -8.0]), np.array([0.0, 0.2, 1.0])),
    ]
    T_inv = inverse_pose(T)
    moved_planes = [
        PlanePatch(transform_points(p.centroid[None, :], T_inv)[0], T_inv[:3, :3] @ p.normal)
        for p in planes
    ]
    pc1 = LayeredCloud({"raw": pts}, planes)
    pc2 = LayeredCloud({"raw": _moving_copy(pts, T)}, moved_planes)

    icp = ICPHornMultiCloud([PointsDistanceThresholdMatcher(), PlanesMatcher()])
    res = icp.align(pc1, pc2, params=ICPParameters(threshold_dist=3.0))

    assert res.success
    assert rotation_error(res.optimal_tf, T) < 1e-6
    assert _translation_error(res.optimal_tf, T) < 1e-5
    assert res.goodness == pytest.approx(1.0)


def test_scale_estimation():
    pts = _make_random_cloud(300, seed=9)
    T = _true_pose()
    s = 1.02
    pc1 = LayeredCloud.from_points(pts)
    # pc1 = s * R * pc2 + t
    pc2 = LayeredCloud.from_points(((pts - T[:3, 3]) @ T[:3, :3]) / s)
    params = ICPParameters(
        threshold_dist=3.0,
        pairings_weight_parameters=PairWeights(use_scale_estimation=True),
    )

    res = ICPHornMultiCloud([PointsDistanceThresholdMatcher()]).align(pc1, pc2, params=params)
    assert res.success
    assert res.optimal_scale == pytest.approx(s, rel=1e-6)
    assert rotation_error(res.optimal_tf, T) < 1e-6


def test_preconditions():
    pts = _make_random_cloud(50)
    pc1 = LayeredCloud.from_points(pts)
    matcher = PointsDistanceThresholdMatcher()

    # Different layer sets
    with pytest.raises(ICPPreconditionError):
        ICPHornMultiCloud([matcher]).align(pc1, LayeredCloud({"raw": pts, "edges": pts[:5]}))

    # No matchers
    with pytest.raises(ICPPreconditionError):
        ICPHornMultiCloud().align(pc1, pc1)

    # No points in the weighted layers and no planes
    with pytest.raises(ICPPreconditionError):
        ICPHornMultiCloud([matcher]).align(pc1, pc1, params=ICPParameters(weight_pt2pt_layers={"edges": 1.0}))

    # Empty moving cloud
    empty = LayeredCloud({"raw": np.empty((0, 3))})
    with pytest.raises(ICPPreconditionError):
        ICPHornMultiCloud([matcher]).align(pc1, empty)


def test_prepare_matching_params():
    planes = [PlanePatch(np.zeros(3), np.array([0.0, 0.0, 1.0]))]
    pc = LayeredCloud({"raw": _make_random_cloud(1200), "edges": _make_random_cloud(300, seed=1)}, planes)
    params = ICPParameters(
        threshold_dist=0.7,
        threshold_ang=0.01,
        weight_pt2pt_layers={"raw": 1.0, "edges": 2.0},
        max_pairs_per_layer=500,
    )
    state = ICPState(pc1=pc, pc2=pc)
    ICPHornMultiCloud().prepare_matching_params(state, params)

    assert state.layer_of_largest_pc == "raw"
    assert state.layer_params["raw"].decimation == 2
    assert state.layer_params["edges"].decimation == 1
    assert state.layer_params["raw"].max_angular_dist_for_correspondence == 0.01
    centroids = state.layer_params["plane_centroids"]
    assert centroids.max_dist_for_correspondence == pytest.approx(0.7 + PLANE_CENTROIDS_EXTRA_DIST)
    assert centroids.max_angular_dist_for_correspondence == 0.0
    assert centroids.decimation == 1


def test_layer_weights_change_the_solution():
    """Noisy plane centroids pull the pose only as much as their layer weight allows."""
    rng = np.random.default_rng(10)
    pts = _make_random_cloud(300, seed=10)
    T = _true_pose()
    centroids = rng.uniform(-15.0, 15.0, size=(12, 3))
    normal = np.array([0.0, 0.0, 1.0])
    planes = [PlanePatch(c, normal) for c in centroids]
    T_inv = inverse_pose(T)
    noisy_centroids = transform_points(centroids, T_inv) + 0.3 * rng.normal(size=centroids.shape)
    moved_planes = [PlanePatch(c, T_inv[:3, :3] @ normal) for c in noisy_centroids]

    pc1 = LayeredCloud({"raw": pts}, planes)
    pc2 = LayeredCloud({"raw": _moving_copy(pts, T)}, moved_planes)

    def run(centroid_weight):
        params = ICPParameters(
            threshold_dist=3.0,
            weight_pt2pt_layers={"raw": 1.0, "plane_centroids": centroid_weight},
        )
        return ICPHornMultiCloud([PointsDistanceThresholdMatcher()]).align(pc1, pc2, params=params)

    light, heavy = run(0.001), run(1000.0)
    assert light.success and heavy.success
    assert not np.allclose(light.optimal_tf, heavy.optimal_tf)
    assert _translation_error(light.optimal_tf, T) < _translation_error(heavy.optimal_tf, T)
    assert _translation_error(light.optimal_tf, T) < 0.01


def test_robust_kernel_is_no_worse_with_outliers():
    """With over 30% of the moving points displaced, the robust kernel must not hurt."""
    plain_errors, robust_errors = [], []
    for seed in range(3):
        rng = np.random.default_rng(100 + seed)
        pts = rng.normal(size=(300, 3)) * 10.0
        T = _true_pose()
        moving = _moving_copy(pts, T, noise=0.01, seed=200 + seed)
        outliers = rng.choice(len(pts), size=105, replace=False)
        directions = rng.normal(size=(len(outliers), 3))
        directions /= np.linalg.norm(directions, axis=1, keepdims=True)
        moving[outliers] += directions * rng.uniform(0.5, 1.5, size=(len(outliers), 1))

        pc1 = LayeredCloud.from_points(pts)
        pc2 = LayeredCloud.from_points(moving)
        for use_robust, errors in ((False, plain_errors), (True, robust_errors)):
            params = ICPParameters(
                threshold_dist=3.0,
                max_iterations=30,
                pairings_weight_parameters=PairWeights(
                    use_robust_kernel=use_robust, robust_kernel="tukey", robust_kernel_param=0.05
                ),
            )
            res = ICPHornMultiCloud([PointsDistanceThresholdMatcher()]).align(pc1, pc2, params=params)
            assert res.success
            errors.append(_translation_error(res.optimal_tf, T) + rotation_error(res.optimal_tf, T))

    assert np.mean(robust_errors) <= np.mean(plain_errors)
    assert np.mean(robust_errors) < 0.02
