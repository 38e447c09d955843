"""
Tests for the pairings container: appending, merging, weights and statistics.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

from structured_icp.clouds import PlanePatch
from structured_icp.matching import MatchedPlane, Pairings


def _pairs(n: int, offset: float = 0.0) -> Pairings:
    p = Pairings()
    idx = np.arange(n)
    pts = np.column_stack([idx, idx, idx]).astype(float) + offset
    p.add_point_pairs(idx, idx, pts, pts)
    return p


def test_new_pairings_are_empty():
    p = Pairings()
    assert p.empty()
    assert p.size() == 0
    assert p.point_pair_weights().shape == (0,)
    assert repr(p) == "Pairings(points=0, planes=0, pt2pl=0)"


def test_add_point_pairs_checks_lengths():
    p = Pairings()
    with pytest.raises(ValueError):
        p.add_point_pairs([0, 1], [0], np.zeros((2, 3)), np.zeros((2, 3)))
    assert p.add_point_pairs([], [], np.empty((0, 3)), np.empty((0, 3))) == 0


def test_merge_appends_all_kinds():
    a = _pairs(3)
    plane = PlanePatch(np.zeros(3), np.array([0.0, 0.0, 1.0]))
    b = _pairs(2, offset=10.0)
    b.paired_planes.append(MatchedPlane(plane, plane))

    a.merge(b)
    assert a.num_point_pairs == 5
    assert len(a.paired_planes) == 1
    assert a.size() == 6
    assert np.allclose(a.points_this[3], [10.0, 10.0, 10.0])


def test_merge_pads_weights_of_unweighted_prefix():
    a = _pairs(3)
    b = _pairs(2)
    b.point_weights.append((2, 0.5))

    a.merge(b)
    assert a.point_weights == [(3, 1.0), (2, 0.5)]
    assert np.allclose(a.point_pair_weights(), [1.0, 1.0, 1.0, 0.5, 0.5])


def test_uncovered_pairs_weigh_one():
    a = _pairs(4)
    a.point_weights.append((2, 3.0))
    assert np.allclose(a.point_pair_weights(), [3.0, 3.0, 1.0, 1.0])


def test_correspondences_ratio_accumulates_over_merges():
    a = Pairings()
    a.record_layer("raw", 10, 4)
    b = Pairings()
    b.record_layer("raw", 10, 6)
    a.merge(b)

    assert a.correspondences_ratio("raw") == pytest.approx(0.5)
    assert a.correspondences_ratio("missing") == 0.0

    a.record_layer("dup", 2, 5)
    assert a.correspondences_ratio("dup") == 1.0
