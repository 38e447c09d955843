"""Tests for the ICP result record."""

import sys
from pathlib import Path

import numpy as np

sys.path.append(str(Path(__file__).parent.parent / "src"))

from structured_icp.alignment import IterTermReason, Results


def test_defaults():
    res = Results()
    assert np.allclose(res.optimal_tf, np.eye(4))
    assert res.optimal_scale == 1.0
    assert res.n_iterations == 0
    assert res.termination_reason == IterTermReason.UNDEFINED
    assert res.goodness == 0.0
    assert not res.success


def test_success_by_reason():
    assert Results(termination_reason=IterTermReason.STALLED).success
    assert Results(termination_reason=IterTermReason.MAX_ITERATIONS).success
    assert not Results(termination_reason=IterTermReason.NO_PAIRINGS).success


def test_as_dict():
    res = Results(n_iterations=3, termination_reason=IterTermReason.STALLED, goodness=0.75)
    d = res.as_dict()
    assert d["termination_reason"] == "stalled"
    assert d["n_iterations"] == 3
    assert d["goodness"] == 0.75
    assert d["optimal_tf"][0] == [1.0, 0.0, 0.0, 0.0]
