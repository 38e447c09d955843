"""
Structured ICP Package

Rigid registration of "structured" point clouds, i.e. clouds split into
named layers of raw points, plane centroids and plane patches. Alignment is
an Iterative Closest Point loop generalized to several primitive kinds, with
pluggable matchers and two per-iteration solvers (closed form and
Gauss-Newton).
"""

__version__ = "0.1.0"

from .clouds import *
from .matching import *
from .alignment import *
from .utils import *

__all__ = [
    "clouds",
    "matching",
    "alignment",
    "utils",
]
