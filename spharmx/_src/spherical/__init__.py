"""
Spherical Harmonic Transforms
=============================

Scalar and vector spherical harmonic transforms on Gauss, regular and polar
latitude grids, built from Legendre recurrences (direct or Ishioka) with an
extended-range fallback for high degrees.

Public API
----------
Transform:
    SphericalHarmonicTransform

Geometry and tables:
    SphericalGeometry, RecurrenceTables, SectoralStarts, polar_truncation

Dispatch:
    KernelTable, AlgorithmPolicy, HeuristicPolicy, TimedPolicy,
    select_algorithm
"""

from .dispatch import (
    AlgorithmPolicy,
    HeuristicPolicy,
    KernelTable,
    TimedPolicy,
    select_algorithm,
)
from .extended import ExtendedRange, sectoral_start
from .grid import SphericalGeometry, latitude_nodes_weights
from .harmonics import SphericalHarmonicTransform
from .recurrence import RecurrenceTables, SectoralStarts, norm_factor, polar_truncation

__all__ = [
    "SphericalHarmonicTransform",
    "SphericalGeometry",
    "latitude_nodes_weights",
    "RecurrenceTables",
    "SectoralStarts",
    "polar_truncation",
    "norm_factor",
    "ExtendedRange",
    "sectoral_start",
    "KernelTable",
    "AlgorithmPolicy",
    "HeuristicPolicy",
    "TimedPolicy",
    "select_algorithm",
]
