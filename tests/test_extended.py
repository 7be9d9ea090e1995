"""
Tests for the extended-range arithmetic and its use at high degree.
"""

import numpy as np
import pytest

from spharmx._src.config import SHT_SCALE_FACTOR, SHTConfig
from spharmx._src.spherical.extended import (
    ExtendedRange,
    normalize,
    rescale_step,
    sectoral_start,
    to_float,
)
from spharmx._src.spherical.grid import SphericalGeometry
from spharmx._src.spherical.kernels import legendre_table
from spharmx._src.spherical.matrix import _full_latitude
from spharmx._src.spherical.recurrence import RecurrenceTables, SectoralStarts


def test_scale_factor_is_two_to_450():
    assert SHT_SCALE_FACTOR == 2.0**450


def test_normalize_lifts_small_values():
    y = np.array([1e-200, 0.5, 0.0])
    e = np.zeros(3, dtype=np.int64)
    y2, e2 = normalize(y, e)
    assert list(e2) == [-1, 0, 0]
    assert np.isclose(y2[0], 1e-200 * SHT_SCALE_FACTOR)
    assert y2[1] == 0.5
    assert y2[2] == 0.0


def test_to_float_undoes_normalize():
    y = np.array([3e-150, -7e-170, 2.5])
    e = np.zeros(3, dtype=np.int64)
    assert np.allclose(to_float(*normalize(y, e)), y, rtol=1e-15, atol=0.0)


def test_to_float_underflows_to_zero():
    """Two scale steps down is far below the smallest double."""
    assert to_float(np.array([1.0]), np.array([-3]))[0] == 0.0


def test_extended_range_tuple():
    x = ExtendedRange(np.array([2.0]), np.array([0]))
    assert x.to_float()[0] == 2.0


def test_rescale_step_only_touches_grown_values():
    y_prev = np.array([4.0, 4.0, 4.0])
    y = np.array([8.0, 0.5, 8.0])
    e = np.array([-1, -1, 0])
    p, q, e2 = rescale_step(y_prev, y, e)
    assert list(e2) == [0, -1, 0]
    assert np.isclose(q[0], 8.0 / SHT_SCALE_FACTOR)
    assert np.isclose(p[0], 4.0 / SHT_SCALE_FACTOR)
    assert q[1] == 0.5
    assert q[2] == 8.0


def test_rescale_step_is_noop_without_candidates():
    y_prev, y, e = np.ones(3), np.ones(3), np.zeros(3, dtype=np.int64)
    p, q, e2 = rescale_step(y_prev, y, e)
    assert p is y_prev and q is y and e2 is e


def test_sectoral_start_moderate_orders():
    """For moderate m the extended and plain representations agree."""
    st = np.linspace(0.1, 1.0, 7)
    ms = np.array([0, 3, 40])
    y, e = sectoral_start(ms, st)
    assert np.allclose(to_float(y, e), st[None, :] ** ms[:, None], rtol=1e-13)


def test_sectoral_start_keeps_huge_powers():
    """0.1**2000 is representable as (y, e) though not as a double."""
    st = np.array([0.1, 0.5])
    y, e = sectoral_start(np.array([2000]), st)
    assert e[0, 0] < 0
    log10 = np.log10(y[0, 0]) + e[0, 0] * np.log10(SHT_SCALE_FACTOR)
    assert np.isclose(log10, -2000.0, atol=1e-9)
    plain, e_plain = sectoral_start(np.array([2000]), st, extended=False)
    assert plain[0, 0] == 0.0
    assert np.all(e_plain == 0)


@pytest.mark.parametrize("l", [1000, 1020, 1040])
def test_high_order_functions_stay_normalized(l):
    """
    p_l of order m = 1000 keeps unit norm when sin(theta)**1000 underflows.

    Quadrature of p_l^2 on a Gauss grid with nlat > lmax must equal 1.
    """
    cfg = SHTConfig(1040, backend="reference")
    assert cfg.use_extended_range
    geo = SphericalGeometry(cfg)
    tables = RecurrenceTables(cfg)
    starts = SectoralStarts(tables, geo.st_2, use_extended=True)
    im = 1000
    assert starts.e_synth[im].min() < 0
    P = legendre_table(
        tables.alm[im], starts.y_synth[im], starts.e_synth[im], geo.ct_2, l - im + 3
    )
    P = _full_latitude(P, cfg.nlat)
    k = l - im
    assert np.isclose(np.sum(geo.wg * P[k] ** 2), 1.0, rtol=1e-10)
    assert abs(np.sum(geo.wg * P[k] * P[k + 2])) < 1e-10
