"""
Tests for the latitude rules and SphericalGeometry.
"""

import numpy as np
import pytest
from scipy.special import eval_legendre

from spharmx._src.config import GridKind, SHTConfig
from spharmx._src.spherical.grid import (
    SphericalGeometry,
    latitude_nodes_weights,
    merge_hemispheres,
    split_hemispheres,
)

# ---------------------------------------------------------------------------
# Latitude rules
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("grid", list(GridKind))
@pytest.mark.parametrize("nlat", [8, 9, 33])
def test_weights_sum_to_two(grid, nlat):
    """Every rule integrates the constant exactly over [-1, 1]."""
    ct, w = latitude_nodes_weights(grid, nlat)
    assert ct.shape == w.shape == (nlat,)
    assert np.isclose(w.sum(), 2.0, atol=1e-13)


@pytest.mark.parametrize("grid", list(GridKind))
def test_nodes_north_to_south_and_symmetric(grid):
    ct, w = latitude_nodes_weights(grid, 17)
    assert np.all(np.diff(ct) < 0)
    assert np.array_equal(ct, -ct[::-1])
    assert np.array_equal(w, w[::-1])
    assert ct[8] == 0.0


def test_poles_grid_includes_poles():
    ct, _ = latitude_nodes_weights(GridKind.POLES, 9)
    assert ct[0] == 1.0
    assert ct[-1] == -1.0


def test_regular_grid_nodes():
    """theta_j = (j + 1/2) pi / nlat."""
    nlat = 12
    ct, _ = latitude_nodes_weights(GridKind.REGULAR, nlat)
    theta = (np.arange(nlat) + 0.5) * np.pi / nlat
    assert np.allclose(ct, np.cos(theta), atol=1e-15)


@pytest.mark.parametrize(
    "grid, nlat, degree",
    [
        (GridKind.GAUSS, 10, 19),
        (GridKind.REGULAR, 21, 20),
        (GridKind.POLES, 21, 20),
    ],
)
def test_quadrature_exactness(grid, nlat, degree):
    """Each rule integrates P_a P_b exactly up to its exactness degree."""
    ct, w = latitude_nodes_weights(grid, nlat)
    a = (degree - 1) // 2
    b = degree - a
    inner = np.sum(w * eval_legendre(a, ct) * eval_legendre(b, ct))
    norm = np.sum(w * eval_legendre(a, ct) ** 2)
    assert abs(inner) < 1e-12
    assert np.isclose(norm, 2.0 / (2 * a + 1), atol=1e-12)


# ---------------------------------------------------------------------------
# Hemisphere helpers
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("nlat", [6, 7])
def test_split_merge_hemispheres(nlat):
    f = np.arange(2 * nlat, dtype=float).reshape(2, nlat)
    north, south = split_hemispheres(f, nlat)
    assert north.shape == south.shape == (2, (nlat + 1) // 2)
    assert np.array_equal(south[:, 0], f[:, -1])
    assert np.array_equal(merge_hemispheres(north, south, nlat), f)


# ---------------------------------------------------------------------------
# SphericalGeometry
# ---------------------------------------------------------------------------


def test_geometry_weights_cover_sphere():
    """wg includes the 2*pi longitude factor: sum(wg) = 4*pi."""
    geo = SphericalGeometry(SHTConfig(10))
    assert np.isclose(geo.wg.sum(), 4.0 * np.pi, atol=1e-12)


def test_geometry_trigonometry():
    geo = SphericalGeometry(SHTConfig(10))
    assert np.allclose(geo.ct**2 + geo.st**2, 1.0, atol=1e-14)
    assert np.allclose(geo.st * geo.st_1, 1.0, atol=1e-14)
    assert np.allclose(np.cos(geo.theta), geo.ct, atol=1e-14)


def test_inverse_sine_is_zero_on_poles():
    geo = SphericalGeometry(SHTConfig(6, grid="poles"))
    assert geo.st_1[0] == 0.0
    assert geo.st_1[-1] == 0.0
    assert np.all(geo.st_1[1:-1] > 0.0)


def test_longitudes_span_reduced_period():
    """With mres = 3 the longitudes cover [0, 2*pi/3)."""
    cfg = SHTConfig(9, mmax=3, mres=3, nphi=12)
    geo = SphericalGeometry(cfg)
    assert geo.phi[0] == 0.0
    assert np.isclose(geo.phi[1] * cfg.nphi, 2.0 * np.pi / 3.0)


def test_odd_grid_halves_equator_weight():
    cfg = SHTConfig(8, grid="regular", nlat=19)
    geo = SphericalGeometry(cfg)
    assert geo.wn_2.shape == (10,)
    assert np.isclose(geo.wn_2[-1], 0.5 * geo.wg[9])
    assert np.array_equal(geo.wn_2[:-1], geo.wg[:9])


def test_index_tables():
    """Blocks ordered by m, degree increasing inside each block."""
    cfg = SHTConfig(6, mmax=3, mres=2)
    geo = SphericalGeometry(cfg)
    assert geo.li.shape == geo.mi.shape == (cfg.nlm,)
    assert list(geo.lm_offset) == [0, 7, 12, 15]
    for lm in range(cfg.nlm):
        assert geo.idx(int(geo.li[lm]), int(geo.mi[lm])) == lm
    for im in range(cfg.nm):
        block = geo.order_block(im)
        assert np.all(geo.mi[block] == im * cfg.mres)
        assert np.all(np.diff(geo.li[block]) == 1)


def test_padded_index_gathers_blocks():
    """padded_index maps (im, k) to the flat index, or the sentinel nlm past lmax."""
    cfg = SHTConfig(5, mmax=2, mres=2)
    geo = SphericalGeometry(cfg)
    qlm = np.arange(cfg.nlm) + 1.0
    padded = np.concatenate([qlm, [0.0]])[geo.padded_index]
    assert padded.shape == (cfg.nm, cfg.lmax + 2)
    for im in range(cfg.nm):
        block = qlm[geo.order_block(im)]
        assert np.array_equal(padded[im, : len(block)], block)
        assert np.all(padded[im, len(block) :] == 0.0)
