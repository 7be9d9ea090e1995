"""
Tests for the recurrence tables, checked against scipy.special.
"""

import numpy as np
import pytest
from scipy.special import gammaln, lpmv

from spharmx._src.config import Normalization, SHTConfig
from spharmx._src.spherical.grid import SphericalGeometry
from spharmx._src.spherical.kernels import legendre_table
from spharmx._src.spherical.recurrence import (
    RecurrenceTables,
    SectoralStarts,
    epsilon,
    norm_factor,
    polar_truncation,
    sectoral_norm,
)


def orthonormal_legendre(l, m, x):
    """Orthonormal P_lm with the Condon-Shortley phase (lpmv includes it)."""
    log_norm = 0.5 * (
        np.log((2 * l + 1) / (4 * np.pi)) + gammaln(l - m + 1) - gammaln(l + m + 1)
    )
    return np.exp(log_norm) * lpmv(m, l, x)


def build(lmax=20, **kwargs):
    cfg = SHTConfig(lmax, backend="reference", **kwargs)
    geo = SphericalGeometry(cfg)
    tables = RecurrenceTables(cfg)
    starts = SectoralStarts(tables, geo.st_2, cfg.use_extended_range)
    return cfg, geo, tables, starts


# ---------------------------------------------------------------------------
# Basic factors
# ---------------------------------------------------------------------------


def test_norm_factor_conventions():
    l = np.arange(5)
    assert np.allclose(norm_factor(l, Normalization.ORTHONORMAL), 1.0)
    assert np.allclose(norm_factor(l, Normalization.FOURPI), np.sqrt(4 * np.pi))
    assert np.allclose(
        norm_factor(l, Normalization.SCHMIDT), np.sqrt(4 * np.pi / (2 * l + 1))
    )


def test_epsilon_vanishes_on_sectoral_degree():
    assert epsilon(3, 3) == 0.0
    assert np.isclose(epsilon(4, 3), np.sqrt((16 - 9) / 63.0))


def test_sectoral_norm_sign():
    """The Condon-Shortley phase alternates the sign of K_m."""
    ms = np.arange(5)
    with_cs = sectoral_norm(ms, cs_phase=True)
    without = sectoral_norm(ms, cs_phase=False)
    assert np.allclose(np.abs(with_cs), without)
    assert np.allclose(np.sign(with_cs), (-1.0) ** ms)
    assert np.isclose(without[0], 1.0 / np.sqrt(4 * np.pi))


def test_inverse_degree_factor():
    _, _, tables, _ = build(6)
    assert tables.l_2[0] == 0.0
    assert np.isclose(tables.l_2[3], 1.0 / 12.0)
    assert tables.l_2.shape == (8,)


# ---------------------------------------------------------------------------
# Generated functions
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("norm", list(Normalization))
def test_synthesis_functions_match_scipy(norm):
    """alm generates c_l times the orthonormal functions, up to lmax + 1."""
    cfg, geo, tables, starts = build(20, norm=norm)
    x = geo.ct_2
    for im in range(0, cfg.nm, 3):
        m = int(tables.ms[im])
        nk = cfg.lmax + 2 - m
        P = legendre_table(tables.alm[im], starts.y_synth[im], starts.e_synth[im], x, nk)
        for k in range(nk):
            l = m + k
            expected = norm_factor(l, norm) * orthonormal_legendre(l, m, x)
            assert np.allclose(P[k], expected, atol=1e-11), (norm, l, m)


@pytest.mark.parametrize("norm", list(Normalization))
def test_analysis_functions_are_scaled_by_norm(norm):
    """blm generates P^N_l / c_l^2, the dual of the synthesis functions."""
    cfg, geo, tables, starts = build(12, norm=norm)
    x = geo.ct_2
    for im in range(cfg.nm):
        m = int(tables.ms[im])
        nk = cfg.lmax + 1 - m
        Ps = legendre_table(tables.alm[im], starts.y_synth[im], starts.e_synth[im], x, nk)
        Pa = legendre_table(tables.blm[im], starts.y_anal[im], starts.e_anal[im], x, nk)
        c = norm_factor(m + np.arange(nk), norm)
        assert np.allclose(Pa, Ps / (c**2)[:, None], atol=1e-13)


def test_without_condon_shortley_phase():
    _, geo, tables, starts = build(6, cs_phase=False)
    x = geo.ct_2
    P = legendre_table(tables.alm[3], starts.y_synth[3], starts.e_synth[3], x, 3)
    assert np.allclose(P[0], -orthonormal_legendre(3, 3, x), atol=1e-13)


def test_table_shapes():
    cfg, _, tables, _ = build(9, mmax=4, mres=2)
    assert tables.alm.shape == (cfg.nm, cfg.lmax + 2, 2)
    assert tables.mx_stdt.shape == (cfg.nm, cfg.lmax + 2, 2)
    assert tables.clm.shape[:2] == tables.xlm.shape[:2] == tables.x2lm.shape[:2]
    assert tables.nk == cfg.lmax + 2
    assert list(tables.ms) == [0, 2, 4, 6, 8]


def test_tables_zero_past_last_degree():
    """Slots of degrees above lmax + 1 carry no recurrence coefficients."""
    cfg, _, tables, _ = build(10)
    for im in range(cfg.nm):
        last = cfg.lmax + 1 - int(tables.ms[im])
        assert np.all(tables.alm[im, last + 1 :] == 0.0)
        assert np.all(tables.blm[im, last + 1 :] == 0.0)


# ---------------------------------------------------------------------------
# Polar truncation
# ---------------------------------------------------------------------------


def test_polar_truncation_disabled():
    cfg, geo, tables, starts = build(40)
    tm = polar_truncation(tables, starts, geo.ct_2, 0.0)
    assert tm.shape == (cfg.nm,)
    assert np.all(tm == 0)


def test_polar_truncation_skips_high_orders_only():
    cfg, geo, tables, starts = build(64)
    tm = polar_truncation(tables, starts, geo.ct_2, 1e-10)
    assert tm[0] == 0
    assert tm[-1] > 0
    assert np.all(tm <= cfg.nlat_2)


def test_polar_truncation_bound():
    """Every skipped value is below threshold times the order's peak."""
    threshold = 1e-8
    cfg, geo, tables, starts = build(48)
    tm = polar_truncation(tables, starts, geo.ct_2, threshold)
    for im in range(cfg.nm):
        m = int(tables.ms[im])
        nk = cfg.lmax + 1 - m
        P = legendre_table(tables.alm[im], starts.y_synth[im], starts.e_synth[im], geo.ct_2, nk)
        peak = np.abs(P).max()
        skipped = np.abs(P[:, : tm[im]])
        assert np.all(skipped < threshold * peak)
