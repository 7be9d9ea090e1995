"""
Precomputed Legendre Stages
===========================

Two table-based alternatives to the on-the-fly recurrence:

    • GaussLegendre ("gauss" algorithm): per-order matrices of the synthesis
      functions P_lm(theta_j) and of the weighted analysis functions
      wg_j P_lm(theta_j) / n_l, applied with einsum.  Polar rows skipped by
      the polar truncation are stored as zeros.
    • DctLegendre ("dct" algorithm, regular grid only): each P_lm is a finite
      cosine series in theta (m even) or sine series (m odd).  Synthesis sums
      the series with a type-III DCT/DST, analysis projects the weighted
      samples with a type-II DCT/DST.

Both expose the per-order interface used by the reference engine:

    synth_m(im, ql)      Complex[ndarray, "B nk"] -> Complex[ndarray, "B nlat"]
    analys_m(im, F, nk)  Complex[ndarray, "B nlat"] -> Complex[ndarray, "B nk"]
"""

import equinox as eqx
from jaxtyping import Float
import numpy as np
import scipy.fft

from ..config import SHTConfig
from .grid import SphericalGeometry
from .kernels import legendre_table
from .recurrence import RecurrenceTables, SectoralStarts, norm_factor


def table_bytes(config: SHTConfig) -> int:
    """Memory used by a synthesis plus an analysis table."""
    return 2 * config.nm * (config.lmax + 2) * config.nlat * 8


def _full_latitude(P_north, nlat):
    """Extend hemisphere values (nk, nlat_2) to all rows by parity in k."""
    sign = np.where(np.arange(P_north.shape[0]) % 2 == 0, 1.0, -1.0)[:, None]
    south = sign * P_north[:, : nlat // 2][:, ::-1]
    return np.concatenate([P_north, south], axis=1)


def legendre_matrices(
    config: SHTConfig,
    geometry: SphericalGeometry,
    tables: RecurrenceTables,
    starts: SectoralStarts,
    tm: np.ndarray | None = None,
):
    """
    Synthesis and analysis matrices, both Float[ndarray, "nm lmax+2 nlat"].

    ylm_s[im, k, j] = P^N_{m+k}(theta_j)
    ylm_a[im, k, j] = wg_j P^N_{m+k}(theta_j) / n_{m+k}
    """
    nk = config.lmax + 2
    nlat = config.nlat
    ylm_s = np.zeros((config.nm, nk, nlat))
    ylm_a = np.zeros((config.nm, nk, nlat))
    ct_2 = geometry.ct_2
    rows = np.arange(nlat)
    for im in range(config.nm):
        Ps = legendre_table(tables.alm[im], starts.y_synth[im], starts.e_synth[im], ct_2, nk)
        Pa = legendre_table(tables.blm[im], starts.y_anal[im], starts.e_anal[im], ct_2, nk)
        ylm_s[im] = _full_latitude(Ps, nlat)
        ylm_a[im] = _full_latitude(Pa, nlat) * geometry.wg
        if tm is not None and tm[im] > 0:
            skip = (rows < tm[im]) | (rows >= nlat - tm[im])
            ylm_s[im][:, skip] = 0.0
            ylm_a[im][:, skip] = 0.0
    return ylm_s, ylm_a


class GaussLegendre(eqx.Module):
    """Matrix Legendre stage."""

    ylm_s: Float[np.ndarray, "nm K nlat"]
    ylm_a: Float[np.ndarray, "nm K nlat"]

    def __init__(self, config, geometry, tables, starts, tm=None):
        self.ylm_s, self.ylm_a = legendre_matrices(config, geometry, tables, starts, tm)

    def synth_m(self, im, ql):
        nk = ql.shape[-1]
        return np.einsum("bk,kj->bj", ql, self.ylm_s[im, :nk])

    def analys_m(self, im, F, nk):
        return np.einsum("bj,kj->bk", F, self.ylm_a[im, :nk])


def _real_apply(fn, x):
    """Apply a real transform to the real and imaginary parts separately."""
    return fn(x.real) + 1j * fn(x.imag)


class DctLegendre(eqx.Module):
    """
    Cosine/sine series Legendre stage on the regular grid.

    coef_s[im, k, q] are the series coefficients of P^N_{m+k}:
        m even: P = sum_q coef[q] cos(q theta)
        m odd : P = sum_q coef[q] sin((q+1) theta)
    coef_a = coef_s / n_l, the analysis normalization.
    """

    ms: np.ndarray
    nlat: int
    workers: int
    wg: Float[np.ndarray, "nlat"]
    coef_s: Float[np.ndarray, "nm K nlat"]
    coef_a: Float[np.ndarray, "nm K nlat"]

    def __init__(self, config, geometry, tables, starts):
        nk = config.lmax + 2
        nlat = config.nlat
        self.ms = tables.ms
        self.nlat = nlat
        self.workers = config.nthreads
        self.wg = geometry.wg
        self.coef_s = np.zeros((config.nm, nk, nlat))
        for im, m in enumerate(self.ms):
            P = legendre_table(
                tables.alm[im], starts.y_synth[im], starts.e_synth[im], geometry.ct_2, nk
            )
            P = _full_latitude(P, nlat)
            if m % 2 == 0:
                c = scipy.fft.dct(P, type=2, axis=-1) / nlat
                c[:, 0] *= 0.5
            else:
                c = scipy.fft.dst(P, type=2, axis=-1) / nlat
                c[:, -1] *= 0.5
            self.coef_s[im] = c
        # analysis functions are P^N / n_l with n_l the squared norm
        l = self.ms[:, None] + np.arange(nk)[None, :]
        n_l = norm_factor(l, config.norm) ** 2
        self.coef_a = self.coef_s / n_l[:, :, None]

    def synth_m(self, im, ql):
        nk = ql.shape[-1]
        c = ql @ self.coef_s[im, :nk]
        if self.ms[im] % 2 == 0:
            x = c.copy()
            x[:, 1:] *= 0.5
            fn = lambda a: scipy.fft.dct(a, type=3, axis=-1, workers=self.workers)
        else:
            x = 0.5 * c
            x[:, -1] = c[:, -1]
            fn = lambda a: scipy.fft.dst(a, type=3, axis=-1, workers=self.workers)
        return _real_apply(fn, x)

    def analys_m(self, im, F, nk):
        f = F * self.wg
        if self.ms[im] % 2 == 0:
            fn = lambda a: scipy.fft.dct(a, type=2, axis=-1, workers=self.workers)
        else:
            fn = lambda a: scipy.fft.dst(a, type=2, axis=-1, workers=self.workers)
        g = 0.5 * _real_apply(fn, f)
        return g @ self.coef_a[im, :nk].T
