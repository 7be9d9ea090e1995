"""
Legendre Recurrence Tables
==========================

Coefficients of the three-term recurrences generating the normalized
associated Legendre functions, for every order of a configuration.

Orthonormal functions p_l (sum of p_l^2 over the sphere equals 1):

    p_mm     = K_m sin(theta)^m,   K_0 = 1/sqrt(4 pi),
               K_m = -sqrt((2m+1)/(2m)) K_{m-1}        (Condon-Shortley phase)
    p_{m+1}  = sqrt(2m+3) mu p_m
    p_l      = (mu p_{l-1} - eps_{l-1} p_{l-2}) / eps_l,
    eps_l    = sqrt((l^2 - m^2) / (4 l^2 - 1)),  eps_m = 0.

A normalization with factor c_l (Y_l^N = c_l Y_l) scales degree l by c_l for
synthesis and by 1/c_l for analysis, since the analysis divides by the norm
c_l^2.

Tables (per order im, slot k = l - m):
--------------------------------------
    alm[im, 0] = (K_m c_m, 0),   alm[im, k] = (a, b) generating P_{m+k}:
                 P_l = a mu P_{l-1} - b P_{l-2}.     Zero past degree lmax+1.
    blm          same for the analysis functions p_l / c_l.
    clm          Ishioka recurrence in x = mu^2 (see below).
    xlm, x2lm    Ishioka <-> spherical harmonic conversion, synthesis/analysis.
    mx_stdt      sin(theta) d/dtheta couplings used by vector synthesis.
    mx_van       couplings used by vector analysis.
    l_2          1 / (l (l+1)), with l_2[0] = 0.

Ishioka recurrence:
-------------------
With o_k = p_{m+2k+1}/mu and psi_k = g_k o_k,

    psi_0 = sqrt(2m+3) p_mm,  psi_{-1} = 0,
    psi_{k+1} = (alpha_k x + beta_k) psi_k - psi_{k-1}.

Even and odd degrees are recovered from the single sequence psi:
    p_{m+2k}   = eps_{m+2k+1} psi_k/g_k + eps_{m+2k} psi_{k-1}/g_{k-1}
    p_{m+2k+1} = mu psi_k / g_k
so one recurrence step advances two degrees.

References:
-----------
[1] Ishioka, K. (2018). A new recurrence formula for efficient computation of
    spherical harmonic transform.  J. Meteor. Soc. Japan, 96(2).
[2] Schaeffer, N. (2013). Efficient spherical harmonic transforms aimed at
    pseudospectral numerical simulations.  G3, 14(3).
"""

import equinox as eqx
from jaxtyping import Float
from loguru import logger
import numpy as np

from ..config import Normalization, SHTConfig
from . import extended


def norm_factor(l, norm: Normalization) -> np.ndarray:
    """c_l such that Y_l^N = c_l Y_l^orthonormal."""
    l = np.asarray(l, dtype=np.float64)
    if norm is Normalization.ORTHONORMAL:
        return np.ones_like(l)
    if norm is Normalization.FOURPI:
        return np.full_like(l, np.sqrt(4.0 * np.pi))
    return np.sqrt(4.0 * np.pi / np.maximum(2.0 * l + 1.0, 1.0))


def epsilon(l, m) -> np.ndarray:
    """eps_{l,m} = sqrt((l^2 - m^2)/(4 l^2 - 1)), zero for l <= m."""
    l = np.asarray(l, dtype=np.float64)
    m = np.asarray(m, dtype=np.float64)
    num = np.maximum(l * l - m * m, 0.0)
    den = np.maximum(4.0 * l * l - 1.0, 1.0)
    return np.where(l > m, np.sqrt(num / den), 0.0)


def sectoral_norm(ms, cs_phase: bool = True) -> np.ndarray:
    """Orthonormal K_m = p_mm / sin(theta)^m for every order in ms."""
    ms = np.asarray(ms)
    top = int(ms.max()) if ms.size else 0
    k = np.arange(1, top + 1, dtype=np.float64)
    steps = np.sqrt((2.0 * k + 1.0) / (2.0 * k))
    if cs_phase:
        steps = -steps
    K = np.concatenate([[1.0], np.cumprod(steps)]) / np.sqrt(4.0 * np.pi)
    return K[ms]


def _degree_grid(ms, nk):
    """l[im, k] = m + k and the mask l <= lmax+1 is applied by callers."""
    k = np.arange(nk)
    return ms[:, None] + k[None, :], k


def _direct_tables(ms, lmax, norm, K):
    """alm and blm, shape (nm, lmax+2, 2)."""
    nk = lmax + 2
    l, k = _degree_grid(ms, nk)
    m = ms[:, None].astype(np.float64)
    valid = l <= lmax + 1
    eps_l = epsilon(l, m)
    eps_l1 = epsilon(l - 1, m)
    with np.errstate(divide="ignore", invalid="ignore"):
        a_o = np.where(valid & (k > 0), 1.0 / eps_l, 0.0)
        b_o = np.where(valid & (k > 1), eps_l1 / eps_l, 0.0)
    c = norm_factor(l, norm)
    c1 = norm_factor(np.maximum(l - 1, 0), norm)
    c2 = norm_factor(np.maximum(l - 2, 0), norm)

    alm = np.zeros((len(ms), nk, 2))
    blm = np.zeros((len(ms), nk, 2))
    alm[:, :, 0] = a_o * c / c1
    alm[:, :, 1] = b_o * c / c2
    blm[:, :, 0] = a_o * c1 / c
    blm[:, :, 1] = b_o * c2 / c
    cm = norm_factor(ms, norm)
    alm[:, 0, 0] = K * cm
    blm[:, 0, 0] = K / cm
    return alm, blm


def _ishioka_tables(ms, lmax, norm, K):
    """clm (nm, nkk, 2), xlm and x2lm (nm, nkk, 3)."""
    nkk = (lmax + 1) // 2 + 2
    nm = len(ms)
    m = ms.astype(np.float64)

    def A(k):
        return epsilon(m + 2 * k + 1, m) * epsilon(m + 2 * k, m)

    def B(k):
        return epsilon(m + 2 * k + 2, m) ** 2 + epsilon(m + 2 * k + 1, m) ** 2

    g = np.ones((nm, nkk + 1))
    for k in range(1, nkk):
        g[:, k + 1] = g[:, k - 1] * A(k + 1) / A(k)

    clm = np.zeros((nm, nkk, 2))
    clm[:, 0, 0] = np.sqrt(2.0 * m + 3.0) * K
    top = (lmax + 1 - ms) // 2  # last k with psi_k needed
    for k in range(nkk - 1):
        alpha = g[:, k + 1] / (A(k + 1) * g[:, k])
        live = k + 1 <= top
        clm[:, k + 1, 0] = np.where(live, alpha, 0.0)
        clm[:, k + 1, 1] = np.where(live, -alpha * B(k), 0.0)

    kk = np.arange(nkk)[None, :]
    l0 = ms[:, None] + 2 * kk
    gk = g[:, :nkk]
    xlm = np.zeros((nm, nkk, 3))
    x2lm = np.zeros((nm, nkk, 3))
    for j, (dl, eps_dl) in enumerate(((0, 1), (2, 2), (1, None))):
        lj = l0 + dl
        live = lj <= lmax + 1
        base = 1.0 / gk if eps_dl is None else epsilon(l0 + eps_dl, ms[:, None]) / gk
        c = norm_factor(lj, norm)
        xlm[:, :, j] = np.where(live, base * c, 0.0)
        x2lm[:, :, j] = np.where(live, base / c, 0.0)
    return clm, xlm, x2lm


def _vector_tables(ms, lmax, norm):
    """mx_stdt and mx_van, shape (nm, lmax+2, 2), and l_2 (lmax+2,)."""
    nk = lmax + 2
    l, _ = _degree_grid(ms, nk)
    m = ms[:, None]
    valid = l <= lmax
    lf = l.astype(np.float64)
    eps1 = epsilon(l + 1, m)
    c = norm_factor(l, norm)
    cu = norm_factor(l + 1, norm)

    mx_stdt = np.zeros((len(ms), nk, 2))
    mx_stdt[:, :, 0] = np.where(valid, -(cu / c) * (lf + 2.0) * eps1, 0.0)
    mx_stdt[:, :, 1] = np.where(valid, (c / cu) * lf * eps1, 0.0)
    mx_van = np.zeros((len(ms), nk, 2))
    mx_van[:, :, 0] = np.where(valid, -(cu / c) * lf * eps1, 0.0)
    mx_van[:, :, 1] = np.where(valid, (c / cu) * (lf + 2.0) * eps1, 0.0)

    ls = np.arange(nk, dtype=np.float64)
    l_2 = np.zeros(nk)
    l_2[1:] = 1.0 / (ls[1:] * (ls[1:] + 1.0))
    return mx_stdt, mx_van, l_2


class RecurrenceTables(eqx.Module):
    """
    Recurrence coefficients for every order of one configuration.

    Built once from (lmax, mmax, mres, norm, cs_phase); the arrays are plain
    numpy and shared read-only by every kernel.
    """

    lmax: int
    ms: np.ndarray
    alm: Float[np.ndarray, "nm K 2"]
    blm: Float[np.ndarray, "nm K 2"]
    clm: Float[np.ndarray, "nm KK 2"]
    xlm: Float[np.ndarray, "nm KK 3"]
    x2lm: Float[np.ndarray, "nm KK 3"]
    mx_stdt: Float[np.ndarray, "nm K 2"]
    mx_van: Float[np.ndarray, "nm K 2"]
    l_2: Float[np.ndarray, "K"]

    def __init__(self, config: SHTConfig):
        self.lmax = config.lmax
        self.ms = np.arange(config.nm) * config.mres
        K = sectoral_norm(self.ms, config.cs_phase)
        self.alm, self.blm = _direct_tables(self.ms, config.lmax, config.norm, K)
        self.clm, self.xlm, self.x2lm = _ishioka_tables(
            self.ms, config.lmax, config.norm, K
        )
        self.mx_stdt, self.mx_van, self.l_2 = _vector_tables(
            self.ms, config.lmax, config.norm
        )

    @property
    def nk(self) -> int:
        """Degree slots per order in the padded layout (lmax + 2)."""
        return self.lmax + 2

    @property
    def nkk(self) -> int:
        """Ishioka slots per order."""
        return self.clm.shape[1]


class SectoralStarts(eqx.Module):
    """
    Extended-range seeds of the recurrences on the northern rows.

    y_synth/e_synth seed alm (K_m c_m sin^m), y_anal/e_anal seed blm and
    y_psi/e_psi seed the Ishioka sequence (sqrt(2m+3) K_m sin^m).
    """

    y_synth: np.ndarray
    e_synth: np.ndarray
    y_anal: np.ndarray
    e_anal: np.ndarray
    y_psi: np.ndarray
    e_psi: np.ndarray

    def __init__(self, tables: RecurrenceTables, st: np.ndarray, use_extended: bool):
        y, e = extended.sectoral_start(tables.ms, st, use_extended)
        self.y_synth = y * tables.alm[:, 0, 0][:, None]
        self.y_anal = y * tables.blm[:, 0, 0][:, None]
        self.y_psi = y * tables.clm[:, 0, 0][:, None]
        self.e_synth = e
        self.e_anal = e.copy()
        self.e_psi = e.copy()


def polar_truncation(
    tables: RecurrenceTables,
    starts: SectoralStarts,
    ct_2: np.ndarray,
    threshold: float,
) -> np.ndarray:
    """
    First northern row kept for each order.

    Row j is skipped for order m when every |P_lm(theta_j)|, l <= lmax, lies
    below threshold times the largest |P_lm| of that order on the grid.  The
    kept rows are [tm, nlat - tm).  threshold == 0 keeps everything.
    """
    nm, n2 = starts.y_synth.shape
    if threshold <= 0.0 or n2 == 0:
        return np.zeros(nm, dtype=np.int64)
    alm = tables.alm
    y_prev = np.zeros((nm, n2))
    y = starts.y_synth.copy()
    e = starts.e_synth.copy()
    amax = np.where(e == 0, np.abs(y), 0.0)
    for k in range(1, tables.lmax + 1):
        y_new = alm[:, k, 0, None] * ct_2 * y - alm[:, k, 1, None] * y_prev
        y_prev, y, e = extended.rescale_step(y, y_new, e)
        live = (tables.ms + k <= tables.lmax)[:, None]
        amax = np.maximum(amax, np.where(live & (e == 0), np.abs(y), 0.0))
    peak = amax.max(axis=1, keepdims=True)
    significant = amax >= threshold * peak
    tm = np.where(significant.any(axis=1), significant.argmax(axis=1), n2)
    logger.debug(f"polar truncation: first kept row per order ranges {tm.min()}..{tm.max()}")
    return tm.astype(np.int64)
