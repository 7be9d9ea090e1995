"""
Spherical Grid Geometry
=======================

Latitude nodes, quadrature weights, longitude samples and the spectral index
tables of one transform configuration.

Key Concepts:
-------------
    • Colatitude theta in [0, pi]: theta=0 at North Pole, theta=pi at South Pole.
    • ct = cos(theta) ordered North to South, st = sin(theta), st_1 = 1/st
      (0 where st == 0, i.e. on the poles grid).
    • wg are the quadrature weights scaled by 2*pi so that sum(wg) = 4*pi.
    • The grid is mirror-symmetric: ct[nlat-1-j] = -ct[j].  Kernels work on
      the nlat_2 = (nlat+1)//2 northern rows and rebuild the south by parity.
    • Coefficient lm of degree l and order m = im*mres lives at
      lm_offset[im] + (l - m).

Grids:
------
    gauss   : Gauss-Legendre nodes (exact for degree <= 2*nlat - 1)
    regular : theta_j = (j + 1/2) pi / nlat with Fejer weights
    poles   : theta_j = j pi / (nlat - 1) with Clenshaw-Curtis weights

References:
-----------
[1] Boyd, J. P. (2001). Chebyshev and Fourier Spectral Methods.
[2] Trefethen, L. N. (2008). Is Gauss quadrature better than Clenshaw-Curtis?
    SIAM Review 50(1).
[3] Schaeffer, N. (2013). Efficient spherical harmonic transforms aimed at
    pseudospectral numerical simulations.  G3, 14(3).
"""

import equinox as eqx
from jaxtyping import Float, Int
import numpy as np

from ..config import GridKind, SHTConfig


def _gauss_legendre_nodes_weights(N: int):
    """
    Compute Gauss-Legendre nodes and weights via scipy.

    Returns:
    --------
    nodes : ndarray [N]
        GL nodes (cos(theta)) ordered North to South (1 to -1).
    weights : ndarray [N]
        GL weights summing to 2.  Ordered to match nodes.
    """
    from scipy.special import roots_legendre

    nodes, weights = roots_legendre(N)
    # roots_legendre returns ascending order (-1 to 1); reverse to North-South.
    return nodes[::-1].copy(), weights[::-1].copy()


def _fejer_nodes_weights(N: int):
    """
    Fejer's first rule on the equispaced grid theta_j = (j + 1/2) pi / N.

    w_j = (2/N) [1 - 2 sum_{k=1}^{N/2} cos(2 k theta_j) / (4k^2 - 1)]

    Exact for polynomials in cos(theta) of degree <= N - 1.
    """
    theta = (np.arange(N) + 0.5) * np.pi / N
    k = np.arange(1, N // 2 + 1)
    series = np.cos(2.0 * np.outer(theta, k)) / (4.0 * k**2 - 1.0)
    weights = 2.0 / N * (1.0 - 2.0 * series.sum(axis=1))
    return np.cos(theta), weights


def _clenshaw_curtis_nodes_weights(N: int):
    """
    Clenshaw-Curtis rule on theta_j = j pi / (N - 1), poles included.

    With n = N - 1:
        w_j = (c_j / n) [1 - sum_{k=1}^{n/2} b_k cos(2 k theta_j) / (4k^2 - 1)]
    c_j = 1 on the poles, 2 elsewhere; b_k = 1 when 2k == n, 2 otherwise.
    """
    n = N - 1
    theta = np.arange(N) * np.pi / n
    k = np.arange(1, n // 2 + 1)
    b = np.where(2 * k == n, 1.0, 2.0)
    series = b * np.cos(2.0 * np.outer(theta, k)) / (4.0 * k**2 - 1.0)
    c = np.full(N, 2.0)
    c[0] = c[-1] = 1.0
    weights = c / n * (1.0 - series.sum(axis=1))
    return np.cos(theta), weights


def latitude_nodes_weights(grid: GridKind, nlat: int):
    """
    Nodes cos(theta) and weights (summing to 2) of one latitude rule.

    The result is symmetrised so that mirrored rows are exact negatives of
    each other and the equator of an odd grid is exactly zero.
    """
    if grid is GridKind.GAUSS:
        ct, w = _gauss_legendre_nodes_weights(nlat)
    elif grid is GridKind.REGULAR:
        ct, w = _fejer_nodes_weights(nlat)
    else:
        ct, w = _clenshaw_curtis_nodes_weights(nlat)
    ct = 0.5 * (ct - ct[::-1])
    w = 0.5 * (w + w[::-1])
    return ct, w


def split_hemispheres(f, nlat: int):
    """
    (..., nlat) -> (north, mirrored south), both (..., nlat_2).

    For odd nlat both halves contain the equator row.
    """
    nlat_2 = (nlat + 1) // 2
    return f[..., :nlat_2], f[..., ::-1][..., :nlat_2]


def merge_hemispheres(north, south, nlat: int, xp=np):
    """Inverse of split_hemispheres: rebuild (..., nlat) from the two halves."""
    south = south[..., : nlat // 2][..., ::-1]
    return xp.concatenate([north, south], axis=-1)


class SphericalGeometry(eqx.Module):
    """
    Grid geometry and spectral indexing for one configuration.

    Attributes:
    -----------
    ct, st, st_1 : Float[ndarray, "nlat"]
        cos(theta), sin(theta) and 1/sin(theta) (0 on the poles).
    wg : Float[ndarray, "nlat"]
        Quadrature weights including the 2*pi longitude factor.
    theta : Float[ndarray, "nlat"]
    phi : Float[ndarray, "nphi"]
        Longitudes in [0, 2*pi/mres).
    wn_2 : Float[ndarray, "nlat_2"]
        Northern weights; the equator row of an odd grid carries half of its
        weight since it appears in both hemisphere sums.
    li, mi : Int[ndarray, "nlm"]
        Degree and order of every coefficient.
    lm_offset : Int[ndarray, "nm"]
        Start of each order's contiguous block.
    im_of_lm, k_of_lm : Int[ndarray, "nlm"]
        Order index and in-block offset (l - m) of every coefficient.
    padded_index : Int[ndarray, "nm lmax+2"]
        Gather index from flat coefficients to a padded (order, degree) array.
        Slots beyond lmax point at the sentinel nlm.
    """

    lmax: int
    mmax: int
    mres: int
    nlat: int
    nphi: int
    nlm: int
    grid: GridKind
    ct: Float[np.ndarray, "nlat"]
    st: Float[np.ndarray, "nlat"]
    st_1: Float[np.ndarray, "nlat"]
    wg: Float[np.ndarray, "nlat"]
    theta: Float[np.ndarray, "nlat"]
    phi: Float[np.ndarray, "nphi"]
    wn_2: Float[np.ndarray, "nlat_2"]
    li: Int[np.ndarray, "nlm"]
    mi: Int[np.ndarray, "nlm"]
    lm_offset: Int[np.ndarray, "nm"]
    im_of_lm: Int[np.ndarray, "nlm"]
    k_of_lm: Int[np.ndarray, "nlm"]
    padded_index: Int[np.ndarray, "nm K"]

    def __init__(self, config: SHTConfig):
        self.lmax = config.lmax
        self.mmax = config.mmax
        self.mres = config.mres
        self.nlat = config.nlat
        self.nphi = config.nphi
        self.nlm = config.nlm
        self.grid = config.grid

        ct, w = latitude_nodes_weights(config.grid, config.nlat)
        st = np.sqrt((1.0 - ct) * (1.0 + ct))
        self.ct = ct
        self.st = st
        self.st_1 = np.divide(1.0, st, out=np.zeros_like(st), where=st > 0.0)
        self.wg = 2.0 * np.pi * w
        self.theta = np.arccos(ct)
        self.phi = np.arange(config.nphi) * (2.0 * np.pi / (config.nphi * config.mres))

        wn_2 = self.wg[: config.nlat_2].copy()
        if config.nlat % 2 == 1:
            wn_2[-1] *= 0.5
        self.wn_2 = wn_2

        ms = self.m_values
        sizes = config.lmax - ms + 1
        offsets = np.concatenate([[0], np.cumsum(sizes)[:-1]]).astype(np.int64)
        self.lm_offset = offsets
        self.mi = np.repeat(ms, sizes)
        self.li = np.concatenate([np.arange(m, config.lmax + 1) for m in ms])
        self.im_of_lm = np.repeat(np.arange(config.nm), sizes)
        self.k_of_lm = self.li - self.mi

        k = np.arange(config.lmax + 2)
        valid = k[None, :] <= (config.lmax - ms)[:, None]
        self.padded_index = np.where(valid, offsets[:, None] + k[None, :], self.nlm)

    # ------------------------------------------------------------------

    @property
    def nm(self) -> int:
        return self.mmax + 1

    @property
    def nlat_2(self) -> int:
        return (self.nlat + 1) // 2

    @property
    def m_values(self) -> Int[np.ndarray, "nm"]:
        """Actual orders m = im * mres."""
        return np.arange(self.mmax + 1) * self.mres

    @property
    def ct_2(self) -> Float[np.ndarray, "nlat_2"]:
        return self.ct[: self.nlat_2]

    @property
    def st_2(self) -> Float[np.ndarray, "nlat_2"]:
        return self.st[: self.nlat_2]

    def idx(self, l: int, m: int) -> int:
        """Linear index of coefficient (l, m); m must be a multiple of mres."""
        return int(self.lm_offset[m // self.mres]) + l - m

    def order_block(self, im: int) -> slice:
        """Slice of the flat coefficient array holding order im."""
        start = int(self.lm_offset[im])
        return slice(start, start + self.lmax - im * self.mres + 1)
