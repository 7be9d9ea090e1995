"""
Reference Legendre Kernels
==========================

Per-order numpy kernels of the on-the-fly Legendre stage.  They loop over
degree and vectorize over the northern latitude rows; the southern rows are
recovered from the parity of P_lm: even offsets k = l - m are symmetric,
odd offsets antisymmetric about the equator.

    synthesis : north = even + odd,  south = even - odd
    analysis  : fe = w (F_N + F_S) for even offsets,
                fo = w (F_N - F_S) for odd offsets

All kernels accept a leading batch of fields that share the order (the V/W
pair of a vector transform).  Recurrence values are carried in extended range
and only contribute once their exponent is zero.  Leading degrees whose
values never exceed `accuracy` on any row are skipped.

These kernels are the correctness oracle of the vectorized backend.
"""

import numpy as np

from .extended import rescale_step


def _gate(y, e):
    return np.where(e == 0, y, 0.0)


def legendre_synthesis_m(ab, y0, e0, ct, ql, accuracy=0.0):
    """
    Synthesize one order on the northern rows with the direct recurrence.

    Parameters:
    -----------
    ab : Float[ndarray, "K 2"]
        Recurrence block of this order (alm[im]).
    y0, e0 : ndarray [n]
        Extended-range seed (already multiplied by the block's slot 0).
    ct : Float[ndarray, "n"]
        cos(theta) of the rows.
    ql : Complex[ndarray, "B nk"]
        Coefficients of degrees m .. m+nk-1.

    Returns:
    --------
    north, south : Complex[ndarray, "B n"]
    """
    ql = np.atleast_2d(ql)
    n = ct.shape[0]
    re = np.zeros((ql.shape[0], n), dtype=np.complex128)
    ro = np.zeros_like(re)
    y_prev = np.zeros(n)
    y, e = y0.copy(), e0.copy()
    active = False
    for k in range(ql.shape[1]):
        if k > 0:
            y_new = ab[k, 0] * ct * y - ab[k, 1] * y_prev
            y_prev, y, e = rescale_step(y, y_new, e)
        p = _gate(y, e)
        if not active:
            active = bool(np.any(np.abs(p) > accuracy))
            if not active:
                continue
        if k % 2 == 0:
            re += ql[:, k, None] * p
        else:
            ro += ql[:, k, None] * p
    return re + ro, re - ro


def legendre_analysis_m(ab, y0, e0, ct, fe, fo, nk, accuracy=0.0):
    """
    Project hemisphere-combined samples of one order on degrees m .. m+nk-1.

    fe, fo : Complex[ndarray, "B n"]  weighted (F_N + F_S) and (F_N - F_S).
    Returns ql : Complex[ndarray, "B nk"]
    """
    n = ct.shape[0]
    ql = np.zeros((fe.shape[0], nk), dtype=np.complex128)
    y_prev = np.zeros(n)
    y, e = y0.copy(), e0.copy()
    active = False
    for k in range(nk):
        if k > 0:
            y_new = ab[k, 0] * ct * y - ab[k, 1] * y_prev
            y_prev, y, e = rescale_step(y, y_new, e)
        p = _gate(y, e)
        if not active:
            active = bool(np.any(np.abs(p) > accuracy))
            if not active:
                continue
        ql[:, k] = (fe if k % 2 == 0 else fo) @ p
    return ql


def ishioka_synthesis_m(cab, y0, e0, ct, qe, qo, accuracy=0.0):
    """
    Synthesize one order from Ishioka coefficients.

    qe, qo : Complex[ndarray, "B nkk"]  even and odd Ishioka coefficients
    (see coupling.sh_to_ishioka).  The odd sum is multiplied by mu once at
    the end.
    """
    n = ct.shape[0]
    x = ct * ct
    re = np.zeros((qe.shape[0], n), dtype=np.complex128)
    ro = np.zeros_like(re)
    y_prev = np.zeros(n)
    y, e = y0.copy(), e0.copy()
    active = False
    for k in range(qe.shape[1]):
        if k > 0:
            y_new = (cab[k, 0] * x + cab[k, 1]) * y - y_prev
            y_prev, y, e = rescale_step(y, y_new, e)
        p = _gate(y, e)
        if not active:
            active = bool(np.any(np.abs(p) > accuracy))
            if not active:
                continue
        re += qe[:, k, None] * p
        ro += qo[:, k, None] * p
    ro *= ct
    return re + ro, re - ro


def ishioka_analysis_m(cab, y0, e0, ct, fe, fo, nkk, accuracy=0.0):
    """Ishioka projections (qe, qo), each Complex[ndarray, "B nkk"]."""
    n = ct.shape[0]
    x = ct * ct
    fo = fo * ct
    qe = np.zeros((fe.shape[0], nkk), dtype=np.complex128)
    qo = np.zeros_like(qe)
    y_prev = np.zeros(n)
    y, e = y0.copy(), e0.copy()
    active = False
    for k in range(nkk):
        if k > 0:
            y_new = (cab[k, 0] * x + cab[k, 1]) * y - y_prev
            y_prev, y, e = rescale_step(y, y_new, e)
        p = _gate(y, e)
        if not active:
            active = bool(np.any(np.abs(p) > accuracy))
            if not active:
                continue
        qe[:, k] = fe @ p
        qo[:, k] = fo @ p
    return qe, qo


def legendre_table(ab, y0, e0, ct, nk):
    """
    Values of the functions generated by `ab` on the rows: Float[ndarray, "nk n"].

    Values still in extended range (e < 0) are returned as zero.
    """
    n = ct.shape[0]
    P = np.zeros((nk, n))
    y_prev = np.zeros(n)
    y, e = y0.copy(), e0.copy()
    for k in range(nk):
        if k > 0:
            y_new = ab[k, 0] * ct * y - ab[k, 1] * y_prev
            y_prev, y, e = rescale_step(y, y_new, e)
        P[k] = _gate(y, e)
    return P
