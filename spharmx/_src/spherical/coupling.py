"""
Spectral Coupling
=================

Per-order conversions between the spheroidal/toroidal potentials (S, T) of a
tangent vector field and the two auxiliary scalar fields

    V = sin(theta) V_theta,        W = sin(theta) V_phi,

with V_theta = dS/dtheta + (1/sin) dT/dphi and V_phi = (1/sin) dS/dphi - dT/dtheta.
In spectral space sin(theta) d/dtheta couples neighbouring degrees only:

    V_l = A_{l-1} S_{l-1} + B_{l+1} S_{l+1} + i m T_l
    W_l = i m S_l - (A_{l-1} T_{l-1} + B_{l+1} T_{l+1})

so V and W reach degree llim + 1.  Analysis inverts this with the mx_van
couplings and the 1/(l(l+1)) factors:

    S_l = -(Mv V' + i m W')_l / (l(l+1))
    T_l = -(i m V' - Mv W')_l / (l(l+1))

where V' = V_theta / sin(theta) and W' = V_phi / sin(theta) are analysed up to
llim + 1.

The i*m factor is an explicit exact zero when m == 0.

Two renditions are provided:

    • loop forms (sh_vect_to_2scal, ...) walk the degrees of one order with
      carried state.  Used by the reference backend.
    • array forms (vect_to_2scal, ...) act on the last axis of padded arrays
      with shifts and `xp` = numpy or jax.numpy.  Used by the vectorized
      backend, where they are vmapped over orders.

The Ishioka conversions (sh_to_ishioka, ishioka_to_sh) fold the
normalization and the even/odd splitting into one triple of factors per
Ishioka slot.
"""

import numpy as np


def _i_times(em, z):
    """i*m*z, exactly zero for m == 0."""
    if em == 0:
        return 0j
    return 1j * em * z


# ----------------------------------------------------------------------------
# Loop forms (one order, degrees walked in order)
# ----------------------------------------------------------------------------


def sh_vect_to_2scal(mx, llim_m, em, sl, tl):
    """
    (S, T) of one order -> (V, W) spectra.

    Parameters:
    -----------
    mx : Float[ndarray, "K 2"]
        mx_stdt block of this order.
    llim_m : int
        Last offset k = l - m carried by S and T.
    em : int
        Order m.
    sl, tl : Complex[ndarray, "llim_m+1"]

    Returns:
    --------
    vw : Complex[ndarray, "llim_m+2 2"]
        vw[k, 0] = V_{m+k}, vw[k, 1] = W_{m+k}.
    """
    vw = np.zeros((llim_m + 2, 2), dtype=np.complex128)
    s, t = sl[0], tl[0]
    vs = _i_times(em, t)
    wt = _i_times(em, s)
    for k in range(llim_m):
        s1, t1 = sl[k + 1], tl[k + 1]
        up, dn = mx[k, 0], mx[k, 1]
        vw[k, 0] = vs + up * s1
        vw[k, 1] = wt - up * t1
        vs = _i_times(em, t1) + dn * s
        wt = _i_times(em, s1) - dn * t
        s, t = s1, t1
    dn = mx[llim_m, 1]
    vw[llim_m, 0] = vs
    vw[llim_m, 1] = wt
    vw[llim_m + 1, 0] = dn * s
    vw[llim_m + 1, 1] = -dn * t
    return vw


def shsph_to_2scal(mx, llim_m, em, sl):
    """Spheroidal part only: V from S through the couplings, W = i m S."""
    vw = np.zeros((llim_m + 2, 2), dtype=np.complex128)
    s = sl[0]
    vs = 0.0j
    for k in range(llim_m):
        s1 = sl[k + 1]
        vw[k, 0] = vs + mx[k, 0] * s1
        vw[k, 1] = _i_times(em, s)
        vs = mx[k, 1] * s
        s = s1
    vw[llim_m, 0] = vs
    vw[llim_m, 1] = _i_times(em, s)
    vw[llim_m + 1, 0] = mx[llim_m, 1] * s
    return vw


def shtor_to_2scal(mx, llim_m, em, tl):
    """Toroidal part only: V = i m T, W from -T through the couplings."""
    vw = np.zeros((llim_m + 2, 2), dtype=np.complex128)
    t = tl[0]
    wt = 0.0j
    for k in range(llim_m):
        t1 = tl[k + 1]
        vw[k, 0] = _i_times(em, t)
        vw[k, 1] = wt - mx[k, 0] * t1
        wt = -mx[k, 1] * t
        t = t1
    vw[llim_m, 0] = _i_times(em, t)
    vw[llim_m, 1] = wt
    vw[llim_m + 1, 1] = -mx[llim_m, 1] * t
    return vw


def sh_2scal_to_vect(mx, l_2, llim_m, em, vw):
    """
    (V', W') spectra of one order (offsets 0 .. llim_m+1) -> (S, T).

    mx is the mx_van block, l_2[k] = 1/(l(l+1)) for l = m + k.
    """
    sl = np.zeros(llim_m + 1, dtype=np.complex128)
    tl = np.zeros(llim_m + 1, dtype=np.complex128)
    s_carry = 0.0j
    t_carry = 0.0j
    for k in range(llim_m + 1):
        v, w = vw[k, 0], vw[k, 1]
        vu, wu = vw[k + 1, 0], vw[k + 1, 1]
        up, dn = mx[k, 0], mx[k, 1]
        s = s_carry + _i_times(em, w) + up * vu
        t = t_carry + _i_times(em, v) - up * wu
        s_carry = dn * v
        t_carry = -dn * w
        sl[k] = -s * l_2[k]
        tl[k] = -t * l_2[k]
    return sl, tl


def sh_to_ishioka(xlm, ql, llim_m):
    """
    Degree coefficients (offsets 0 .. llim_m) -> Ishioka (qe, qo).

    ql may carry leading batch axes; the offset axis is the last one.
    qe[k] = x0_k Q_{2k} + x1_k Q_{2k+2},  qo[k] = x2_k Q_{2k+1}.
    """
    nkk = llim_m // 2 + 1
    shape = ql.shape[:-1] + (nkk,)
    qe = np.zeros(shape, dtype=np.complex128)
    qo = np.zeros(shape, dtype=np.complex128)
    for k in range(nkk):
        q = xlm[k, 0] * ql[..., 2 * k]
        if 2 * k + 2 <= llim_m:
            q = q + xlm[k, 1] * ql[..., 2 * k + 2]
        qe[..., k] = q
        if 2 * k + 1 <= llim_m:
            qo[..., k] = xlm[k, 2] * ql[..., 2 * k + 1]
    return qe, qo


def ishioka_to_sh(x2lm, qe, qo, llim_m):
    """
    Ishioka projections -> degree coefficients (offsets 0 .. llim_m).

    Q_{2k} = x0_k qe[k] + x1_{k-1} qe[k-1],  Q_{2k+1} = x2_k qo[k].
    """
    ql = np.zeros(qe.shape[:-1] + (llim_m + 1,), dtype=np.complex128)
    for k in range(llim_m + 1):
        j = k // 2
        if k % 2 == 0:
            q = x2lm[j, 0] * qe[..., j]
            if j > 0:
                q = q + x2lm[j - 1, 1] * qe[..., j - 1]
            ql[..., k] = q
        else:
            ql[..., k] = x2lm[j, 2] * qo[..., j]
    return ql


# ----------------------------------------------------------------------------
# Array forms (padded offsets on the last axis, xp = numpy or jax.numpy)
# ----------------------------------------------------------------------------


def _shift_up(x, xp):
    """y[k] = x[k+1], zero at the end."""
    pad = xp.zeros_like(x[..., :1])
    return xp.concatenate([x[..., 1:], pad], axis=-1)


def _shift_down(x, xp):
    """y[k] = x[k-1], zero at the start."""
    pad = xp.zeros_like(x[..., :1])
    return xp.concatenate([pad, x[..., :-1]], axis=-1)


def _i_times_arr(em, z, xp):
    return xp.where(em == 0, 0.0, 1j * em * z)


def vect_to_2scal(mx, em, sl, tl, xp=np):
    """Padded (S, T) -> (V, W); slots must reach one degree past S and T."""
    up, dn = mx[..., 0], mx[..., 1]
    v = _shift_down(dn * sl, xp) + up * _shift_up(sl, xp) + _i_times_arr(em, tl, xp)
    w = _i_times_arr(em, sl, xp) - _shift_down(dn * tl, xp) - up * _shift_up(tl, xp)
    return v, w


def sph_to_2scal(mx, em, sl, xp=np):
    v = _shift_down(mx[..., 1] * sl, xp) + mx[..., 0] * _shift_up(sl, xp)
    return v, _i_times_arr(em, sl, xp)


def tor_to_2scal(mx, em, tl, xp=np):
    w = -_shift_down(mx[..., 1] * tl, xp) - mx[..., 0] * _shift_up(tl, xp)
    return _i_times_arr(em, tl, xp), w


def twoscal_to_vect(mx, l_2, em, v, w, xp=np):
    """Padded (V', W') -> (S, T)."""
    up, dn = mx[..., 0], mx[..., 1]
    s = up * _shift_up(v, xp) + _shift_down(dn * v, xp) + _i_times_arr(em, w, xp)
    t = _i_times_arr(em, v, xp) - up * _shift_up(w, xp) - _shift_down(dn * w, xp)
    return -s * l_2, -t * l_2


def to_ishioka(xlm, q, xp=np):
    """
    Padded degree coefficients (..., K) -> Ishioka (qe, qo), each (..., nkk).
    """
    nkk = xlm.shape[-2]
    width = 2 * nkk + 2
    pad = xp.zeros(q.shape[:-1] + (width - q.shape[-1],), dtype=q.dtype)
    qp = xp.concatenate([q, pad], axis=-1)
    even = qp[..., 0 : 2 * nkk : 2]
    even_next = qp[..., 2 : 2 * nkk + 2 : 2]
    odd = qp[..., 1 : 2 * nkk + 1 : 2]
    qe = xlm[..., 0] * even + xlm[..., 1] * even_next
    qo = xlm[..., 2] * odd
    return qe, qo


def from_ishioka(x2lm, qe, qo, nk, xp=np):
    """Ishioka projections (..., nkk) -> padded degree coefficients (..., nk)."""
    even = x2lm[..., 0] * qe + _shift_down(x2lm[..., 1] * qe, xp)
    odd = x2lm[..., 2] * qo
    q = xp.stack([even, odd], axis=-1).reshape(qe.shape[:-1] + (2 * qe.shape[-1],))
    return q[..., :nk]
