"""
Vectorized Legendre Kernels (JAX)
=================================

Per-order Legendre kernels written with `jax.lax.scan` over degree so that
they can be `jax.vmap`-ed over orders and compiled with `jax.jit`.  The
degree axis is padded to lmax + 2 slots for every order; recurrence slots
past an order's last degree are zero, and one extra zero slot is appended so
the "next" coefficient read at the top of the recurrence is always defined.

Rows are the northern hemisphere padded to a multiple of vsize; padded rows
and polar rows skipped by the truncation carry a zero seed and contribute
nothing.

Extended range follows the reference kernels: a value contributes only once
its exponent is zero, and both live values are divided by SCALE when they
grow past 1 with a negative exponent.
"""

import equinox as eqx
import jax
from jax import lax
import jax.numpy as jnp
from jaxtyping import Array, Complex, Float, Int
import numpy as np

from . import coupling
from .extended import rescale_step
from .grid import merge_hemispheres, split_hemispheres


class OrderTables(eqx.Module):
    """
    Per-order tables, leading axis nm.  Passed through jit/vmap as a pytree.
    """

    em: Float[Array, "nm"]
    ab_s: Float[Array, "nm K1 2"]
    ab_a: Float[Array, "nm K1 2"]
    cab: Float[Array, "nm KK1 2"]
    xs: Float[Array, "nm KK 3"]
    xa: Float[Array, "nm KK 3"]
    y_s: Float[Array, "nm n"]
    e_s: Int[Array, "nm n"]
    y_a: Float[Array, "nm n"]
    e_a: Int[Array, "nm n"]
    y_i: Float[Array, "nm n"]
    e_i: Int[Array, "nm n"]
    mx_stdt: Float[Array, "nm K 2"]
    mx_van: Float[Array, "nm K 2"]
    l_2: Float[Array, "nm K"]
    lpad: Int[Array, "nm K"]
    ylm_s: Float[Array, "nm K nlat"] | None
    ylm_a: Float[Array, "nm K nlat"] | None


class SharedTables(eqx.Module):
    """Tables shared by all orders."""

    ct: Float[Array, "n"]
    wn: Float[Array, "n"]
    synth_factor: Float[Array, "nlat"]
    analys_factor: Float[Array, "nlat"]
    padded_index: Int[Array, "nm K"]
    im_of_lm: Int[Array, "nlm"]
    k_of_lm: Int[Array, "nlm"]


def _pad_rows(a, n, fill=0):
    width = n - a.shape[-1]
    return np.pad(a, [(0, 0)] * (a.ndim - 1) + [(0, width)], constant_values=fill)


def _append_zero_slot(a):
    return np.concatenate([a, np.zeros_like(a[:, :1])], axis=1)


def build_tables(config, geometry, tables, starts, tm, matrices=None):
    """
    Assemble OrderTables and SharedTables from the numpy precomputation.

    tm masks the polar rows by zeroing the seeds; matrices, when given, are
    the (ylm_s, ylm_a) pair of the "gauss" algorithm.
    """
    n = config.nlat_padded
    rows = np.arange(n)
    keep = rows[None, :] >= tm[:, None]

    def seed(y, e):
        y = np.where(keep, _pad_rows(y, n), 0.0)
        return jnp.asarray(y), jnp.asarray(_pad_rows(e, n))

    ms = tables.ms
    nk = config.lmax + 2
    l = ms[:, None] + np.arange(nk)[None, :]
    y_s, e_s = seed(starts.y_synth, starts.e_synth)
    y_a, e_a = seed(starts.y_anal, starts.e_anal)
    y_i, e_i = seed(starts.y_psi, starts.e_psi)
    l_2 = np.where(l <= config.lmax, tables.l_2[np.minimum(l, nk - 1)], 0.0)
    ylm_s = ylm_a = None
    if matrices is not None:
        ylm_s, ylm_a = (jnp.asarray(a) for a in matrices)
    order = OrderTables(
        em=jnp.asarray(ms, dtype=float),
        ab_s=jnp.asarray(_append_zero_slot(tables.alm)),
        ab_a=jnp.asarray(_append_zero_slot(tables.blm)),
        cab=jnp.asarray(_append_zero_slot(tables.clm)),
        xs=jnp.asarray(tables.xlm),
        xa=jnp.asarray(tables.x2lm),
        y_s=y_s,
        e_s=e_s,
        y_a=y_a,
        e_a=e_a,
        y_i=y_i,
        e_i=e_i,
        mx_stdt=jnp.asarray(tables.mx_stdt),
        mx_van=jnp.asarray(tables.mx_van),
        l_2=jnp.asarray(l_2),
        lpad=jnp.asarray(l),
        ylm_s=ylm_s,
        ylm_a=ylm_a,
    )
    if config.robert_form:
        synth_factor = np.ones(config.nlat)
        analys_factor = geometry.st_1**2
    else:
        synth_factor = geometry.st_1
        analys_factor = geometry.st_1
    shared = SharedTables(
        ct=jnp.asarray(_pad_rows(geometry.ct_2, n)),
        wn=jnp.asarray(_pad_rows(geometry.wn_2, n)),
        synth_factor=jnp.asarray(synth_factor),
        analys_factor=jnp.asarray(analys_factor),
        padded_index=jnp.asarray(geometry.padded_index),
        im_of_lm=jnp.asarray(geometry.im_of_lm),
        k_of_lm=jnp.asarray(geometry.k_of_lm),
    )
    return order, shared


def _rescale(y_prev, y, e):
    return rescale_step(y_prev, y, e, xp=jnp)


def _parity(nk):
    return (jnp.arange(nk) % 2).astype(float)


# ----------------------------------------------------------------------------
# Hemisphere kernels (one order)
# ----------------------------------------------------------------------------


def legendre_synthesis_m(ab, y0, e0, ct, q: Complex[Array, "B K"]):
    """Direct recurrence synthesis -> (north, south), each (B, n)."""
    nk = q.shape[-1]

    def step(carry, xs):
        y_prev, y, e, re, ro = carry
        ab_next, qk, odd = xs
        p = jnp.where(e == 0, y, 0.0)
        term = qk[:, None] * p[None, :]
        re = re + (1.0 - odd) * term
        ro = ro + odd * term
        y_new = ab_next[0] * ct * y - ab_next[1] * y_prev
        y, y_new, e = _rescale(y, y_new, e)
        return (y, y_new, e, re, ro), None

    acc = jnp.zeros((q.shape[0], ct.shape[0]), dtype=q.dtype)
    init = (jnp.zeros_like(y0), y0, e0, acc, acc)
    (_, _, _, re, ro), _ = lax.scan(step, init, (ab[1 : nk + 1], q.T, _parity(nk)))
    return re + ro, re - ro


def legendre_analysis_m(ab, y0, e0, ct, fe, fo, nk: int):
    """Direct recurrence projections -> (B, nk)."""

    def step(carry, xs):
        y_prev, y, e = carry
        ab_next, odd = xs
        p = jnp.where(e == 0, y, 0.0)
        qk = jnp.where(odd > 0, fo @ p, fe @ p)
        y_new = ab_next[0] * ct * y - ab_next[1] * y_prev
        y, y_new, e = _rescale(y, y_new, e)
        return (y, y_new, e), qk

    init = (jnp.zeros_like(y0), y0, e0)
    _, q = lax.scan(step, init, (ab[1 : nk + 1], _parity(nk)))
    return q.T


def ishioka_synthesis_m(cab, y0, e0, ct, qe, qo):
    """Ishioka synthesis from (qe, qo), each (B, nkk) -> (north, south)."""
    x = ct * ct
    nkk = qe.shape[-1]

    def step(carry, xs):
        y_prev, y, e, re, ro = carry
        c_next, qek, qok = xs
        p = jnp.where(e == 0, y, 0.0)
        re = re + qek[:, None] * p[None, :]
        ro = ro + qok[:, None] * p[None, :]
        y_new = (c_next[0] * x + c_next[1]) * y - y_prev
        y, y_new, e = _rescale(y, y_new, e)
        return (y, y_new, e, re, ro), None

    acc = jnp.zeros((qe.shape[0], ct.shape[0]), dtype=qe.dtype)
    init = (jnp.zeros_like(y0), y0, e0, acc, acc)
    (_, _, _, re, ro), _ = lax.scan(step, init, (cab[1 : nkk + 1], qe.T, qo.T))
    ro = ro * ct
    return re + ro, re - ro


def ishioka_analysis_m(cab, y0, e0, ct, fe, fo, nkk: int):
    """Ishioka projections -> (qe, qo), each (B, nkk)."""
    x = ct * ct
    fo = fo * ct

    def step(carry, c_next):
        y_prev, y, e = carry
        p = jnp.where(e == 0, y, 0.0)
        out = (fe @ p, fo @ p)
        y_new = (c_next[0] * x + c_next[1]) * y - y_prev
        y, y_new, e = _rescale(y, y_new, e)
        return (y, y_new, e), out

    init = (jnp.zeros_like(y0), y0, e0)
    _, (qe, qo) = lax.scan(step, init, cab[1 : nkk + 1])
    return qe.T, qo.T


# ----------------------------------------------------------------------------
# Full-latitude Legendre stage (one order)
# ----------------------------------------------------------------------------


class LegendreStage(eqx.Module):
    """
    Per-order Legendre stage on all latitude rows.

    method is "direct", "ishioka" or "gauss".
    """

    method: str
    nlat: int
    nlat_2: int

    def synth(self, ot: OrderTables, sh: SharedTables, q):
        """q (B, K) -> (B, nlat); ot is the slice of one order."""
        if self.method == "gauss":
            return jnp.einsum("bk,kj->bj", q, ot.ylm_s)
        if self.method == "ishioka":
            qe, qo = coupling.to_ishioka(ot.xs, q, xp=jnp)
            north, south = ishioka_synthesis_m(ot.cab, ot.y_i, ot.e_i, sh.ct, qe, qo)
        else:
            north, south = legendre_synthesis_m(ot.ab_s, ot.y_s, ot.e_s, sh.ct, q)
        n2 = self.nlat_2
        return merge_hemispheres(north[:, :n2], south[:, :n2], self.nlat, xp=jnp)

    def analys(self, ot: OrderTables, sh: SharedTables, F):
        """F (B, nlat) -> (B, K)."""
        nk = ot.lpad.shape[-1]
        if self.method == "gauss":
            return jnp.einsum("bj,kj->bk", F, ot.ylm_a)
        north, south = split_hemispheres(F, self.nlat)
        width = sh.ct.shape[0] - north.shape[-1]
        pad = [(0, 0), (0, width)]
        fe = jnp.pad(north + south, pad) * sh.wn
        fo = jnp.pad(north - south, pad) * sh.wn
        if self.method == "ishioka":
            nkk = ot.xa.shape[-2]
            qe, qo = ishioka_analysis_m(ot.cab, ot.y_i, ot.e_i, sh.ct, fe, fo, nkk)
            return coupling.from_ishioka(ot.xa, qe, qo, nk, xp=jnp)
        return legendre_analysis_m(ot.ab_a, ot.y_a, ot.e_a, sh.ct, fe, fo, nk)


def take_order(ot: OrderTables, im):
    """Slice of one order (im may be traced)."""
    return jax.tree_util.tree_map(lambda a: a[im], ot)
