"""
Tests for the spheroidal/toroidal couplings and the Ishioka conversions.

The loop forms (reference backend) and the array forms (vectorized backend)
must agree on every order.
"""

import jax.numpy as jnp
import numpy as np
import pytest

from spharmx._src.config import SHTConfig
from spharmx._src.spherical import coupling
from spharmx._src.spherical.recurrence import RecurrenceTables

LMAX = 9


@pytest.fixture(scope="module")
def tables():
    return RecurrenceTables(SHTConfig(LMAX, backend="reference"))


def random_order(rng, n):
    return rng.standard_normal(n) + 1j * rng.standard_normal(n)


def padded(x, width=LMAX + 2):
    out = np.zeros(width, dtype=np.complex128)
    out[: len(x)] = x
    return out


def order_l_2(tables, m):
    l = m + np.arange(LMAX + 2)
    return np.where(l <= LMAX, tables.l_2[np.minimum(l, LMAX + 1)], 0.0)


# ---------------------------------------------------------------------------
# The m = 0 branch
# ---------------------------------------------------------------------------


def test_i_times_is_exact_zero_for_axisymmetric_order():
    assert coupling._i_times(0, np.inf) == 0j
    assert coupling._i_times(2, 1.5) == 3j


def test_toroidal_axisymmetric_v_is_exactly_zero(tables, rng):
    """A zonal toroidal field has no colatitude component: V = i*0*T = 0."""
    tl = random_order(rng, LMAX + 1)
    vw = coupling.shtor_to_2scal(tables.mx_stdt[0], LMAX, 0, tl)
    assert np.all(vw[:, 0] == 0.0)
    v, _ = coupling.tor_to_2scal(tables.mx_stdt[0], 0, padded(tl))
    assert np.all(v == 0.0)


def test_spheroidal_axisymmetric_w_is_exactly_zero(tables, rng):
    sl = random_order(rng, LMAX + 1)
    vw = coupling.shsph_to_2scal(tables.mx_stdt[0], LMAX, 0, sl)
    assert np.all(vw[:, 1] == 0.0)


# ---------------------------------------------------------------------------
# Loop forms against array forms
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("im", [0, 1, 4, LMAX])
def test_vector_to_two_scalars_forms_agree(tables, rng, im):
    m = int(tables.ms[im])
    llim_m = LMAX - m
    sl = random_order(rng, llim_m + 1)
    tl = random_order(rng, llim_m + 1)
    mx = tables.mx_stdt[im]

    vw = coupling.sh_vect_to_2scal(mx, llim_m, m, sl, tl)
    v, w = coupling.vect_to_2scal(mx, m, padded(sl), padded(tl))
    assert vw.shape == (llim_m + 2, 2)
    assert np.allclose(vw[:, 0], v[: llim_m + 2], atol=1e-14)
    assert np.allclose(vw[:, 1], w[: llim_m + 2], atol=1e-14)


@pytest.mark.parametrize("im", [0, 3, LMAX - 1])
def test_partial_couplings_add_up(tables, rng, im):
    """Spheroidal and toroidal parts sum to the full coupling."""
    m = int(tables.ms[im])
    llim_m = LMAX - m
    sl = random_order(rng, llim_m + 1)
    tl = random_order(rng, llim_m + 1)
    mx = tables.mx_stdt[im]
    full = coupling.sh_vect_to_2scal(mx, llim_m, m, sl, tl)
    parts = coupling.shsph_to_2scal(mx, llim_m, m, sl) + coupling.shtor_to_2scal(
        mx, llim_m, m, tl
    )
    assert np.allclose(full, parts, atol=1e-14)

    v_s, w_s = coupling.sph_to_2scal(mx, m, padded(sl))
    v_t, w_t = coupling.tor_to_2scal(mx, m, padded(tl))
    assert np.allclose(full[:, 0], (v_s + v_t)[: llim_m + 2], atol=1e-14)
    assert np.allclose(full[:, 1], (w_s + w_t)[: llim_m + 2], atol=1e-14)


@pytest.mark.parametrize("im", [0, 2, LMAX])
def test_two_scalars_to_vector_forms_agree(tables, rng, im):
    m = int(tables.ms[im])
    llim_m = LMAX - m
    vw = np.stack(
        [random_order(rng, llim_m + 2), random_order(rng, llim_m + 2)], axis=-1
    )
    mx = tables.mx_van[im]

    sl, tl = coupling.sh_2scal_to_vect(mx, tables.l_2[m:], llim_m, m, vw)
    s, t = coupling.twoscal_to_vect(
        mx, order_l_2(tables, m), m, padded(vw[:, 0]), padded(vw[:, 1])
    )
    assert np.allclose(sl, s[: llim_m + 1], atol=1e-14)
    assert np.allclose(tl, t[: llim_m + 1], atol=1e-14)
    if m == 0:
        assert sl[0] == 0.0 and tl[0] == 0.0


def test_array_forms_trace_with_jax(tables, rng):
    """The same array code runs on jax.numpy arrays."""
    m = 2
    sl = padded(random_order(rng, LMAX - 1))
    tl = padded(random_order(rng, LMAX - 1))
    mx = tables.mx_stdt[m]
    v_np, w_np = coupling.vect_to_2scal(mx, m, sl, tl)
    v_j, w_j = coupling.vect_to_2scal(
        jnp.asarray(mx), jnp.asarray(float(m)), jnp.asarray(sl), jnp.asarray(tl), xp=jnp
    )
    assert jnp.allclose(v_j, v_np, atol=1e-14)
    assert jnp.allclose(w_j, w_np, atol=1e-14)


# ---------------------------------------------------------------------------
# Ishioka conversions
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("im", [0, 1, 5, LMAX])
def test_ishioka_forms_agree(tables, rng, im):
    m = int(tables.ms[im])
    llim_m = LMAX - m
    ql = random_order(rng, llim_m + 1)
    nkk = llim_m // 2 + 1

    qe, qo = coupling.sh_to_ishioka(tables.xlm[im], ql, llim_m)
    qe_a, qo_a = coupling.to_ishioka(tables.xlm[im], padded(ql))
    assert qe.shape == qo.shape == (nkk,)
    assert np.allclose(qe, qe_a[:nkk], atol=1e-14)
    assert np.allclose(qo, qo_a[:nkk], atol=1e-14)

    back = coupling.ishioka_to_sh(tables.x2lm[im], qe, qo, llim_m)
    back_a = coupling.from_ishioka(tables.x2lm[im], qe_a, qo_a, LMAX + 2)
    assert np.allclose(back, back_a[: llim_m + 1], atol=1e-13)


def test_ishioka_conversions_batch_vector_pairs(tables, rng):
    """A (2, n) V/W block converts row by row, as the vector path uses it."""
    im = 3
    llim_m = LMAX - im
    vw = np.stack([random_order(rng, llim_m + 1), random_order(rng, llim_m + 1)])
    qe, qo = coupling.sh_to_ishioka(tables.xlm[im], vw, llim_m)
    assert qe.shape == qo.shape == (2, llim_m // 2 + 1)
    for j in range(2):
        qe_j, qo_j = coupling.sh_to_ishioka(tables.xlm[im], vw[j], llim_m)
        assert np.array_equal(qe[j], qe_j)
        assert np.array_equal(qo[j], qo_j)
    back = coupling.ishioka_to_sh(tables.x2lm[im], qe, qo, llim_m)
    assert back.shape == vw.shape
    assert np.array_equal(
        back[1], coupling.ishioka_to_sh(tables.x2lm[im], qe[1], qo[1], llim_m)
    )
