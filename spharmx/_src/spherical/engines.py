"""
Execution Engines
=================

An engine binds a Legendre stage, the spectral couplings and the Fourier
stage into the eight transform operations, each in a standard form (all
orders, spatial fields) and an order-restricted form (one order, latitude
profiles).

    ReferenceEngine  : numpy, one order at a time with carried-state loops,
                       orders spread over a thread pool.
    VectorizedEngine : JAX, all orders at once (vmap over orders, scan over
                       degree), compiled with jit.

Order-restricted profiles are complex arrays of length nlat: the Fourier
coefficient of order m along the meridian, as produced by FourierStage.
"""

from concurrent.futures import ThreadPoolExecutor

import jax
import jax.numpy as jnp
from loguru import logger
import numpy as np

from ..config import Recurrence
from . import coupling, kernels
from .accelerator import place
from .fourier import FourierStage
from .grid import merge_hemispheres, split_hemispheres
from .vectorized import LegendreStage, build_tables, take_order


class FlyLegendre:
    """Reference on-the-fly Legendre stage (direct or Ishioka recurrence)."""

    def __init__(self, config, geometry, tables, starts, tm):
        self.ishioka = config.recurrence is Recurrence.ISHIOKA
        self.accuracy = config.accuracy
        self.nlat = config.nlat
        self.tables = tables
        self.starts = starts
        self.tm = tm
        self.ct_2 = geometry.ct_2
        self.wn_2 = geometry.wn_2

    def synth_m(self, im, ql):
        nlat, j0 = self.nlat, int(self.tm[im])
        ct = self.ct_2[j0:]
        t, s = self.tables, self.starts
        if self.ishioka:
            qe, qo = coupling.sh_to_ishioka(t.xlm[im], ql, ql.shape[-1] - 1)
            north, south = kernels.ishioka_synthesis_m(
                t.clm[im], s.y_psi[im, j0:], s.e_psi[im, j0:], ct, qe, qo, self.accuracy
            )
        else:
            north, south = kernels.legendre_synthesis_m(
                t.alm[im], s.y_synth[im, j0:], s.e_synth[im, j0:], ct, ql, self.accuracy
            )
        pad = np.zeros((ql.shape[0], j0), dtype=np.complex128)
        north = np.concatenate([pad, north], axis=-1)
        south = np.concatenate([pad, south], axis=-1)
        return merge_hemispheres(north, south, nlat)

    def analys_m(self, im, F, nk):
        j0 = int(self.tm[im])
        north, south = split_hemispheres(F, self.nlat)
        w = self.wn_2[j0:]
        fe = (north + south)[:, j0:] * w
        fo = (north - south)[:, j0:] * w
        ct = self.ct_2[j0:]
        t, s = self.tables, self.starts
        if self.ishioka:
            llim_m = nk - 1
            nkk = llim_m // 2 + 1
            qe, qo = kernels.ishioka_analysis_m(
                t.clm[im], s.y_psi[im, j0:], s.e_psi[im, j0:], ct, fe, fo, nkk, self.accuracy
            )
            return coupling.ishioka_to_sh(t.x2lm[im], qe, qo, llim_m)
        return kernels.legendre_analysis_m(
            t.blm[im], s.y_anal[im, j0:], s.e_anal[im, j0:], ct, fe, fo, nk, self.accuracy
        )


class ReferenceEngine:
    """
    Numpy engine.  `legendre` is a per-order stage (FlyLegendre, GaussLegendre
    or DctLegendre).
    """

    def __init__(self, config, geometry, tables, legendre):
        self.config = config
        self.geometry = geometry
        self.tables = tables
        self.legendre = legendre
        self.fourier = FourierStage(
            config.nphi, config.nm, use_jax=False, workers=config.nthreads
        )
        self._pool = None
        if config.nthreads > 1 and config.nm > 1:
            self._pool = ThreadPoolExecutor(max_workers=config.nthreads)
        if config.robert_form:
            self._synth_factor = np.ones(config.nlat)
            self._analys_factor = geometry.st_1**2
        else:
            self._synth_factor = geometry.st_1
            self._analys_factor = geometry.st_1

    def close(self):
        if self._pool is not None:
            self._pool.shutdown(wait=True)

    def _map_orders(self, fn):
        orders = range(self.config.nm)
        if self._pool is None:
            return [fn(im) for im in orders]
        return list(self._pool.map(fn, orders))

    def _llim_m(self, im, llim):
        return llim - im * self.config.mres

    def _blocks(self, qlm, im, llim):
        start = int(self.geometry.lm_offset[im])
        return np.asarray(qlm)[start : start + self._llim_m(im, llim) + 1]

    def _scatter(self, blocks, llim):
        qlm = np.zeros(self.config.nlm, dtype=np.complex128)
        for im, ql in enumerate(blocks):
            start = int(self.geometry.lm_offset[im])
            qlm[start : start + len(ql)] = ql
        return qlm

    # ------------------------------------------------------------------
    # Order-restricted operations
    # ------------------------------------------------------------------

    def scalar_synth_ml(self, im, ql, llim):
        llim_m = self._llim_m(im, llim)
        if llim_m < 0:
            return np.zeros(self.config.nlat, dtype=np.complex128)
        ql = np.asarray(ql, dtype=np.complex128)[None, : llim_m + 1]
        return self.legendre.synth_m(im, ql)[0]

    def scalar_analysis_ml(self, im, vr_m, llim):
        llim_m = self._llim_m(im, llim)
        if llim_m < 0:
            return np.zeros(0, dtype=np.complex128)
        F = np.asarray(vr_m, dtype=np.complex128)[None]
        return self.legendre.analys_m(im, F, llim_m + 1)[0]

    def _vw_synth(self, im, vw):
        F = self.legendre.synth_m(im, np.ascontiguousarray(vw.T))
        F = F * self._synth_factor
        return F[0], F[1]

    def vector_synth_ml(self, im, sl, tl, llim):
        llim_m = self._llim_m(im, llim)
        if llim_m < 0:
            zero = np.zeros(self.config.nlat, dtype=np.complex128)
            return zero, zero.copy()
        em = int(self.tables.ms[im])
        vw = coupling.sh_vect_to_2scal(
            self.tables.mx_stdt[im], llim_m, em, np.asarray(sl), np.asarray(tl)
        )
        return self._vw_synth(im, vw)

    def grad_sph_ml(self, im, sl, llim):
        llim_m = self._llim_m(im, llim)
        if llim_m < 0:
            zero = np.zeros(self.config.nlat, dtype=np.complex128)
            return zero, zero.copy()
        em = int(self.tables.ms[im])
        vw = coupling.shsph_to_2scal(self.tables.mx_stdt[im], llim_m, em, np.asarray(sl))
        return self._vw_synth(im, vw)

    def grad_tor_ml(self, im, tl, llim):
        llim_m = self._llim_m(im, llim)
        if llim_m < 0:
            zero = np.zeros(self.config.nlat, dtype=np.complex128)
            return zero, zero.copy()
        em = int(self.tables.ms[im])
        vw = coupling.shtor_to_2scal(self.tables.mx_stdt[im], llim_m, em, np.asarray(tl))
        return self._vw_synth(im, vw)

    def vector_analysis_ml(self, im, vt_m, vp_m, llim):
        llim_m = self._llim_m(im, llim)
        if llim_m < 0:
            zero = np.zeros(0, dtype=np.complex128)
            return zero, zero.copy()
        F = np.stack([np.asarray(vt_m), np.asarray(vp_m)]).astype(np.complex128)
        F = F * self._analys_factor
        vw = self.legendre.analys_m(im, F, llim_m + 2).T
        m = int(self.tables.ms[im])
        return coupling.sh_2scal_to_vect(
            self.tables.mx_van[im], self.tables.l_2[m:], llim_m, m, vw
        )

    def qst_synth_ml(self, im, ql, sl, tl, llim):
        vr = self.scalar_synth_ml(im, ql, llim)
        vt, vp = self.vector_synth_ml(im, sl, tl, llim)
        return vr, vt, vp

    def qst_analysis_ml(self, im, vr_m, vt_m, vp_m, llim):
        ql = self.scalar_analysis_ml(im, vr_m, llim)
        sl, tl = self.vector_analysis_ml(im, vt_m, vp_m, llim)
        return ql, sl, tl

    # ------------------------------------------------------------------
    # Standard operations
    # ------------------------------------------------------------------

    def scalar_synth(self, qlm, llim):
        cols = self._map_orders(
            lambda im: self.scalar_synth_ml(im, self._blocks(qlm, im, llim), llim)
        )
        return self.fourier.to_spatial(np.stack(cols))

    def scalar_analysis(self, vr, llim):
        F = self.fourier.to_fourier(vr)
        blocks = self._map_orders(lambda im: self.scalar_analysis_ml(im, F[im], llim))
        return self._scatter(blocks, llim)

    def _vector_out(self, pairs):
        vt = self.fourier.to_spatial(np.stack([p[0] for p in pairs]))
        vp = self.fourier.to_spatial(np.stack([p[1] for p in pairs]))
        return vt, vp

    def vector_synth(self, slm, tlm, llim):
        return self._vector_out(
            self._map_orders(
                lambda im: self.vector_synth_ml(
                    im, self._blocks(slm, im, llim), self._blocks(tlm, im, llim), llim
                )
            )
        )

    def grad_sph(self, slm, llim):
        return self._vector_out(
            self._map_orders(
                lambda im: self.grad_sph_ml(im, self._blocks(slm, im, llim), llim)
            )
        )

    def grad_tor(self, tlm, llim):
        return self._vector_out(
            self._map_orders(
                lambda im: self.grad_tor_ml(im, self._blocks(tlm, im, llim), llim)
            )
        )

    def vector_analysis(self, vt, vp, llim):
        Ft = self.fourier.to_fourier(vt)
        Fp = self.fourier.to_fourier(vp)
        pairs = self._map_orders(
            lambda im: self.vector_analysis_ml(im, Ft[im], Fp[im], llim)
        )
        slm = self._scatter([p[0] for p in pairs], llim)
        tlm = self._scatter([p[1] for p in pairs], llim)
        return slm, tlm

    def qst_synth(self, qlm, slm, tlm, llim):
        vr = self.scalar_synth(qlm, llim)
        vt, vp = self.vector_synth(slm, tlm, llim)
        return vr, vt, vp

    def qst_analysis(self, vr, vt, vp, llim):
        qlm = self.scalar_analysis(vr, llim)
        slm, tlm = self.vector_analysis(vt, vp, llim)
        return qlm, slm, tlm


class VectorizedEngine:
    """
    JAX engine.  Every operation is a jitted function of the table pytrees,
    the inputs and llim (traced, so truncation changes do not recompile).
    """

    def __init__(self, config, geometry, tables, starts, tm, method, matrices=None, device=None):
        self.config = config
        order, shared = build_tables(config, geometry, tables, starts, tm, matrices)
        order, shared = place((order, shared), device)
        self.order = order
        self.shared = shared
        self.stage = LegendreStage(method=method, nlat=config.nlat, nlat_2=config.nlat_2)
        self.fourier = FourierStage(config.nphi, config.nm, use_jax=True)
        if config.nthreads > 1:
            logger.debug("vectorized backend ignores nthreads; XLA schedules threads")
        self._jit = {}

    def close(self):
        pass

    def _compiled(self, name, fn):
        if name not in self._jit:
            self._jit[name] = jax.jit(fn)
        return self._jit[name]

    # -- per-order building blocks (vmapped over orders) -----------------

    def _pad(self, qlm):
        sh = self.shared
        q = jnp.concatenate([jnp.asarray(qlm, dtype=jnp.complex128), jnp.zeros(1, jnp.complex128)])
        return q[sh.padded_index]

    def _flatten(self, qpad):
        sh = self.shared
        return qpad[sh.im_of_lm, sh.k_of_lm]

    def _synth_scalar_m(self, ot, q, llim):
        q = jnp.where(ot.lpad <= llim, q, 0.0)
        return self.stage.synth(ot, self.shared, q[None])[0]

    def _analys_scalar_m(self, ot, F, llim):
        q = self.stage.analys(ot, self.shared, F[None])[0]
        return jnp.where(ot.lpad <= llim, q, 0.0)

    def _synth_vw_m(self, ot, v, w):
        F = self.stage.synth(ot, self.shared, jnp.stack([v, w]))
        F = F * self.shared.synth_factor
        return F[0], F[1]

    def _synth_vector_m(self, ot, s, t, llim):
        live = ot.lpad <= llim
        s = jnp.where(live, s, 0.0)
        t = jnp.where(live, t, 0.0)
        v, w = coupling.vect_to_2scal(ot.mx_stdt, ot.em, s, t, xp=jnp)
        return self._synth_vw_m(ot, v, w)

    def _synth_sph_m(self, ot, s, llim):
        s = jnp.where(ot.lpad <= llim, s, 0.0)
        v, w = coupling.sph_to_2scal(ot.mx_stdt, ot.em, s, xp=jnp)
        return self._synth_vw_m(ot, v, w)

    def _synth_tor_m(self, ot, t, llim):
        t = jnp.where(ot.lpad <= llim, t, 0.0)
        v, w = coupling.tor_to_2scal(ot.mx_stdt, ot.em, t, xp=jnp)
        return self._synth_vw_m(ot, v, w)

    def _analys_vector_m(self, ot, Ft, Fp, llim):
        F = jnp.stack([Ft, Fp]) * self.shared.analys_factor
        vw = self.stage.analys(ot, self.shared, F)
        s, t = coupling.twoscal_to_vect(ot.mx_van, ot.l_2, ot.em, vw[0], vw[1], xp=jnp)
        live = ot.lpad <= llim
        return jnp.where(live, s, 0.0), jnp.where(live, t, 0.0)

    # -- standard operations ---------------------------------------------

    def scalar_synth(self, qlm, llim):
        def run(order, qlm, llim):
            F = jax.vmap(lambda ot, q: self._synth_scalar_m(ot, q, llim))(order, self._pad(qlm))
            return self.fourier.to_spatial(F)

        return self._compiled("scalar_synth", run)(self.order, qlm, llim)

    def scalar_analysis(self, vr, llim):
        def run(order, vr, llim):
            F = self.fourier.to_fourier(jnp.asarray(vr))
            q = jax.vmap(lambda ot, f: self._analys_scalar_m(ot, f, llim))(order, F)
            return self._flatten(q)

        return self._compiled("scalar_analysis", run)(self.order, vr, llim)

    def vector_synth(self, slm, tlm, llim):
        def run(order, slm, tlm, llim):
            vt, vp = jax.vmap(lambda ot, s, t: self._synth_vector_m(ot, s, t, llim))(
                order, self._pad(slm), self._pad(tlm)
            )
            return self.fourier.to_spatial(vt), self.fourier.to_spatial(vp)

        return self._compiled("vector_synth", run)(self.order, slm, tlm, llim)

    def grad_sph(self, slm, llim):
        def run(order, slm, llim):
            vt, vp = jax.vmap(lambda ot, s: self._synth_sph_m(ot, s, llim))(order, self._pad(slm))
            return self.fourier.to_spatial(vt), self.fourier.to_spatial(vp)

        return self._compiled("grad_sph", run)(self.order, slm, llim)

    def grad_tor(self, tlm, llim):
        def run(order, tlm, llim):
            vt, vp = jax.vmap(lambda ot, t: self._synth_tor_m(ot, t, llim))(order, self._pad(tlm))
            return self.fourier.to_spatial(vt), self.fourier.to_spatial(vp)

        return self._compiled("grad_tor", run)(self.order, tlm, llim)

    def vector_analysis(self, vt, vp, llim):
        def run(order, vt, vp, llim):
            Ft = self.fourier.to_fourier(jnp.asarray(vt))
            Fp = self.fourier.to_fourier(jnp.asarray(vp))
            s, t = jax.vmap(lambda ot, a, b: self._analys_vector_m(ot, a, b, llim))(order, Ft, Fp)
            return self._flatten(s), self._flatten(t)

        return self._compiled("vector_analysis", run)(self.order, vt, vp, llim)

    def qst_synth(self, qlm, slm, tlm, llim):
        vr = self.scalar_synth(qlm, llim)
        vt, vp = self.vector_synth(slm, tlm, llim)
        return vr, vt, vp

    def qst_analysis(self, vr, vt, vp, llim):
        qlm = self.scalar_analysis(vr, llim)
        slm, tlm = self.vector_analysis(vt, vp, llim)
        return qlm, slm, tlm

    # -- order-restricted operations -------------------------------------

    def _order_input(self, ql):
        """Degree block of one order (length lmax-m+1) -> padded slots."""
        ql = jnp.asarray(ql, dtype=jnp.complex128)
        nk = self.config.lmax + 2
        return jnp.pad(ql, (0, nk - ql.shape[0]))

    def _order_output(self, im, q, llim):
        n = max(llim - im * self.config.mres + 1, 0)
        return q[:n]

    def scalar_synth_ml(self, im, ql, llim):
        fn = self._compiled(
            "scalar_synth_ml",
            lambda order, im, q, llim: self._synth_scalar_m(take_order(order, im), q, llim),
        )
        return fn(self.order, im, self._order_input(ql), llim)

    def scalar_analysis_ml(self, im, vr_m, llim):
        fn = self._compiled(
            "scalar_analysis_ml",
            lambda order, im, f, llim: self._analys_scalar_m(take_order(order, im), f, llim),
        )
        q = fn(self.order, im, jnp.asarray(vr_m, dtype=jnp.complex128), llim)
        return self._order_output(im, q, llim)

    def vector_synth_ml(self, im, sl, tl, llim):
        fn = self._compiled(
            "vector_synth_ml",
            lambda order, im, s, t, llim: self._synth_vector_m(take_order(order, im), s, t, llim),
        )
        return fn(self.order, im, self._order_input(sl), self._order_input(tl), llim)

    def grad_sph_ml(self, im, sl, llim):
        fn = self._compiled(
            "grad_sph_ml",
            lambda order, im, s, llim: self._synth_sph_m(take_order(order, im), s, llim),
        )
        return fn(self.order, im, self._order_input(sl), llim)

    def grad_tor_ml(self, im, tl, llim):
        fn = self._compiled(
            "grad_tor_ml",
            lambda order, im, t, llim: self._synth_tor_m(take_order(order, im), t, llim),
        )
        return fn(self.order, im, self._order_input(tl), llim)

    def vector_analysis_ml(self, im, vt_m, vp_m, llim):
        fn = self._compiled(
            "vector_analysis_ml",
            lambda order, im, a, b, llim: self._analys_vector_m(take_order(order, im), a, b, llim),
        )
        s, t = fn(
            self.order,
            im,
            jnp.asarray(vt_m, dtype=jnp.complex128),
            jnp.asarray(vp_m, dtype=jnp.complex128),
            llim,
        )
        return self._order_output(im, s, llim), self._order_output(im, t, llim)

    def qst_synth_ml(self, im, ql, sl, tl, llim):
        vr = self.scalar_synth_ml(im, ql, llim)
        vt, vp = self.vector_synth_ml(im, sl, tl, llim)
        return vr, vt, vp

    def qst_analysis_ml(self, im, vr_m, vt_m, vp_m, llim):
        ql = self.scalar_analysis_ml(im, vr_m, llim)
        sl, tl = self.vector_analysis_ml(im, vt_m, vp_m, llim)
        return ql, sl, tl
