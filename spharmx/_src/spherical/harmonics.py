"""
Spherical Harmonic Transform
=============================

Transforms between samples of scalar and tangent vector fields on a
latitude/longitude grid and their spherical harmonic coefficients.

A transform is built once from an SHTConfig: geometry, recurrence tables,
extended-range seeds and the polar truncation are precomputed, an algorithm
is selected and every (variant, field type) pair is resolved to the engine
function implementing it.  Calls never validate shapes.

Layouts:
--------
    Spectral : Complex[Array, "nlm"], orders m = im*mres >= 0 in contiguous
               blocks, degree increasing inside a block.  m > 0 entries stand
               for the +m/-m pair of a real field.
    Spatial  : Float[Array, "nlat nphi"], rows North to South, longitudes
               spanning [0, 2*pi/mres).
    Profile  : Complex[Array, "nlat"], the order-m Fourier coefficient along
               the meridian (order-restricted operations).

Vector fields are given by their colatitude and longitude components
(vt, vp) or by spheroidal/toroidal potentials (slm, tlm):

    V = grad S + curl(T r_hat),   so  vt = dS/dtheta + (1/sin) dT/dphi
                                      vp = (1/sin) dS/dphi - dT/dtheta

References:
-----------
[1] Schaeffer, N. (2013). Efficient spherical harmonic transforms aimed at
    pseudospectral numerical simulations.  G3, 14(3).
[2] Ishioka, K. (2018). A new recurrence formula for efficient computation of
    spherical harmonic transform.  J. Meteor. Soc. Japan, 96(2).
"""

import equinox as eqx
from jaxtyping import Array, Complex, Float
from loguru import logger
import numpy as np

from ..config import Algorithm, Backend, FieldType, SHTConfig, Variant
from ..errors import AcceleratorError
from . import kernels
from .accelerator import resolve_device
from .dispatch import AlgorithmPolicy, HeuristicPolicy, KernelTable, select_algorithm
from .engines import FlyLegendre, ReferenceEngine, VectorizedEngine
from .extended import sectoral_start
from .grid import SphericalGeometry
from .matrix import DctLegendre, GaussLegendre, legendre_matrices
from .recurrence import RecurrenceTables, SectoralStarts, norm_factor, polar_truncation


def _build_engine(config, geometry, tables, starts, tm, alg, device):
    if config.backend is Backend.REFERENCE:
        if alg is Algorithm.GAUSS:
            legendre = GaussLegendre(config, geometry, tables, starts, tm)
        elif alg is Algorithm.DCT:
            legendre = DctLegendre(config, geometry, tables, starts)
        else:
            legendre = FlyLegendre(config, geometry, tables, starts, tm)
        return ReferenceEngine(config, geometry, tables, legendre)
    if alg is Algorithm.GAUSS:
        matrices = legendre_matrices(config, geometry, tables, starts, tm)
        return VectorizedEngine(
            config, geometry, tables, starts, tm, "gauss", matrices, device
        )
    return VectorizedEngine(
        config, geometry, tables, starts, tm, config.recurrence.value, device=device
    )


class SphericalHarmonicTransform(eqx.Module):
    """
    Spherical harmonic transform of one configuration.

    Construction accepts the shape parameters and any SHTConfig option:

        sht = SphericalHarmonicTransform(63, grid="gauss", norm="schmidt")
        qlm = sht.spat_to_sh(field)
        field = sht.sh_to_spat(qlm)

    Attributes:
    -----------
    config : SHTConfig
    geometry : SphericalGeometry
    tables : RecurrenceTables
    tm : Int[ndarray, "nm"]
        First northern row kept per order by the polar truncation.
    algorithm : Algorithm
        The algorithm actually built (never AUTO).
    degraded : str or None
        Why a requested accelerator is not used, None when nothing degraded.

    Notes:
    ------
    Every operation takes an optional truncation llim <= lmax (default lmax):
    degrees above llim are treated as zero on synthesis and returned as zero
    by analysis.
    """

    config: SHTConfig
    geometry: SphericalGeometry
    tables: RecurrenceTables
    tm: np.ndarray
    algorithm: Algorithm
    degraded: str | None
    _engine: object
    _kernels: KernelTable

    def __init__(
        self,
        lmax: int,
        mmax: int | None = None,
        mres: int = 1,
        nlat: int = 0,
        nphi: int = 0,
        grid: str = "gauss",
        policy: AlgorithmPolicy | None = None,
        **options,
    ):
        config = SHTConfig(
            lmax, mmax=mmax, mres=mres, nlat=nlat, nphi=nphi, grid=grid, **options
        )
        geometry = SphericalGeometry(config)
        tables = RecurrenceTables(config)
        starts = SectoralStarts(tables, geometry.st_2, config.use_extended_range)
        tm = polar_truncation(tables, starts, geometry.ct_2, config.polar_threshold)

        degraded = None
        device = None
        if config.backend is Backend.VECTORIZED:
            device, degraded = resolve_device(config.device)
        elif config.device in ("gpu", "tpu"):
            degraded = "the reference backend runs on the host only"
            logger.warning(f"device '{config.device}' ignored: {degraded}")

        built = {}

        def build(alg):
            nonlocal device, degraded
            if alg not in built:
                try:
                    built[alg] = _build_engine(
                        config, geometry, tables, starts, tm, alg, device
                    )
                except AcceleratorError as err:
                    logger.warning(f"falling back to CPU: {err}")
                    device, degraded = None, str(err)
                    built.clear()
                    built[alg] = _build_engine(
                        config, geometry, tables, starts, tm, alg, None
                    )
            return built[alg]

        alg = select_algorithm(config, policy or HeuristicPolicy(), build)
        engine = build(alg)
        for other, eng in built.items():
            if other is not alg:
                eng.close()
        logger.debug(
            f"transform ready: lmax={config.lmax} mmax={config.mmax} "
            f"nlat={config.nlat} nphi={config.nphi} {config.backend.value}/{alg.value}"
        )

        self.config = config
        self.geometry = geometry
        self.tables = tables
        self.tm = tm
        self.algorithm = alg
        self.degraded = degraded
        self._engine = engine
        self._kernels = KernelTable(engine)

    @classmethod
    def from_config(cls, config: SHTConfig, policy: AlgorithmPolicy | None = None):
        """Build a transform for an existing configuration."""
        return cls(policy=policy, **config.as_kwargs())

    def close(self):
        """Release the worker threads of the reference backend."""
        self._engine.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    def _llim(self, llim):
        return self.config.lmax if llim is None else llim

    def _call(self, variant, field, *args, llim=None):
        return self._kernels[(variant, field)](*args, self._llim(llim))

    # ------------------------------------------------------------------
    # Scalar transforms
    # ------------------------------------------------------------------

    def sh_to_spat(
        self, qlm: Complex[Array, "nlm"], llim: int | None = None
    ) -> Float[Array, "nlat nphi"]:
        """
        Scalar synthesis: coefficients -> spatial field.

        Parameters:
        -----------
        qlm : Complex[Array, "nlm"]
            Coefficients; the m = 0 entries are taken as real.
        llim : int, optional
            Truncation degree.

        Returns:
        --------
        vr : Float[Array, "nlat nphi"]
        """
        return self._call(Variant.STANDARD, FieldType.SCALAR_SYNTH, qlm, llim=llim)

    def spat_to_sh(
        self, vr: Float[Array, "nlat nphi"], llim: int | None = None
    ) -> Complex[Array, "nlm"]:
        """
        Scalar analysis: spatial field -> coefficients.

        Exact for band-limited fields on a Gauss grid with nlat > lmax, and on
        the regular and polar grids within their aliasing limits.
        """
        return self._call(Variant.STANDARD, FieldType.SCALAR_ANALYSIS, vr, llim=llim)

    # ------------------------------------------------------------------
    # Vector transforms
    # ------------------------------------------------------------------

    def sphtor_to_spat(self, slm, tlm, llim: int | None = None):
        """
        Vector synthesis from spheroidal and toroidal potentials.

        Returns:
        --------
        vt, vp : Float[Array, "nlat nphi"]
            Colatitude and longitude components.  With robert_form both are
            multiplied by sin(theta).
        """
        return self._call(Variant.STANDARD, FieldType.VECTOR_SYNTH, slm, tlm, llim=llim)

    def spat_to_sphtor(self, vt, vp, llim: int | None = None):
        """Vector analysis -> (slm, tlm); the l = 0 entries are zero."""
        return self._call(Variant.STANDARD, FieldType.VECTOR_ANALYSIS, vt, vp, llim=llim)

    def sph_to_spat(self, slm, llim: int | None = None):
        """Gradient of the scalar S -> (vt, vp)."""
        return self._call(Variant.STANDARD, FieldType.GRAD_SPH, slm, llim=llim)

    def tor_to_spat(self, tlm, llim: int | None = None):
        """Purely toroidal field curl(T r_hat) -> (vt, vp)."""
        return self._call(Variant.STANDARD, FieldType.GRAD_TOR, tlm, llim=llim)

    def qst_to_spat(self, qlm, slm, tlm, llim: int | None = None):
        """3-vector synthesis -> (vr, vt, vp); vr is the scalar synthesis of qlm."""
        return self._call(Variant.STANDARD, FieldType.QST_SYNTH, qlm, slm, tlm, llim=llim)

    def spat_to_qst(self, vr, vt, vp, llim: int | None = None):
        """3-vector analysis -> (qlm, slm, tlm)."""
        return self._call(Variant.STANDARD, FieldType.QST_ANALYSIS, vr, vt, vp, llim=llim)

    # ------------------------------------------------------------------
    # Order-restricted transforms
    # ------------------------------------------------------------------

    def sh_to_spat_ml(self, im: int, ql, llim: int | None = None):
        """
        Synthesis of a single order m = im*mres.

        Parameters:
        -----------
        im : int
            Order index.
        ql : Complex[Array, "L"]
            Degrees m .. lmax of that order (sht.geometry.order_block(im)).

        Returns:
        --------
        vr_m : Complex[Array, "nlat"]
            Latitude profile of the order; the spatial field is
            vr_m(theta) exp(i m phi) plus its conjugate for m > 0.
        """
        return self._call(Variant.M_ONLY, FieldType.SCALAR_SYNTH, im, ql, llim=llim)

    def spat_to_sh_ml(self, im: int, vr_m, llim: int | None = None):
        """Analysis of one order profile -> degrees m .. llim."""
        return self._call(Variant.M_ONLY, FieldType.SCALAR_ANALYSIS, im, vr_m, llim=llim)

    def sphtor_to_spat_ml(self, im: int, sl, tl, llim: int | None = None):
        return self._call(Variant.M_ONLY, FieldType.VECTOR_SYNTH, im, sl, tl, llim=llim)

    def spat_to_sphtor_ml(self, im: int, vt_m, vp_m, llim: int | None = None):
        return self._call(
            Variant.M_ONLY, FieldType.VECTOR_ANALYSIS, im, vt_m, vp_m, llim=llim
        )

    def sph_to_spat_ml(self, im: int, sl, llim: int | None = None):
        return self._call(Variant.M_ONLY, FieldType.GRAD_SPH, im, sl, llim=llim)

    def tor_to_spat_ml(self, im: int, tl, llim: int | None = None):
        return self._call(Variant.M_ONLY, FieldType.GRAD_TOR, im, tl, llim=llim)

    def qst_to_spat_ml(self, im: int, ql, sl, tl, llim: int | None = None):
        return self._call(Variant.M_ONLY, FieldType.QST_SYNTH, im, ql, sl, tl, llim=llim)

    def spat_to_qst_ml(self, im: int, vr_m, vt_m, vp_m, llim: int | None = None):
        return self._call(
            Variant.M_ONLY, FieldType.QST_ANALYSIS, im, vr_m, vt_m, vp_m, llim=llim
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def idx(self, l: int, m: int) -> int:
        """Index of coefficient (l, m) in the spectral array."""
        return self.geometry.idx(l, m)

    @property
    def l(self) -> np.ndarray:
        """Degree of every coefficient."""
        return self.geometry.li

    @property
    def m(self) -> np.ndarray:
        """Order of every coefficient."""
        return self.geometry.mi

    @property
    def cos_theta(self) -> np.ndarray:
        return self.geometry.ct

    @property
    def gauss_weights(self) -> np.ndarray:
        """Latitude quadrature weights (sum 2) of the grid, North to South."""
        return self.geometry.wg / (2.0 * np.pi)

    @property
    def laplacian_eigenvalues(self) -> np.ndarray:
        """-l(l+1) for every coefficient."""
        l = self.geometry.li.astype(np.float64)
        return -l * (l + 1.0)

    @property
    def sh00_1(self) -> float:
        """Coefficient (0, 0) of the constant field 1."""
        return float(1.0 / self.tables.alm[0, 0, 0])

    @property
    def sh10_ct(self) -> float:
        """Coefficient (1, 0) of cos(theta)."""
        c1 = norm_factor(1, self.config.norm)
        return float(1.0 / (c1 * np.sqrt(3.0 / (4.0 * np.pi))))

    @property
    def sh11_st(self) -> float:
        """Coefficient (1, 1) of sin(theta) cos(phi); needs mres == 1."""
        c1 = norm_factor(1, self.config.norm)
        sign = -1.0 if self.config.cs_phase else 1.0
        return float(1.0 / (2.0 * c1 * sign * np.sqrt(3.0 / (8.0 * np.pi))))

    def sh_to_point(self, qlm, cost: float, phi: float) -> float:
        """
        Value of the synthesized field at one point (cos(theta), phi).

        Runs the recurrence at the point itself, so no grid is involved.
        """
        cfg = self.config
        qlm = np.asarray(qlm, dtype=np.complex128)
        ct = np.array([cost], dtype=np.float64)
        st = np.sqrt((1.0 - ct) * (1.0 + ct))
        y, e = sectoral_start(self.tables.ms, st, cfg.use_extended_range)
        value = 0.0
        for im, m in enumerate(self.tables.ms):
            ab = self.tables.alm[im]
            ql = qlm[self.geometry.order_block(im)][None]
            north, _ = kernels.legendre_synthesis_m(ab, y[im] * ab[0, 0], e[im], ct, ql)
            F = north[0, 0]
            if m == 0:
                value += F.real
            else:
                value += 2.0 * (F * np.exp(1j * m * phi)).real
        return float(value)
