"""
Transform Configuration
=======================

Validated, immutable description of one spherical harmonic transform: the
spectral truncation, the spatial grid, the normalization convention and the
execution options.  Every derived quantity (number of coefficients, number of
hemisphere rows, extended-range switch) is computed once here.

Key Concepts:
-------------
    • lmax : maximum degree.  mmax : maximum order index, orders are im*mres.
    • nlm  : number of complex coefficients with m >= 0,
             sum over im of (lmax + 1 - im*mres).
    • Spatial fields are real arrays of shape (nlat, nphi), latitude rows
      ordered North to South, longitude spanning [0, 2*pi/mres).
    • Grids: "gauss" (Gauss-Legendre), "regular" (equispaced, no poles),
      "poles" (equispaced, both poles included).

Defaults:
---------
The tuning constants mirror the classic SHTns defaults: polar threshold
1e-10, memory ceiling 2048 MB, DCT acceptance 1e-8 accuracy with a 5 %
speed-up, extended range above degree 1000 (1800 for 8-wide vectors).
"""

import enum
import math
import os

import equinox as eqx
import jax
from loguru import logger
import numpy as np
from scipy.fft import next_fast_len

from .errors import ConfigurationError

# Extended-range scale: 2**450.  Values are stored as y * SCALE**e with e <= 0.
SHT_SCALE_FACTOR = 2.9073548971824275622e135
SHT_DEFAULT_POLAR_OPT = 1.0e-10
SHT_DEFAULT_NL_ORDER = 1
SHT_L_RESCALE_FLY = 1000
SHT_L_RESCALE_FLY_WIDE = 1800
SHT_ACCURACY = 1.0e-20
SHT_ACCURACY_WIDE = 1.0e-40
SHT_MAX_MEMORY_MB = 2048
SHT_MIN_NLAT_DCT = 64
SHT_TIME_LIMIT = 0.2
MIN_PERF_IMPROVE_DCT = 1.05
MIN_ACCURACY_DCT = 1.0e-8


class Normalization(str, enum.Enum):
    """Spherical harmonic normalization convention."""

    ORTHONORMAL = "orthonormal"
    FOURPI = "fourpi"
    SCHMIDT = "schmidt"


class GridKind(str, enum.Enum):
    """Latitude node family."""

    GAUSS = "gauss"
    REGULAR = "regular"
    POLES = "poles"


class Algorithm(str, enum.Enum):
    """Legendre stage implementation."""

    AUTO = "auto"
    GAUSS = "gauss"  # precomputed per-order matrices
    DCT = "dct"  # cosine/sine series on regular grids
    FLY = "fly"  # on-the-fly recurrence


class Backend(str, enum.Enum):
    """Execution backend."""

    REFERENCE = "reference"
    VECTORIZED = "vectorized"


class Recurrence(str, enum.Enum):
    """Recurrence used by the on-the-fly kernels."""

    DIRECT = "direct"
    ISHIOKA = "ishioka"


class Variant(enum.Enum):
    """Standard (all orders) or order-restricted transform."""

    STANDARD = "standard"
    M_ONLY = "m_only"


class FieldType(enum.Enum):
    """Operation kind; the value names the engine method implementing it."""

    SCALAR_SYNTH = "scalar_synth"
    SCALAR_ANALYSIS = "scalar_analysis"
    VECTOR_SYNTH = "vector_synth"
    VECTOR_ANALYSIS = "vector_analysis"
    GRAD_SPH = "grad_sph"
    GRAD_TOR = "grad_tor"
    QST_SYNTH = "qst_synth"
    QST_ANALYSIS = "qst_analysis"


def _coerce(enum_cls, value, name):
    try:
        return enum_cls(value)
    except ValueError:
        choices = ", ".join(repr(e.value) for e in enum_cls)
        raise ConfigurationError(
            f"{name}={value!r} is not valid; expected one of {choices}"
        ) from None


def x64_enabled() -> bool:
    """True when JAX computes in 64-bit floats."""
    return jax.dtypes.canonicalize_dtype(np.float64) == np.dtype("float64")


def grid_size_auto(
    lmax: int,
    mmax: int,
    grid: GridKind | str = GridKind.GAUSS,
    nl_order: int = SHT_DEFAULT_NL_ORDER,
) -> tuple[int, int]:
    """
    Smallest grid that resolves products of `nl_order` fields without aliasing.

    nl_order=1 gives the minimal exact grid for linear transforms.  nlat is
    rounded up to an even count and nphi to an FFT-friendly size.

    Returns:
    --------
    (nlat, nphi) : tuple of int
    """
    grid = _coerce(GridKind, grid, "grid")
    if grid is GridKind.GAUSS:
        nlat = ((nl_order + 1) * lmax) // 2 + 1
    elif grid is GridKind.REGULAR:
        nlat = (nl_order + 1) * lmax + 1
    else:
        nlat = max((nl_order + 1) * lmax + 2, 3)
    nlat += nlat % 2
    nphi = next_fast_len((nl_order + 1) * mmax + 1) if mmax > 0 else 1
    return nlat, nphi


class SHTConfig(eqx.Module):
    """
    Immutable transform configuration.

    Construction validates every parameter and raises ConfigurationError on
    the first violation; no partially-valid configuration is ever returned.

    Attributes:
    -----------
    lmax, mmax, mres : int
        Spectral truncation.  Orders are m = im * mres for im in [0, mmax].
    nlat, nphi : int
        Spatial grid size (0 in the constructor means: pick automatically).
    grid : GridKind
    norm : Normalization
    cs_phase : bool
        Include the Condon-Shortley phase (-1)^m.
    polar_threshold : float
        Relative magnitude under which polar rows are skipped (0 disables).
    l_rescale : int
        Degree above which the extended-range arithmetic is switched on.
    accuracy : float
        Magnitude below which leading recurrence terms are dropped.
    vsize : int
        Hemisphere row block width used by the vectorized kernels.
    max_memory_mb : float
        Ceiling for precomputed matrix tables.
    nthreads : int
        Worker threads for the reference backend (0 = all cores).
    robert_form : bool
        Vector fields are multiplied by sin(theta) on synthesis and divided by
        it on analysis.
    recurrence : Recurrence
    backend : Backend
    algorithm : Algorithm
    device : str
        "cpu", "gpu", "tpu" or "auto".
    """

    lmax: int
    mmax: int
    mres: int
    nlat: int
    nphi: int
    grid: GridKind
    norm: Normalization
    cs_phase: bool
    polar_threshold: float
    nl_order: int
    l_rescale: int
    accuracy: float
    vsize: int
    max_memory_mb: float
    min_nlat_dct: int
    min_perf_improve_dct: float
    min_accuracy_dct: float
    time_limit: float
    nthreads: int
    robert_form: bool
    recurrence: Recurrence
    backend: Backend
    algorithm: Algorithm
    device: str

    def __init__(
        self,
        lmax: int,
        mmax: int | None = None,
        mres: int = 1,
        nlat: int = 0,
        nphi: int = 0,
        grid: GridKind | str = GridKind.GAUSS,
        norm: Normalization | str = Normalization.ORTHONORMAL,
        cs_phase: bool = True,
        polar_threshold: float = SHT_DEFAULT_POLAR_OPT,
        nl_order: int = SHT_DEFAULT_NL_ORDER,
        l_rescale: int | None = None,
        accuracy: float | None = None,
        vsize: int = 2,
        max_memory_mb: float = SHT_MAX_MEMORY_MB,
        min_nlat_dct: int = SHT_MIN_NLAT_DCT,
        min_perf_improve_dct: float = MIN_PERF_IMPROVE_DCT,
        min_accuracy_dct: float = MIN_ACCURACY_DCT,
        time_limit: float = SHT_TIME_LIMIT,
        nthreads: int = 1,
        robert_form: bool = False,
        recurrence: Recurrence | str = Recurrence.ISHIOKA,
        backend: Backend | str = Backend.VECTORIZED,
        algorithm: Algorithm | str = Algorithm.AUTO,
        device: str = "cpu",
    ):
        mmax = lmax if mmax is None else mmax
        if lmax < 0 or mmax < 0 or mres < 1:
            raise ConfigurationError(
                f"need lmax >= 0, mmax >= 0 and mres >= 1 (got lmax={lmax}, "
                f"mmax={mmax}, mres={mres})"
            )
        if mmax * mres > lmax:
            raise ConfigurationError(
                f"mmax*mres = {mmax * mres} exceeds lmax = {lmax}"
            )
        if nl_order < 1:
            raise ConfigurationError(f"nl_order must be >= 1 (got {nl_order})")
        if vsize not in (1, 2, 4, 8):
            raise ConfigurationError(f"vsize must be 1, 2, 4 or 8 (got {vsize})")
        if not 0.0 <= polar_threshold < 1.0:
            raise ConfigurationError(
                f"polar_threshold must lie in [0, 1) (got {polar_threshold})"
            )
        if nthreads < 0:
            raise ConfigurationError(f"nthreads must be >= 0 (got {nthreads})")
        if max_memory_mb <= 0:
            raise ConfigurationError("max_memory_mb must be positive")

        self.grid = _coerce(GridKind, grid, "grid")
        self.norm = _coerce(Normalization, norm, "norm")
        self.recurrence = _coerce(Recurrence, recurrence, "recurrence")
        self.backend = _coerce(Backend, backend, "backend")
        self.algorithm = _coerce(Algorithm, algorithm, "algorithm")
        if device not in ("cpu", "gpu", "tpu", "auto"):
            raise ConfigurationError(
                f"device must be 'cpu', 'gpu', 'tpu' or 'auto' (got {device!r})"
            )

        auto_nlat, auto_nphi = grid_size_auto(lmax, mmax, self.grid, nl_order)
        if nlat <= 0:
            nlat = auto_nlat
            logger.debug(f"nlat chosen automatically: {nlat}")
        if nphi <= 0:
            nphi = auto_nphi
            logger.debug(f"nphi chosen automatically: {nphi}")

        if self.grid is GridKind.GAUSS and nlat <= lmax:
            raise ConfigurationError(
                f"Gauss grid needs nlat > lmax (got nlat={nlat}, lmax={lmax})"
            )
        if self.grid is GridKind.REGULAR and nlat <= 2 * lmax:
            raise ConfigurationError(
                f"regular grid needs nlat > 2*lmax (got nlat={nlat}, lmax={lmax})"
            )
        if self.grid is GridKind.POLES and (nlat <= 2 * lmax + 1 or nlat < 3):
            raise ConfigurationError(
                f"grid with poles needs nlat > 2*lmax+1 and nlat >= 3 "
                f"(got nlat={nlat}, lmax={lmax})"
            )
        if nphi < 2 * mmax or nphi < 1:
            raise ConfigurationError(
                f"nphi must be >= 2*mmax (got nphi={nphi}, mmax={mmax})"
            )
        if mmax > 0 and nphi == 2 * mmax:
            logger.warning(
                f"nphi={nphi} puts order m={mmax * mres} on the Nyquist frequency; "
                "its imaginary part cannot be represented on this grid"
            )

        wide = vsize >= 8
        if l_rescale is None:
            l_rescale = SHT_L_RESCALE_FLY_WIDE if wide else SHT_L_RESCALE_FLY
        if accuracy is None:
            accuracy = SHT_ACCURACY_WIDE if wide else SHT_ACCURACY

        if self.backend is Backend.VECTORIZED and not x64_enabled():
            if lmax > l_rescale:
                raise ConfigurationError(
                    f"lmax={lmax} needs extended-range arithmetic, which requires "
                    "64-bit floats; enable jax_enable_x64 or use the reference backend"
                )
            logger.warning(
                "jax_enable_x64 is off: the vectorized backend runs in float32"
            )

        self.lmax = lmax
        self.mmax = mmax
        self.mres = mres
        self.nlat = nlat
        self.nphi = nphi
        self.cs_phase = bool(cs_phase)
        self.polar_threshold = float(polar_threshold)
        self.nl_order = nl_order
        self.l_rescale = int(l_rescale)
        self.accuracy = float(accuracy)
        self.vsize = vsize
        self.max_memory_mb = float(max_memory_mb)
        self.min_nlat_dct = min_nlat_dct
        self.min_perf_improve_dct = float(min_perf_improve_dct)
        self.min_accuracy_dct = float(min_accuracy_dct)
        self.time_limit = float(time_limit)
        self.nthreads = nthreads if nthreads > 0 else (os.cpu_count() or 1)
        self.robert_form = bool(robert_form)
        self.device = device

    # ------------------------------------------------------------------
    # Derived quantities
    # ------------------------------------------------------------------

    @property
    def nm(self) -> int:
        """Number of stored orders (mmax + 1)."""
        return self.mmax + 1

    @property
    def nlm(self) -> int:
        """Number of complex coefficients with m >= 0."""
        mres, mmax, lmax = self.mres, self.mmax, self.lmax
        return (mmax + 1) * (lmax + 1) - mres * mmax * (mmax + 1) // 2

    @property
    def nlat_2(self) -> int:
        """Rows in the northern hemisphere, equator included."""
        return (self.nlat + 1) // 2

    @property
    def nlat_padded(self) -> int:
        """Hemisphere rows rounded up to a multiple of vsize."""
        return int(math.ceil(self.nlat_2 / self.vsize)) * self.vsize

    @property
    def use_extended_range(self) -> bool:
        return self.lmax > self.l_rescale

    def as_kwargs(self) -> dict:
        """Constructor arguments that rebuild this configuration."""
        return {
            "lmax": self.lmax,
            "mmax": self.mmax,
            "mres": self.mres,
            "nlat": self.nlat,
            "nphi": self.nphi,
            "grid": self.grid,
            "norm": self.norm,
            "cs_phase": self.cs_phase,
            "polar_threshold": self.polar_threshold,
            "nl_order": self.nl_order,
            "l_rescale": self.l_rescale,
            "accuracy": self.accuracy,
            "vsize": self.vsize,
            "max_memory_mb": self.max_memory_mb,
            "min_nlat_dct": self.min_nlat_dct,
            "min_perf_improve_dct": self.min_perf_improve_dct,
            "min_accuracy_dct": self.min_accuracy_dct,
            "time_limit": self.time_limit,
            "nthreads": self.nthreads,
            "robert_form": self.robert_form,
            "recurrence": self.recurrence,
            "backend": self.backend,
            "algorithm": self.algorithm,
            "device": self.device,
        }
