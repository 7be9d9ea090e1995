"""
Tests for SHTConfig, grid_size_auto and the error hierarchy.
"""

import os

from loguru import logger
import pytest

from spharmx._src import config as config_module
from spharmx._src.config import (
    Algorithm,
    Backend,
    GridKind,
    Normalization,
    SHTConfig,
    grid_size_auto,
)
from spharmx._src.errors import (
    AcceleratorError,
    ConfigurationError,
    ResourceError,
    SHTError,
)


@pytest.fixture
def warnings_log():
    messages = []
    handler = logger.add(lambda msg: messages.append(str(msg)), level="WARNING")
    yield messages
    logger.remove(handler)


# ---------------------------------------------------------------------------
# Derived quantities
# ---------------------------------------------------------------------------


def test_nlm_full_triangle():
    """lmax = mmax = 5 stores 21 coefficients (6 + 5 + 4 + 3 + 2 + 1)."""
    cfg = SHTConfig(5)
    assert cfg.mmax == 5
    assert cfg.nm == 6
    assert cfg.nlm == 21


def test_nlm_with_order_resolution():
    """mres = 2 keeps orders 0, 2, 4 of lmax = 5: 6 + 4 + 2 coefficients."""
    cfg = SHTConfig(5, mmax=2, mres=2, nphi=8)
    assert cfg.nlm == 12


def test_hemisphere_rows():
    """nlat_2 includes the equator of odd grids; nlat_padded is a vsize multiple."""
    cfg = SHTConfig(8, grid="regular", nlat=19, vsize=4)
    assert cfg.nlat_2 == 10
    assert cfg.nlat_padded == 12
    assert cfg.nlat_padded % cfg.vsize == 0


def test_defaults_follow_vector_width():
    """Wide vectors raise the rescale degree and lower the accuracy cut."""
    narrow = SHTConfig(4)
    wide = SHTConfig(4, vsize=8)
    assert narrow.l_rescale == config_module.SHT_L_RESCALE_FLY
    assert wide.l_rescale == config_module.SHT_L_RESCALE_FLY_WIDE
    assert wide.accuracy < narrow.accuracy


def test_extended_range_switch():
    assert not SHTConfig(20).use_extended_range
    assert SHTConfig(20, l_rescale=10).use_extended_range


def test_nthreads_zero_means_all_cores():
    cfg = SHTConfig(4, nthreads=0)
    assert cfg.nthreads == (os.cpu_count() or 1)


def test_string_options_are_coerced():
    cfg = SHTConfig(
        6, grid="regular", norm="schmidt", backend="reference", algorithm="fly"
    )
    assert cfg.grid is GridKind.REGULAR
    assert cfg.norm is Normalization.SCHMIDT
    assert cfg.backend is Backend.REFERENCE
    assert cfg.algorithm is Algorithm.FLY


def test_as_kwargs_rebuilds_configuration():
    """A configuration rebuilt from as_kwargs() is identical."""
    cfg = SHTConfig(12, mmax=5, mres=2, grid="poles", norm="fourpi", nthreads=2)
    kwargs = cfg.as_kwargs()
    assert SHTConfig(**kwargs).as_kwargs() == kwargs


# ---------------------------------------------------------------------------
# Automatic grid sizes
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("grid", ["gauss", "regular", "poles"])
@pytest.mark.parametrize("lmax", [1, 7, 30])
def test_grid_size_auto_is_accepted(grid, lmax):
    """Automatic sizes are even and pass the aliasing checks."""
    nlat, nphi = grid_size_auto(lmax, lmax, grid)
    assert nlat % 2 == 0
    assert nphi > 2 * lmax
    cfg = SHTConfig(lmax, grid=grid, nlat=nlat, nphi=nphi)
    assert (cfg.nlat, cfg.nphi) == (nlat, nphi)


def test_grid_size_auto_gauss_minimum():
    """Linear transforms on a Gauss grid need lmax + 1 rows (rounded to even)."""
    assert grid_size_auto(10, 10, "gauss")[0] == 12
    assert grid_size_auto(9, 9, "gauss")[0] == 10


def test_grid_size_auto_nonlinear_order():
    """Quadratic products need a larger grid than linear transforms."""
    lin = grid_size_auto(20, 20, "gauss", nl_order=1)
    quad = grid_size_auto(20, 20, "gauss", nl_order=2)
    assert quad[0] > lin[0]
    assert quad[1] > lin[1]


def test_axisymmetric_grid_has_one_longitude():
    cfg = SHTConfig(10, mmax=0)
    assert cfg.nphi == 1
    assert cfg.nlm == 11


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(lmax=-1),
        dict(lmax=4, mmax=5),
        dict(lmax=4, mmax=3, mres=2),
        dict(lmax=4, mres=0),
        dict(lmax=8, nlat=8),
        dict(lmax=8, grid="regular", nlat=16),
        dict(lmax=8, grid="poles", nlat=17),
        dict(lmax=8, nphi=15),
        dict(lmax=4, grid="hexagonal"),
        dict(lmax=4, norm="unit"),
        dict(lmax=4, vsize=3),
        dict(lmax=4, polar_threshold=-1e-3),
        dict(lmax=4, nthreads=-2),
        dict(lmax=4, max_memory_mb=0),
        dict(lmax=4, nl_order=0),
        dict(lmax=4, device="fpga"),
    ],
)
def test_invalid_configuration_raises(kwargs):
    with pytest.raises(ConfigurationError):
        SHTConfig(**kwargs)


def test_configuration_error_is_value_error():
    """Callers catching ValueError also see configuration errors."""
    with pytest.raises(ValueError):
        SHTConfig(3, mmax=4)


def test_error_hierarchy():
    assert issubclass(ConfigurationError, SHTError)
    assert issubclass(ResourceError, MemoryError)
    assert issubclass(AcceleratorError, RuntimeError)


def test_nyquist_order_warns(warnings_log):
    """nphi == 2*mmax is accepted with a warning."""
    cfg = SHTConfig(2, nlat=4, nphi=4)
    assert cfg.nphi == 4
    assert any("Nyquist" in m for m in warnings_log)


def test_extended_range_needs_x64(monkeypatch):
    """The vectorized backend cannot carry extended range in float32."""
    monkeypatch.setattr(config_module, "x64_enabled", lambda: False)
    with pytest.raises(ConfigurationError):
        SHTConfig(20, l_rescale=10)
    # the reference backend computes in numpy float64 regardless
    cfg = SHTConfig(20, l_rescale=10, backend="reference")
    assert cfg.use_extended_range


def test_float32_mode_warns(monkeypatch, warnings_log):
    monkeypatch.setattr(config_module, "x64_enabled", lambda: False)
    SHTConfig(8)
    assert any("float32" in m for m in warnings_log)
