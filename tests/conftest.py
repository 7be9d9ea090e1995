import jax
import numpy as np
import pytest


def pytest_sessionstart(session):
    """Enable JAX 64-bit mode at the start of the pytest session."""
    jax.config.update("jax_enable_x64", True)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def coefficients(rng):
    """
    Factory of random band-limited coefficients for a transform.

    m = 0 entries are real (a real field has no imaginary zonal part); with
    vector=True the l = 0 entry is zero since it carries no vector field.
    """

    def make(sht, vector=False):
        nlm = sht.config.nlm
        qlm = rng.standard_normal(nlm) + 1j * rng.standard_normal(nlm)
        zonal = sht.m == 0
        qlm[zonal] = qlm[zonal].real
        if vector:
            qlm[sht.l == 0] = 0.0
        return qlm

    return make
