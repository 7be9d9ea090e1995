"""
Spherical Harmonic Round Trips
==============================

Builds transforms for one truncation and grid, then runs scalar and vector
round trips (synthesis followed by analysis) on random band-limited
coefficients for every requested backend/algorithm pair.  For each pair the
script reports the maximum round-trip error and the mean wall time of one
synthesis + analysis.

A pair that cannot be built for the configuration (for example "dct" on a
Gauss grid) is reported and skipped.

Usage:
------
The script is run from the command line, with parameters controlled by `cyclopts`.

Example:
  python scripts/sht_roundtrip.py --lmax 127 --grid regular --algorithms fly,gauss,dct
"""

import time
from typing import Annotated

import cyclopts
import jax
import numpy as np
from loguru import logger

from spharmx import SHTError, SphericalHarmonicTransform

# JAX configuration
jax.config.update("jax_enable_x64", True)

# Initialize the cyclopts app
app = cyclopts.App()


def random_coefficients(sht, rng, vector=False):
    """Random coefficients with real m = 0 entries (and zero l = 0 for vectors)."""
    nlm = sht.config.nlm
    qlm = rng.standard_normal(nlm) + 1j * rng.standard_normal(nlm)
    qlm[sht.m == 0] = qlm[sht.m == 0].real
    if vector:
        qlm[sht.l == 0] = 0.0
    return qlm


def _block(x):
    for leaf in x if isinstance(x, tuple) else (x,):
        if hasattr(leaf, "block_until_ready"):
            leaf.block_until_ready()
    return x


def timed(fn, repeat):
    """Result of the first call and mean wall time over `repeat` further calls."""
    out = _block(fn())
    start = time.perf_counter()
    for _ in range(repeat):
        _block(fn())
    return out, (time.perf_counter() - start) / max(repeat, 1)


def scalar_roundtrip(sht, qlm, repeat):
    out, seconds = timed(lambda: sht.spat_to_sh(sht.sh_to_spat(qlm)), repeat)
    return float(np.max(np.abs(np.asarray(out) - qlm))), seconds


def vector_roundtrip(sht, slm, tlm, repeat):
    def run():
        return sht.spat_to_sphtor(*sht.sphtor_to_spat(slm, tlm))

    (s, t), seconds = timed(run, repeat)
    error = max(
        float(np.max(np.abs(np.asarray(s) - slm))),
        float(np.max(np.abs(np.asarray(t) - tlm))),
    )
    return error, seconds


@app.default
def run_roundtrip(
    lmax: Annotated[
        int, cyclopts.Option("--lmax", help="Maximum spherical harmonic degree.")
    ] = 63,
    mmax: Annotated[
        int | None, cyclopts.Option("--mmax", help="Maximum order (default lmax).")
    ] = None,
    grid: Annotated[
        str, cyclopts.Option("--grid", help="Latitude grid: gauss, regular or poles.")
    ] = "gauss",
    norm: Annotated[
        str,
        cyclopts.Option("--norm", help="Normalization: orthonormal, fourpi or schmidt."),
    ] = "orthonormal",
    backends: Annotated[
        str,
        cyclopts.Option("--backends", help="Comma-separated backends to run."),
    ] = "reference,vectorized",
    algorithms: Annotated[
        str,
        cyclopts.Option("--algorithms", help="Comma-separated algorithms to run."),
    ] = "fly,gauss",
    repeat: Annotated[
        int, cyclopts.Option("--repeat", help="Timed repetitions per round trip.")
    ] = 5,
    seed: Annotated[int, cyclopts.Option("--seed", help="Random seed.")] = 0,
):
    """
    Run scalar and vector round trips and report errors and timings.
    """
    logger.info("=" * 60)
    logger.info("Spherical Harmonic Transform Round Trips")
    logger.info("=" * 60)

    rng = np.random.default_rng(seed)
    results = []
    for backend in backends.split(","):
        for algorithm in algorithms.split(","):
            label = f"{backend}/{algorithm}"
            try:
                sht = SphericalHarmonicTransform(
                    lmax,
                    mmax,
                    grid=grid,
                    norm=norm,
                    backend=backend,
                    algorithm=algorithm,
                )
            except SHTError as err:
                logger.warning(f"{label}: skipped ({err})")
                continue
            cfg = sht.config
            logger.info(
                f"{label}: nlat={cfg.nlat} nphi={cfg.nphi} nlm={cfg.nlm}"
            )
            with sht:
                qlm = random_coefficients(sht, rng)
                slm = random_coefficients(sht, rng, vector=True)
                tlm = random_coefficients(sht, rng, vector=True)
                err_s, t_s = scalar_roundtrip(sht, qlm, repeat)
                err_v, t_v = vector_roundtrip(sht, slm, tlm, repeat)
            logger.success(
                f"{label}: scalar error {err_s:.2e} ({t_s * 1e3:.3f} ms), "
                f"vector error {err_v:.2e} ({t_v * 1e3:.3f} ms)"
            )
            results.append((label, err_s, err_v))

    if not results:
        logger.error("no transform could be built")
        return 1
    worst = max(results, key=lambda r: max(r[1], r[2]))
    logger.info(f"Largest error: {max(worst[1], worst[2]):.2e} ({worst[0]})")
    return 0


if __name__ == "__main__":
    app()
