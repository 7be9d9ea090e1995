"""
Kernel Dispatch and Algorithm Selection
=======================================

KernelTable maps (Variant, FieldType) to the engine function implementing
it.  The table is filled once when a transform is built; transform calls go
straight to the resolved function.

Algorithm selection is a replaceable policy.  Candidates are:

    fly   : always available.
    gauss : when synthesis + analysis matrices fit in max_memory_mb.
    dct   : regular grid, reference backend, nlat >= min_nlat_dct, tables
            within max_memory_mb.

HeuristicPolicy picks fly for large lmax (or when matrices do not fit) and
gauss otherwise.  TimedPolicy times a round trip of every candidate and keeps
dct only when it is accurate to min_accuracy_dct and faster than the
quadrature by min_perf_improve_dct.
"""

import time
from typing import Callable, Protocol, Sequence

import equinox as eqx
from loguru import logger
import numpy as np

from ..config import Algorithm, Backend, FieldType, GridKind, SHTConfig, Variant
from ..errors import ConfigurationError, ResourceError
from .matrix import table_bytes


class KernelTable:
    """Resolved (Variant, FieldType) -> callable table of one engine."""

    def __init__(self, engine):
        self._table = {}
        for field in FieldType:
            self._table[(Variant.STANDARD, field)] = getattr(engine, field.value)
            self._table[(Variant.M_ONLY, field)] = getattr(engine, field.value + "_ml")

    def __getitem__(self, key):
        return self._table[key]

    def __len__(self):
        return len(self._table)

    def lookup(self, variant: Variant, field: FieldType) -> Callable:
        return self._table[(variant, field)]


def candidate_algorithms(config: SHTConfig) -> list[Algorithm]:
    """Algorithms usable for this configuration, fly first."""
    fits = table_bytes(config) <= config.max_memory_mb * 2**20
    candidates = [Algorithm.FLY]
    if fits:
        candidates.append(Algorithm.GAUSS)
    if (
        fits
        and config.grid is GridKind.REGULAR
        and config.backend is Backend.REFERENCE
        and config.nlat >= config.min_nlat_dct
    ):
        candidates.append(Algorithm.DCT)
    return candidates


def check_requested(config: SHTConfig) -> None:
    """Validate an explicitly requested algorithm."""
    alg = config.algorithm
    if alg in (Algorithm.AUTO, Algorithm.FLY):
        return
    if alg is Algorithm.DCT:
        if config.grid is not GridKind.REGULAR:
            raise ConfigurationError("the dct algorithm needs the regular grid")
        if config.backend is not Backend.REFERENCE:
            raise ConfigurationError("the dct algorithm runs on the reference backend only")
    need = table_bytes(config) / 2**20
    if need > config.max_memory_mb:
        raise ResourceError(
            f"{alg.value} tables need {need:.1f} MB, above max_memory_mb="
            f"{config.max_memory_mb:.1f}"
        )


class AlgorithmPolicy(Protocol):
    def choose(
        self,
        config: SHTConfig,
        candidates: Sequence[Algorithm],
        build: Callable[[Algorithm], object],
    ) -> Algorithm: ...


class HeuristicPolicy(eqx.Module):
    """fly above `fly_lmax` or when matrices do not fit, gauss otherwise."""

    fly_lmax: int = 512

    def choose(self, config, candidates, build):
        if config.lmax >= self.fly_lmax or Algorithm.GAUSS not in candidates:
            return Algorithm.FLY
        return Algorithm.GAUSS


def _ready(x):
    for leaf in x if isinstance(x, tuple) else (x,):
        block = getattr(leaf, "block_until_ready", None)
        if block is not None:
            block()
    return x


def _time_roundtrip(engine, qlm, llim, time_limit):
    """Mean wall time of one synthesis + analysis; also returns the result."""
    out = _ready(engine.scalar_analysis(_ready(engine.scalar_synth(qlm, llim)), llim))
    count = 0
    start = time.perf_counter()
    while True:
        _ready(engine.scalar_analysis(_ready(engine.scalar_synth(qlm, llim)), llim))
        count += 1
        elapsed = time.perf_counter() - start
        if elapsed >= time_limit or count >= 50:
            return elapsed / count, np.asarray(out)


class TimedPolicy(eqx.Module):
    """Pick the fastest candidate by timing round trips on random data."""

    seed: int = 0

    def choose(self, config, candidates, build):
        rng = np.random.default_rng(self.seed)
        nlm = config.nlm
        qlm = rng.standard_normal(nlm) + 1j * rng.standard_normal(nlm)
        qlm[: config.lmax + 1] = qlm[: config.lmax + 1].real
        per_alg = max(config.time_limit / max(len(candidates), 1), 1e-3)
        timings, results = {}, {}
        for alg in candidates:
            timings[alg], results[alg] = _time_roundtrip(
                build(alg), qlm, config.lmax, per_alg
            )
            logger.debug(f"{alg.value}: {timings[alg] * 1e3:.3f} ms per round trip")

        quadrature = [a for a in candidates if a is not Algorithm.DCT]
        best = min(quadrature, key=timings.get)
        if Algorithm.DCT in timings:
            error = np.max(np.abs(results[Algorithm.DCT] - qlm)) / np.max(np.abs(qlm))
            speedup = timings[best] / timings[Algorithm.DCT]
            if error <= config.min_accuracy_dct and speedup >= config.min_perf_improve_dct:
                best = Algorithm.DCT
            else:
                logger.debug(f"dct rejected: error {error:.2e}, speed-up {speedup:.2f}")
        return best


def select_algorithm(config: SHTConfig, policy: AlgorithmPolicy, build) -> Algorithm:
    """
    Algorithm to build for `config`.

    An explicit request is validated and returned as is; AUTO defers to the
    policy over the usable candidates.
    """
    check_requested(config)
    if config.algorithm is not Algorithm.AUTO:
        return config.algorithm
    candidates = candidate_algorithms(config)
    chosen = policy.choose(config, candidates, build)
    logger.info(
        f"lmax={config.lmax} nlat={config.nlat}: {chosen.value} selected "
        f"from {[a.value for a in candidates]}"
    )
    return chosen
