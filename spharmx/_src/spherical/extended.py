"""
Extended-Range Arithmetic
=========================

At high degree the sectoral values sin(theta)^m underflow double precision
long before the functions they seed become significant.  Values are carried
as a pair (y, e) meaning y * SCALE**e with SCALE = 2**450 and e <= 0.

    • Start: sin(theta)^m is built one factor at a time; whenever |y| drops
      below 1/SCALE it is multiplied by SCALE and e decremented.
    • Recurrence: when e < 0 and |y| grows past 1, the two live values are
      divided by SCALE and e incremented.
    • A value contributes to a sum only once e == 0.

References:
-----------
[1] Schaeffer, N. (2013). Efficient spherical harmonic transforms aimed at
    pseudospectral numerical simulations.  G3, 14(3).
"""

from typing import NamedTuple

import numpy as np

from ..config import SHT_SCALE_FACTOR

SHT_SCALE_INV = 1.0 / SHT_SCALE_FACTOR


class ExtendedRange(NamedTuple):
    """value * SCALE**exponent, exponent <= 0."""

    value: np.ndarray
    exponent: np.ndarray

    def to_float(self) -> np.ndarray:
        return to_float(self.value, self.exponent)


def to_float(y: np.ndarray, e: np.ndarray) -> np.ndarray:
    """Collapse (y, e) to plain floats; magnitudes below ~1e-308 become 0."""
    return y * np.power(SHT_SCALE_FACTOR, e.astype(np.float64))


def normalize(y: np.ndarray, e: np.ndarray):
    """Bring |y| back above 1/SCALE by one scale step where it fell below."""
    small = (np.abs(y) < SHT_SCALE_INV) & (y != 0.0)
    return np.where(small, y * SHT_SCALE_FACTOR, y), e - small


def rescale_step(y_prev, y, e, xp=np):
    """
    Divide both live recurrence values by SCALE where e < 0 and |y| > 1.

    Shared by the numpy kernels and, with xp=jax.numpy, the traced ones.
    """
    big = (e < 0) & (xp.abs(y) > 1.0)
    if xp is np and not big.any():
        return y_prev, y, e
    return (
        xp.where(big, y_prev * SHT_SCALE_INV, y_prev),
        xp.where(big, y * SHT_SCALE_INV, y),
        e + big.astype(e.dtype),
    )


def sectoral_start(ms: np.ndarray, st: np.ndarray, extended: bool = True):
    """
    sin(theta)^m for every order in `ms` at every latitude of `st`.

    Parameters:
    -----------
    ms : Int[ndarray, "nm"]
        Increasing orders.
    st : Float[ndarray, "n"]
        sin(theta) samples.
    extended : bool
        Keep the (y, e) representation.  When False, values are collapsed to
        plain floats and e is zero everywhere.

    Returns:
    --------
    ExtendedRange of Float[ndarray, "nm n"] values and Int[ndarray, "nm n"]
    exponents.
    """
    ms = np.asarray(ms)
    st = np.asarray(st, dtype=np.float64)
    y = np.ones((len(ms), len(st)))
    e = np.zeros((len(ms), len(st)), dtype=np.int64)
    cur_y = np.ones(len(st))
    cur_e = np.zeros(len(st), dtype=np.int64)
    k = 0
    for i, m in enumerate(ms):
        while k < m:
            cur_y = cur_y * st
            cur_y, cur_e = normalize(cur_y, cur_e)
            k += 1
        y[i] = cur_y
        e[i] = cur_e
    if not extended:
        return ExtendedRange(to_float(y, e), np.zeros_like(e))
    return ExtendedRange(y, e)
