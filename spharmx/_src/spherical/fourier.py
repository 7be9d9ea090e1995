"""
Longitude Fourier Stage
=======================

Maps real spatial fields (..., nlat, nphi) to per-order Fourier profiles
(..., nm, nlat) and back.  Order index im sits on Fourier bin im because the
longitudes span [0, 2*pi/mres).

    analysis  : F_m(theta) = rfft(f)[im] / nphi
    synthesis : f = irfft(G, n=nphi),  G[im] = nphi * F_m

A real field gets the conjugate-symmetric negative orders implicitly, so
f = F_0 + 2 Re sum_{m>0} F_m e^{i m phi}.  On the Nyquist bin (nphi == 2*im)
the real transform keeps a single real term: the synthesis scale doubles and
the analysis divides by 2*nphi.

The numpy variant runs scipy.fft with `workers` threads, the jax variant
jnp.fft and is traceable under jit.
"""

import equinox as eqx
import jax.numpy as jnp
import numpy as np
import scipy.fft


class FourierStage(eqx.Module):
    nphi: int
    nm: int
    use_jax: bool
    workers: int
    synth_scale: np.ndarray
    analys_scale: np.ndarray

    def __init__(self, nphi: int, nm: int, use_jax: bool = False, workers: int = 1):
        self.nphi = nphi
        self.nm = nm
        self.use_jax = use_jax
        self.workers = workers
        im = np.arange(nm)
        nyquist = (2 * im == nphi) & (im > 0)
        self.synth_scale = np.where(nyquist, 2.0 * nphi, float(nphi))
        self.analys_scale = 1.0 / self.synth_scale

    def to_spatial(self, F):
        """(..., nm, nlat) complex profiles -> (..., nlat, nphi) real field."""
        nbins = self.nphi // 2 + 1
        if self.use_jax:
            G = jnp.swapaxes(F, -1, -2) * self.synth_scale
            pad = [(0, 0)] * (G.ndim - 1) + [(0, nbins - self.nm)]
            return jnp.fft.irfft(jnp.pad(G, pad), n=self.nphi, axis=-1)
        G = np.zeros(F.shape[:-2] + (F.shape[-1], nbins), dtype=np.complex128)
        G[..., : self.nm] = np.swapaxes(F, -1, -2) * self.synth_scale
        return scipy.fft.irfft(G, n=self.nphi, axis=-1, workers=self.workers)

    def to_fourier(self, f):
        """(..., nlat, nphi) real field -> (..., nm, nlat) complex profiles."""
        if self.use_jax:
            G = jnp.fft.rfft(f, axis=-1)[..., : self.nm] * self.analys_scale
            return jnp.swapaxes(G, -1, -2)
        G = scipy.fft.rfft(np.asarray(f, dtype=np.float64), axis=-1, workers=self.workers)
        return np.swapaxes(G[..., : self.nm] * self.analys_scale, -1, -2)
