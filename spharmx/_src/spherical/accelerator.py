"""
Accelerator Probing
===================

Locates the JAX device requested by a configuration.  Probing failures are
raised as AcceleratorError and turned into a host fallback by `resolve_device`,
which never raises: the transform is built on the CPU and the reason is
returned so that the caller can record the degradation.
"""

import jax
from loguru import logger

from ..errors import AcceleratorError


def probe_device(kind: str):
    """First JAX device of the given platform ("gpu" or "tpu")."""
    try:
        devices = jax.devices(kind)
    except RuntimeError as err:
        raise AcceleratorError(f"no {kind} backend available: {err}") from err
    if not devices:
        raise AcceleratorError(f"no {kind} device found")
    return devices[0]


def resolve_device(requested: str):
    """
    Device for a transform.

    Returns:
    --------
    device : jax.Device or None
        None means the default (host) placement.
    degraded : str or None
        Why the requested accelerator is not used.
    """
    if requested == "cpu":
        return None, None
    kinds = ["gpu", "tpu"] if requested == "auto" else [requested]
    reasons = []
    for kind in kinds:
        try:
            device = probe_device(kind)
        except AcceleratorError as err:
            reasons.append(str(err))
            continue
        logger.info(f"transform placed on {device}")
        return device, None
    reason = "; ".join(reasons)
    if requested == "auto":
        logger.info(f"no accelerator found, running on the host ({reason})")
        return None, None
    logger.warning(f"accelerator '{requested}' unavailable, falling back to CPU: {reason}")
    return None, reason


def place(tree, device):
    """Move a pytree of tables to `device`; None leaves it where it is."""
    if device is None:
        return tree
    try:
        return jax.device_put(tree, device)
    except RuntimeError as err:
        raise AcceleratorError(f"could not place tables on {device}: {err}") from err
