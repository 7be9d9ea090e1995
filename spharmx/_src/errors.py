"""
Error Taxonomy
==============

Errors raised while building a transform configuration.

    • ConfigurationError: invalid shape parameters, grid counts or precision
      limits.  The configuration is not created.
    • ResourceError: precomputed tables would exceed the memory ceiling and
      no fallback algorithm is available.
    • AcceleratorError: the requested accelerator device cannot be used.
      Raised by device probing and always handled by the builder, which falls
      back to the host and records the degradation.

Transform calls never raise these: buffer layouts are a caller contract.
"""


class SHTError(Exception):
    """Base class of every error raised by spharmx."""


class ConfigurationError(SHTError, ValueError):
    """Invalid transform configuration (detected at build time)."""


class ResourceError(SHTError, MemoryError):
    """Precomputation does not fit in the configured memory ceiling."""


class AcceleratorError(SHTError, RuntimeError):
    """Accelerator probing or placement failed."""
