from spharmx._src.config import (
    Algorithm,
    Backend,
    FieldType,
    GridKind,
    Normalization,
    Recurrence,
    SHTConfig,
    Variant,
    grid_size_auto,
)
from spharmx._src.errors import (
    AcceleratorError,
    ConfigurationError,
    ResourceError,
    SHTError,
)
from spharmx._src.spherical import (
    AlgorithmPolicy,
    HeuristicPolicy,
    KernelTable,
    SphericalGeometry,
    SphericalHarmonicTransform,
    TimedPolicy,
    select_algorithm,
)

__all__ = [
    # Configuration
    "SHTConfig",
    "grid_size_auto",
    "Normalization",
    "GridKind",
    "Algorithm",
    "Backend",
    "Recurrence",
    "Variant",
    "FieldType",
    # Errors
    "SHTError",
    "ConfigurationError",
    "ResourceError",
    "AcceleratorError",
    # Transform
    "SphericalHarmonicTransform",
    "SphericalGeometry",
    # Algorithm selection
    "KernelTable",
    "AlgorithmPolicy",
    "HeuristicPolicy",
    "TimedPolicy",
    "select_algorithm",
]
