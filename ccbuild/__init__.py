# ccbuild package: Commerce Cloud build listing and pruning
from .client import APIError, BuildClient, ConfigurationError
from .types import Build, PruneOutcome

__version__ = "0.1.0"

__all__ = [
    "APIError",
    "Build",
    "BuildClient",
    "ConfigurationError",
    "PruneOutcome",
    "__version__",
]
