"""
chainorch.backends - Chain backends.

Backends are loaded through load_backend_factory(), which only accepts
factories from allowlisted modules. InMemoryBackend is the simulated chain
used by the local environment and the test-suite.
"""

from .base import (
    Backend,
    guarded,
    load_backend_factory,
    ALLOWED_BACKEND_MODULES,
)
from .memory import (
    InMemoryBackend,
    ContractModel,
    StorageModel,
    AddressResolverModel,
    ReadProxyModel,
    ResolverMixinModel,
    LegacySyncModel,
    LegacyResolverModel,
    DebtCacheModel,
    function_abi,
    create_backend,
)

__all__ = [
    "Backend",
    "guarded",
    "load_backend_factory",
    "ALLOWED_BACKEND_MODULES",
    "InMemoryBackend",
    "ContractModel",
    "StorageModel",
    "AddressResolverModel",
    "ReadProxyModel",
    "ResolverMixinModel",
    "LegacySyncModel",
    "LegacyResolverModel",
    "DebtCacheModel",
    "function_abi",
    "create_backend",
]
