"""Concrete provider implementations.

Importing this module registers all provider types in the provider registry.
"""

from providers.apt import (
    AptCleanupProvider,
    AptPackagesProvider,
    AptRepositoryProvider,
    DebPackageProvider,
)
from providers.mongodb import MongoDBProvider
from providers.system import (
    SwapFileProvider,
    SystemdServiceProvider,
    UfwProvider,
    WriteFileProvider,
)
