"""
HostForge - Host administration operations with uniform results.

Filesystem, text, registry, process, service and reboot-deferred deletion
operations that report through a single result envelope instead of raising.
"""

__version__ = "1.0.0"
__author__ = "HostForge Team"

from hostforge.core.config import HostForgeConfig
from hostforge.core.session import Session

__all__ = ["HostForgeConfig", "Session", "__version__"]
