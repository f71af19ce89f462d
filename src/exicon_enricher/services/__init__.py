"""Services package for exicon_enricher.

Modules:
    factory: ServiceFactory for centralized client and component creation
"""

from .factory import ServiceFactory

__all__ = ["ServiceFactory"]
