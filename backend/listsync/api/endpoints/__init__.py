# API endpoint routers
from . import health, hubspot, pipeline

__all__ = ["health", "hubspot", "pipeline"]
