# Business logic services
from .cache import TTLCache
from .crm_factory import get_crm_provider, is_crm_available
from .pipeline_log import pipeline_log

__all__ = [
    "TTLCache",
    "get_crm_provider",
    "is_crm_available",
    "pipeline_log",
]
