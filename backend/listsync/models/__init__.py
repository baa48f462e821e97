# ORM models - imported here so Base.metadata sees every table
from .integration import AccountIntegration, EnrichmentConfig
from .upload import RowStatus, SessionStatus, UploadRow, UploadSession

__all__ = [
    "AccountIntegration",
    "EnrichmentConfig",
    "RowStatus",
    "SessionStatus",
    "UploadRow",
    "UploadSession",
]
