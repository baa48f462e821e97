"""
HubSpot CRM Integration.
"""

from listsync.integrations.hubspot.client import HubSpotAPIError, HubSpotAuthError, HubSpotClient
from listsync.integrations.hubspot.provider import HubSpotCRMProvider
from listsync.integrations.hubspot.tokens import HubSpotTokenManager

__all__ = [
    "HubSpotAPIError",
    "HubSpotAuthError",
    "HubSpotClient",
    "HubSpotCRMProvider",
    "HubSpotTokenManager",
]
