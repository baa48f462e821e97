"""
Abstract CRM Provider Interface.
Defines the contract the import pipeline uses to push rows into a CRM.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class CRMProvider(ABC):
    """
    Abstract base class for CRM system integrations.

    Companies and contacts are exchanged as plain dictionaries:
    companies carry `id`, `name`, `domain`, `city`, `state`, `properties`;
    contacts carry `id`, `email`, `properties`.

    Implementations raise on failed calls. Errors that mean the credential
    is dead must be recognisable by the pipeline's auth classification
    (status 401 or an expiry marker in the message/body).
    """

    @abstractmethod
    def get_provider_name(self) -> str:
        """
        Returns the name of the CRM provider.

        Returns:
            Provider name (e.g., "HubSpot")
        """
        pass

    @abstractmethod
    async def get_valid_access_token(self, force_refresh: bool = False) -> Optional[str]:
        """
        Returns a usable access token, refreshing it if necessary.

        Args:
            force_refresh: Refresh even if the cached token looks valid

        Returns:
            Access token, or None if no valid credential can be obtained
        """
        pass

    @abstractmethod
    def reset_client(self) -> None:
        """
        Drops cached credentials and HTTP state so the next call re-reads
        tokens from durable storage (e.g. after the user reconnected).
        """
        pass

    @abstractmethod
    async def search_companies_by_domain(self, domain: str) -> List[Dict[str, Any]]:
        """Companies whose domain contains `domain` as a token."""
        pass

    @abstractmethod
    async def search_companies_by_name(self, name: str) -> List[Dict[str, Any]]:
        """Companies whose name contains `name` as a token."""
        pass

    @abstractmethod
    async def create_company(
        self,
        name: str,
        domain: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
    ) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def update_company(self, company_id: str, properties: Dict[str, str]) -> None:
        pass

    @abstractmethod
    async def create_or_update_contact(self, properties: Dict[str, str]) -> Dict[str, Any]:
        """
        Creates a contact, or updates the existing one with the same email.

        Args:
            properties: CRM contact property names -> values (email required)

        Returns:
            The created or updated contact
        """
        pass

    @abstractmethod
    async def associate_contact_with_company(self, contact_id: str, company_id: str) -> None:
        pass

    @abstractmethod
    async def create_task(
        self,
        subject: str,
        body: str,
        owner_id: str,
        priority: str = "MEDIUM",
        associated_contact_id: Optional[str] = None,
        associated_company_id: Optional[str] = None,
    ) -> str:
        """
        Creates a follow-up task.

        Returns:
            ID of the new task
        """
        pass

    @abstractmethod
    async def get_owners(self) -> List[Dict[str, str]]:
        """
        Returns users that tasks can be assigned to.

        Example:
            >>> await provider.get_owners()
            [{"id": "101", "email": "ana@example.com", "name": "Ana Ortiz"}]
        """
        pass
