"""
HubSpot CRM Provider Implementation.
Implements the CRMProvider interface for the import pipeline.
"""

import logging
from typing import Any, Dict, List, Optional

from listsync.core.interfaces.crm import CRMProvider
from listsync.integrations.hubspot.client import HubSpotAPIError, HubSpotAuthError, HubSpotClient
from listsync.integrations.hubspot.tokens import HubSpotTokenManager
from listsync.services.cache import TTLCache

logger = logging.getLogger(__name__)

COMPANY_PROPERTIES = ["name", "domain", "city", "state"]
CONTACT_PROPERTIES = ["email", "firstname", "lastname", "company"]

# HubSpot-defined association type ids
CONTACT_TO_COMPANY = 1
TASK_TO_CONTACT = 204
TASK_TO_COMPANY = 192


def _company_from_record(record: Dict[str, Any]) -> Dict[str, Any]:
    properties = record.get("properties") or {}
    return {
        "id": str(record.get("id")),
        "name": properties.get("name") or "",
        "domain": properties.get("domain") or "",
        "city": properties.get("city"),
        "state": properties.get("state"),
        "properties": properties,
    }


def _contact_from_record(record: Dict[str, Any]) -> Dict[str, Any]:
    properties = record.get("properties") or {}
    return {
        "id": str(record.get("id")),
        "email": properties.get("email") or "",
        "first_name": properties.get("firstname"),
        "last_name": properties.get("lastname"),
        "company": properties.get("company"),
        "properties": properties,
    }


def _clean_properties(properties: Dict[str, Any]) -> Dict[str, str]:
    """Drop empty values and strip whitespace."""
    cleaned = {}
    for key, value in properties.items():
        if value is None:
            continue
        text = str(value).strip()
        if text:
            cleaned[key] = text
    return cleaned


def _association(type_id: int) -> List[Dict[str, Any]]:
    return [{"associationCategory": "HUBSPOT_DEFINED", "associationTypeId": type_id}]


class HubSpotCRMProvider(CRMProvider):
    """
    HubSpot CRM integration.

    Company searches are cached (60s by default) so a batch of contacts
    from the same company costs one search. A newly created company is
    cached under its domain and name right away.
    """

    def __init__(
        self,
        client: HubSpotClient,
        token_manager: HubSpotTokenManager,
        company_cache: Optional[TTLCache] = None,
    ):
        self.client = client
        self.token_manager = token_manager
        self.company_cache = company_cache or TTLCache(ttl_seconds=60.0, name="hubspot-companies")

        logger.info("HubSpotCRMProvider initialized")

    def get_provider_name(self) -> str:
        return "HubSpot"

    async def get_valid_access_token(self, force_refresh: bool = False) -> Optional[str]:
        return await self.token_manager.get_valid_access_token(force_refresh=force_refresh)

    def reset_client(self) -> None:
        self.token_manager.invalidate()

    # -------------------------------------------------------------------------
    # Companies
    # -------------------------------------------------------------------------

    async def _search_companies(self, property_name: str, value: str) -> List[Dict[str, Any]]:
        cache_key = f"company:{property_name}:{value.lower()}"
        cached = self.company_cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            response = await self.client.post(
                "/crm/v3/objects/companies/search",
                json={
                    "filterGroups": [
                        {
                            "filters": [
                                {
                                    "propertyName": property_name,
                                    "operator": "CONTAINS_TOKEN",
                                    "value": value,
                                }
                            ]
                        }
                    ],
                    "properties": COMPANY_PROPERTIES,
                    "limit": 10,
                },
            )
        except HubSpotAuthError:
            raise
        except HubSpotAPIError as e:
            # A failed lookup only means no match; the contact is still synced
            logger.warning(f"⚠️ Company search by {property_name} '{value}' failed: {e}")
            return []

        results = [_company_from_record(record) for record in response.get("results", [])]
        self.company_cache.set(cache_key, results)
        return results

    async def search_companies_by_domain(self, domain: str) -> List[Dict[str, Any]]:
        return await self._search_companies("domain", domain)

    async def search_companies_by_name(self, name: str) -> List[Dict[str, Any]]:
        return await self._search_companies("name", name)

    async def create_company(
        self,
        name: str,
        domain: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
    ) -> Dict[str, Any]:
        properties = _clean_properties({"name": name, "domain": domain, "city": city, "state": state})
        response = await self.client.post("/crm/v3/objects/companies", json={"properties": properties})
        company = _company_from_record(response)

        # Later rows of the same company must find it without a new search
        if domain:
            self.company_cache.set(f"company:domain:{domain.lower()}", [company])
        if name:
            self.company_cache.set(f"company:name:{name.lower()}", [company])

        logger.info(f"🏢 Created HubSpot company {company['id']} ({name})")
        return company

    async def update_company(self, company_id: str, properties: Dict[str, str]) -> None:
        cleaned = _clean_properties(properties)
        if not cleaned:
            return
        await self.client.patch(f"/crm/v3/objects/companies/{company_id}", json={"properties": cleaned})

    # -------------------------------------------------------------------------
    # Contacts
    # -------------------------------------------------------------------------

    async def create_or_update_contact(self, properties: Dict[str, str]) -> Dict[str, Any]:
        cleaned = _clean_properties(properties)
        if not cleaned.get("email"):
            raise ValueError("Email is required to create a HubSpot contact")

        try:
            response = await self.client.post("/crm/v3/objects/contacts", json={"properties": cleaned})
            return _contact_from_record(response)
        except HubSpotAPIError as e:
            if e.status_code != 409:
                raise

        # Contact already exists: update it in place
        search = await self.client.post(
            "/crm/v3/objects/contacts/search",
            json={
                "filterGroups": [
                    {"filters": [{"propertyName": "email", "operator": "EQ", "value": cleaned["email"]}]}
                ],
                "properties": CONTACT_PROPERTIES,
                "limit": 1,
            },
        )
        results = search.get("results", [])
        if not results:
            raise HubSpotAPIError(
                f"Contact {cleaned['email']} reported as existing but not found",
                status_code=409,
            )

        existing_id = results[0]["id"]
        response = await self.client.patch(
            f"/crm/v3/objects/contacts/{existing_id}",
            json={"properties": cleaned},
        )
        logger.debug(f"Updated existing HubSpot contact {existing_id}")
        return _contact_from_record(response)

    async def associate_contact_with_company(self, contact_id: str, company_id: str) -> None:
        await self.client.put(
            f"/crm/v4/objects/contacts/{contact_id}/associations/companies/{company_id}",
            json=_association(CONTACT_TO_COMPANY),
        )

    # -------------------------------------------------------------------------
    # Tasks & owners
    # -------------------------------------------------------------------------

    async def create_task(
        self,
        subject: str,
        body: str,
        owner_id: str,
        priority: str = "MEDIUM",
        associated_contact_id: Optional[str] = None,
        associated_company_id: Optional[str] = None,
    ) -> str:
        response = await self.client.post(
            "/crm/v3/objects/tasks",
            json={
                "properties": {
                    "hs_task_subject": subject,
                    "hs_task_body": body,
                    "hubspot_owner_id": owner_id,
                    "hs_task_status": "NOT_STARTED",
                    "hs_task_priority": priority,
                }
            },
        )
        task_id = str(response["id"])

        if associated_contact_id:
            await self.client.put(
                f"/crm/v4/objects/tasks/{task_id}/associations/contacts/{associated_contact_id}",
                json=_association(TASK_TO_CONTACT),
            )
        if associated_company_id:
            await self.client.put(
                f"/crm/v4/objects/tasks/{task_id}/associations/companies/{associated_company_id}",
                json=_association(TASK_TO_COMPANY),
            )

        logger.info(f"📝 Created HubSpot task {task_id}: {subject}")
        return task_id

    async def get_owners(self) -> List[Dict[str, str]]:
        response = await self.client.get("/crm/v3/owners")
        owners = []
        for owner in response.get("results", []):
            name = f"{owner.get('firstName') or ''} {owner.get('lastName') or ''}".strip()
            owners.append({"id": str(owner.get("id")), "email": owner.get("email") or "", "name": name})
        return owners

    async def close(self) -> None:
        await self.client.close()
        await self.token_manager.close()
