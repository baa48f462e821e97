"""
HubSpot API Client.
Bearer-token HTTP client over httpx; tokens come from a token source
(usually HubSpotTokenManager.get_valid_access_token).
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

TokenSource = Callable[[], Awaitable[Optional[str]]]


class HubSpotAPIError(Exception):
    """Raised when the HubSpot API returns an error."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


class HubSpotAuthError(HubSpotAPIError):
    """Raised when HubSpot rejects the credential or none is available."""

    def __init__(self, message: str, status_code: Optional[int] = 401, body: Any = None):
        super().__init__(message, status_code=status_code, body=body)


class HubSpotClient:
    """
    HubSpot CRM API client.

    A fresh token is requested from the token source for every call, so a
    refreshed or re-authorised token is picked up without rebuilding the
    client.
    """

    def __init__(
        self,
        token_source: TokenSource,
        api_base_url: str = "https://api.hubapi.com",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize HubSpot client.

        Args:
            token_source: Coroutine function returning the current access token
            api_base_url: HubSpot API base URL
            http_client: Optional shared httpx client (tests inject a mock transport)
            timeout: Request timeout in seconds
        """
        self._token_source = token_source
        self.api_base_url = api_base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

        logger.info("HubSpotClient initialized")

    async def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> Dict[str, Any]:
        """
        Makes an authenticated request to the HubSpot API.

        Args:
            method: HTTP method (GET, POST, PATCH, PUT)
            endpoint: API endpoint (e.g., "/crm/v3/objects/contacts")
            params: Query parameters
            json: JSON body

        Returns:
            Parsed JSON response ({} for empty responses)

        Raises:
            HubSpotAuthError: No token available, or HTTP 401
            HubSpotAPIError: Any other error response or network failure
        """
        token = await self._token_source()
        if not token:
            raise HubSpotAuthError("HubSpot not connected. Please connect via OAuth in Admin settings.")

        url = f"{self.api_base_url}{endpoint}"

        try:
            response = await self._client.request(
                method=method,
                url=url,
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.RequestError as e:
            raise HubSpotAPIError(f"Network error calling HubSpot: {e}") from e

        if response.status_code == 401:
            raise HubSpotAuthError(
                f"HubSpot API error: 401 - {response.text}",
                body=response.text,
            )

        if response.status_code >= 400:
            error_msg = f"HubSpot API error: {response.status_code} - {response.text}"
            # 409 (contact exists) is expected and handled by the caller
            if response.status_code != 409:
                logger.error(error_msg)
            raise HubSpotAPIError(error_msg, status_code=response.status_code, body=response.text)

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """GET request shorthand."""
        return await self.request("GET", endpoint, params=params)

    async def post(self, endpoint: str, json: Any = None) -> Dict[str, Any]:
        """POST request shorthand."""
        return await self.request("POST", endpoint, json=json)

    async def patch(self, endpoint: str, json: Any = None) -> Dict[str, Any]:
        return await self.request("PATCH", endpoint, json=json)

    async def put(self, endpoint: str, json: Any = None) -> Dict[str, Any]:
        return await self.request("PUT", endpoint, json=json)

    async def close(self):
        """Closes the HTTP client."""
        await self._client.aclose()
        logger.info("HubSpotClient closed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
