"""
Auth classification and the consecutive-failure policy.

The CRM reports a dead credential in several shapes; all of them must be
recognised, and nothing else may be mistaken for one.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from listsync.integrations.hubspot.client import HubSpotAPIError, HubSpotAuthError
from listsync.services.pipeline.auth_guard import (
    AuthGuard,
    ErrorClass,
    classify_error,
    is_auth_error,
)


class StatusError(Exception):
    def __init__(self, **attributes):
        super().__init__("request failed")
        for name, value in attributes.items():
            setattr(self, name, value)


class TestIsAuthError:

    @pytest.mark.parametrize("attribute", ["status_code", "code", "status", "statusCode"])
    def test_status_attribute_401(self, attribute):
        assert is_auth_error(StatusError(**{attribute: 401}))

    def test_status_as_string(self):
        assert is_auth_error(StatusError(code="401"))

    def test_response_status_401(self):
        request = httpx.Request("GET", "https://api.hubapi.com/crm/v3/owners")
        response = httpx.Response(401, request=request)
        error = httpx.HTTPStatusError("Unauthorized", request=request, response=response)
        assert is_auth_error(error)

    def test_expired_marker_in_message(self):
        assert is_auth_error(Exception("EXPIRED_AUTHENTICATION: token is expired"))

    def test_message_attribute_mentions_expired(self):
        assert is_auth_error(StatusError(message="The OAuth token used to make this call expired"))

    def test_body_with_marker(self):
        assert is_auth_error(StatusError(body=b'{"category":"EXPIRED_AUTHENTICATION"}'))

    def test_hubspot_auth_error(self):
        assert is_auth_error(HubSpotAuthError("HubSpot not connected"))

    def test_ordinary_errors_are_not_auth(self):
        assert not is_auth_error(ValueError("Email is required to create a HubSpot contact"))
        assert not is_auth_error(HubSpotAPIError("HubSpot API error: 400 - bad property", status_code=400))

    def test_boolean_status_is_ignored(self):
        # True == 1, never a status code
        assert not is_auth_error(StatusError(status=True))


class TestClassifyError:

    def test_rate_limited(self):
        assert classify_error(HubSpotAPIError("slow down", status_code=429)) == ErrorClass.RATE_LIMITED

    def test_not_found(self):
        assert classify_error(StatusError(status_code=404)) == ErrorClass.NOT_FOUND

    def test_server_error_is_transient(self):
        assert classify_error(HubSpotAPIError("oops", status_code=503)) == ErrorClass.TRANSIENT

    def test_wrapped_network_error_is_transient(self):
        try:
            try:
                raise httpx.ConnectError("connection refused")
            except httpx.ConnectError as e:
                raise HubSpotAPIError(f"Network error calling HubSpot: {e}") from e
        except HubSpotAPIError as wrapped:
            assert classify_error(wrapped) == ErrorClass.TRANSIENT

    def test_auth_wins_over_other_shapes(self):
        assert classify_error(StatusError(status_code=401, code=429)) == ErrorClass.AUTH_EXPIRED

    def test_unknown(self):
        assert classify_error(RuntimeError("boom")) == ErrorClass.UNKNOWN


def _provider(token="token"):
    provider = MagicMock()
    provider.get_valid_access_token = AsyncMock(return_value=token)
    return provider


class TestAuthGuardPolicy:

    @pytest.mark.asyncio
    async def test_first_failure_refreshes_second_aborts(self):
        provider = _provider()
        guard = AuthGuard(provider)

        assert await guard.record_auth_failure() is False
        provider.reset_client.assert_called_once()
        provider.get_valid_access_token.assert_awaited_once_with(force_refresh=True)

        assert await guard.record_auth_failure() is True

    @pytest.mark.asyncio
    async def test_success_resets_streak(self):
        guard = AuthGuard(_provider())

        await guard.record_auth_failure()
        guard.record_success()

        assert await guard.record_auth_failure() is False

    @pytest.mark.asyncio
    async def test_failed_refresh_does_not_abort_on_its_own(self):
        provider = _provider()
        provider.get_valid_access_token.side_effect = HubSpotAuthError("refresh rejected")
        guard = AuthGuard(provider)

        assert await guard.record_auth_failure() is False

    @pytest.mark.asyncio
    async def test_ensure_credentials(self):
        assert await AuthGuard(_provider("token")).ensure_credentials() is True
        assert await AuthGuard(_provider(None)).ensure_credentials() is False
