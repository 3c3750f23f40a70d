"""Client for the user token service used by OAuth sign-in flows."""

from __future__ import annotations

import base64
import json
import logging
import types
from typing import Any

import httpx
from pydantic import TypeAdapter

from .client import get_product_info
from .errors import ConnectorError
from .models import (
    ConversationReference,
    SignInResource,
    TokenOrSignInResourceResponse,
    TokenResponse,
    TokenStatus,
)
from .wire_compat import normalize_token_exchange_state

logger = logging.getLogger(__name__)


def _encode_state(state: dict[str, Any]) -> str:
    return base64.b64encode(json.dumps(state).encode()).decode()


class UserTokenClient:
    """Async HTTP client for the user token service."""

    BASE_URL = "https://api.botframework.com"

    def __init__(self, token: str, app_id: str, base_url: str | None = None):
        self.app_id = app_id
        self.base_url = base_url or self.BASE_URL
        self._token = token
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> UserTokenClient:
        """Async context manager entry."""
        headers = {"Accept": "application/json", "User-Agent": get_product_info()}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        self._client = httpx.AsyncClient(base_url=self.base_url, headers=headers, timeout=30.0)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self, method: str, endpoint: str, *, params: dict[str, Any] | None = None, **kwargs: Any
    ) -> httpx.Response:
        if not self._client:
            raise RuntimeError("Client not initialized. Use async context manager.")

        clean_params = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            response = await self._client.request(method, endpoint, params=clean_params, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            raise ConnectorError(
                f"HTTP {e.response.status_code}: {e.response.text}",
                e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise ConnectorError(f"Request failed: {str(e)}") from e

    async def get_user_token(
        self, connection_name: str, channel_id: str, user_id: str, code: str | None = None
    ) -> TokenResponse:
        """Cached user token, or an empty response when the user is not signed in."""
        params = {
            "connectionName": connection_name,
            "channelId": channel_id,
            "userId": user_id,
            "code": code,
        }
        try:
            response = await self._request("GET", "/api/usertoken/GetToken", params=params)
        except ConnectorError as e:
            if e.status_code == 404:
                return TokenResponse()
            raise
        return TokenResponse.model_validate(response.json())

    async def sign_out(self, user_id: str, connection_name: str, channel_id: str) -> None:
        params = {"userId": user_id, "connectionName": connection_name, "channelId": channel_id}
        try:
            await self._request("DELETE", "/api/usertoken/SignOut", params=params)
        except ConnectorError as e:
            logger.error("Sign out failed: %s", e)
            raise ConnectorError("Failed to sign out", e.status_code) from e

    async def get_sign_in_resource(
        self,
        connection_name: str,
        conversation: ConversationReference,
        relates_to: ConversationReference | None = None,
        app_id: str | None = None,
    ) -> SignInResource:
        state = normalize_token_exchange_state(
            {
                "connectionName": connection_name,
                "conversation": conversation.to_dict(),
                "relatesTo": relates_to.to_dict() if relates_to else None,
                "msAppId": app_id or self.app_id,
            }
        )
        response = await self._request(
            "GET", "/api/botsignin/GetSignInResource", params={"state": _encode_state(state)}
        )
        return SignInResource.model_validate(response.json())

    async def exchange_token(
        self,
        user_id: str,
        connection_name: str,
        channel_id: str,
        exchange_request: dict[str, Any],
    ) -> TokenResponse:
        params = {"userId": user_id, "connectionName": connection_name, "channelId": channel_id}
        try:
            response = await self._request(
                "POST", "/api/usertoken/exchange", params=params, json=exchange_request
            )
        except ConnectorError as e:
            if e.status_code == 404:
                return TokenResponse()
            raise
        return TokenResponse.model_validate(response.json())

    async def get_token_or_sign_in_resource(
        self,
        user_id: str,
        connection_name: str,
        channel_id: str,
        conversation: ConversationReference,
        relates_to: ConversationReference | None = None,
        code: str | None = None,
        final_redirect: str = "",
        fwd_url: str = "",
    ) -> TokenOrSignInResourceResponse:
        state = normalize_token_exchange_state(
            {
                "conversation": conversation.to_dict(),
                "relatesTo": relates_to.to_dict() if relates_to else None,
                "connectionName": connection_name,
                "msAppId": self.app_id,
            }
        )
        params = {
            "userId": user_id,
            "connectionName": connection_name,
            "channelId": channel_id,
            "state": _encode_state(state),
            "code": code,
            "finalRedirect": final_redirect,
            "fwdUrl": fwd_url,
        }
        response = await self._request(
            "GET", "/api/usertoken/GetTokenOrSignInResource", params=params
        )
        return TokenOrSignInResourceResponse.model_validate(response.json())

    async def get_token_status(
        self, user_id: str, channel_id: str, include: str | None = None
    ) -> list[TokenStatus]:
        params = {"userId": user_id, "channelId": channel_id, "include": include}
        response = await self._request("GET", "/api/usertoken/GetTokenStatus", params=params)
        return TypeAdapter(list[TokenStatus]).validate_python(response.json())

    async def get_aad_tokens(
        self,
        user_id: str,
        connection_name: str,
        channel_id: str,
        resource_urls: list[str],
    ) -> dict[str, TokenResponse]:
        params = {"userId": user_id, "connectionName": connection_name, "channelId": channel_id}
        response = await self._request(
            "POST",
            "/api/usertoken/GetAadTokens",
            params=params,
            json={"resourceUrls": resource_urls},
        )
        return TypeAdapter(dict[str, TokenResponse]).validate_python(response.json())
