"""Async REST client for the channel connector service."""

from __future__ import annotations

import logging
import os
import platform
import types
from importlib import metadata
from typing import Any
from urllib.parse import quote

import httpx

from .config import AuthConfiguration
from .errors import ConnectorError
from .models import (
    Activity,
    AttachmentData,
    AttachmentInfo,
    ChannelAccount,
    ConversationParameters,
    ConversationResourceResponse,
    ConversationsResult,
    ResourceResponse,
)
from .token_provider import MsalTokenProvider
from .types import AGENTIC_ROLES, Channels
from .wire_compat import normalize_outgoing_activity

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONVERSATION_ID_LENGTH = 150
TRUNCATED_CHANNELS = frozenset({Channels.MSTEAMS, Channels.AGENTS})


def get_product_info() -> str:
    """User agent token identifying this SDK."""
    try:
        version = metadata.version("agents-hosting")
    except metadata.PackageNotFoundError:
        version = "0.0.0"
    return f"agents-sdk-py/{version} python/{platform.python_version()}"


def get_max_conversation_id_length() -> int:
    raw = os.getenv("MAX_APX_CONVERSATION_ID_LENGTH")
    if raw is None:
        return DEFAULT_MAX_CONVERSATION_ID_LENGTH
    try:
        length = int(raw)
    except ValueError:
        return DEFAULT_MAX_CONVERSATION_ID_LENGTH
    if length <= 0:
        logger.warning("Ignoring non-positive MAX_APX_CONVERSATION_ID_LENGTH: %s", raw)
        return DEFAULT_MAX_CONVERSATION_ID_LENGTH
    return length


def conditionally_truncate_conversation_id(conversation_id: str, activity: Activity) -> str:
    """Shorten long conversation ids for agentic senders on Teams and agents channels."""
    channel = (activity.channel_id or "").split(":", 1)[0]
    role = activity.from_property.role if activity.from_property else None
    if channel not in TRUNCATED_CHANNELS or role not in AGENTIC_ROLES:
        return conversation_id
    return conversation_id[: get_max_conversation_id_length()]


def build_headers(token: str, headers: dict[str, str] | None = None) -> dict[str, str]:
    """Outgoing headers with the product user agent and bearer token applied."""
    outgoing = {key: value for key, value in (headers or {}).items()}
    product_info = get_product_info()
    user_agent_key = next((k for k in outgoing if k.lower() == "user-agent"), None)
    if user_agent_key is None:
        outgoing["User-Agent"] = product_info
    elif product_info not in outgoing[user_agent_key]:
        outgoing[user_agent_key] = f"{outgoing[user_agent_key]} {product_info}"
    outgoing["Accept"] = "application/json"
    outgoing["Content-Type"] = "application/json"
    if token and len(token) > 1:
        outgoing["Authorization"] = f"Bearer {token}"
    return outgoing


class ConnectorClient:
    """Async HTTP client for the conversations and attachments REST API."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url
        self._headers = build_headers(token, headers)
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def create_client_with_token(
        cls, base_url: str, token: str, headers: dict[str, str] | None = None
    ) -> ConnectorClient:
        return cls(base_url, token, headers)

    @classmethod
    async def create_client_with_auth(
        cls,
        base_url: str,
        config: AuthConfiguration,
        token_provider: MsalTokenProvider,
        scope: str,
        headers: dict[str, str] | None = None,
    ) -> ConnectorClient:
        token = await token_provider.get_access_token(config, scope)
        return cls(base_url, token, headers)

    async def __aenter__(self) -> ConnectorClient:
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers,
            timeout=self._timeout,
        )
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

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        if not self._client:
            raise RuntimeError("Client not initialized. Use async context manager.")

        logger.debug("Request: %s %s%s", method, self.base_url, endpoint)
        try:
            response = await self._client.request(method, endpoint, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            logger.error(
                "Connector returned HTTP %s for %s %s", e.response.status_code, method, endpoint
            )
            raise ConnectorError(
                f"HTTP {e.response.status_code}: {e.response.text}",
                e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise ConnectorError(f"Request failed: {str(e)}") from e

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if not response.content:
            return {}
        return response.json()

    # Conversation methods

    async def get_conversations(self, continuation_token: str | None = None) -> ConversationsResult:
        params = {"continuationToken": continuation_token} if continuation_token else None
        response = await self._request("GET", "v3/conversations", params=params)
        return ConversationsResult.model_validate(self._json(response))

    async def get_conversation_member(self, user_id: str, conversation_id: str) -> ChannelAccount:
        if not user_id or not conversation_id:
            raise ValueError("userId and conversationId are required")
        response = await self._request(
            "GET", f"v3/conversations/{conversation_id}/members/{user_id}"
        )
        return ChannelAccount.model_validate(self._json(response))

    async def create_conversation(
        self, parameters: ConversationParameters
    ) -> ConversationResourceResponse:
        payload = parameters.to_dict()
        if "activity" in payload:
            payload["activity"] = normalize_outgoing_activity(payload["activity"])
        response = await self._request("POST", "v3/conversations", json=payload)
        return ConversationResourceResponse.model_validate(self._json(response))

    # Activity methods

    async def reply_to_activity(
        self, conversation_id: str, activity_id: str, activity: Activity
    ) -> ResourceResponse:
        if not conversation_id or not activity_id:
            raise ValueError("conversationId and activityId are required")
        logger.debug("Replying to activity %s in conversation %s", activity_id, conversation_id)
        trimmed_id = conditionally_truncate_conversation_id(conversation_id, activity)
        response = await self._request(
            "POST",
            f"v3/conversations/{trimmed_id}/activities/{quote(activity_id, safe='')}",
            json=normalize_outgoing_activity(activity.to_dict()),
        )
        return ResourceResponse.model_validate(self._json(response))

    async def send_to_conversation(
        self, conversation_id: str, activity: Activity
    ) -> ResourceResponse:
        if not conversation_id:
            raise ValueError("conversationId is required")
        logger.debug("Sending to conversation %s", conversation_id)
        trimmed_id = conditionally_truncate_conversation_id(conversation_id, activity)
        response = await self._request(
            "POST",
            f"v3/conversations/{trimmed_id}/activities",
            json=normalize_outgoing_activity(activity.to_dict()),
        )
        return ResourceResponse.model_validate(self._json(response))

    async def update_activity(
        self, conversation_id: str, activity_id: str, activity: Activity
    ) -> ResourceResponse:
        if not conversation_id or not activity_id:
            raise ValueError("conversationId and activityId are required")
        response = await self._request(
            "PUT",
            f"v3/conversations/{conversation_id}/activities/{activity_id}",
            json=normalize_outgoing_activity(activity.to_dict()),
        )
        return ResourceResponse.model_validate(self._json(response))

    async def delete_activity(self, conversation_id: str, activity_id: str) -> None:
        if not conversation_id or not activity_id:
            raise ValueError("conversationId and activityId are required")
        await self._request(
            "DELETE", f"v3/conversations/{conversation_id}/activities/{activity_id}"
        )

    # Attachment methods

    async def upload_attachment(
        self, conversation_id: str, attachment: AttachmentData
    ) -> ResourceResponse:
        if not conversation_id:
            raise ValueError("conversationId is required")
        response = await self._request(
            "POST", f"v3/conversations/{conversation_id}/attachments", json=attachment.to_dict()
        )
        return ResourceResponse.model_validate(self._json(response))

    async def get_attachment_info(self, attachment_id: str) -> AttachmentInfo:
        if not attachment_id:
            raise ValueError("attachmentId is required")
        response = await self._request("GET", f"v3/attachments/{attachment_id}")
        return AttachmentInfo.model_validate(self._json(response))

    async def get_attachment(self, attachment_id: str, view_id: str) -> bytes:
        if not attachment_id:
            raise ValueError("attachmentId is required")
        if not view_id:
            raise ValueError("viewId is required")
        response = await self._request("GET", f"v3/attachments/{attachment_id}/views/{view_id}")
        return response.content
