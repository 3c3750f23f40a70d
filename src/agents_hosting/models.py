"""Pydantic models for the activity protocol and the services it talks to."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .types import AGENTIC_ROLES, ActivityEventNames, ActivityTypes, Channels


class AgentsModel(BaseModel):
    """Base model using camelCase on the wire and keeping unknown fields."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON shape used on the wire."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# Conversation models
class ChannelAccount(AgentsModel):
    """A participant in a conversation."""

    id: str | None = None
    name: str | None = None
    aad_object_id: str | None = None
    tenant_id: str | None = None
    agentic_user_id: str | None = None
    agentic_app_id: str | None = None
    agentic_app_blueprint_id: str | None = None
    role: str | None = None
    properties: Any = None


class ConversationAccount(AgentsModel):
    """The conversation an activity belongs to."""

    id: str | None = None
    name: str | None = None
    conversation_type: str | None = None
    is_group: bool | None = None
    tenant_id: str | None = None
    aad_object_id: str | None = None
    role: str | None = None


class ConversationReference(AgentsModel):
    """Enough information to address a conversation outside of an inbound request."""

    activity_id: str | None = None
    user: ChannelAccount | None = None
    agent: ChannelAccount | None = None
    conversation: ConversationAccount | None = None
    channel_id: str | None = None
    locale: str | None = None
    service_url: str | None = None


class Attachment(AgentsModel):
    """Media or card attached to an activity."""

    content_type: str | None = None
    content_url: str | None = None
    content: Any = None
    name: str | None = None
    thumbnail_url: str | None = None


class Activity(AgentsModel):
    """The basic communication unit exchanged between a channel and an agent."""

    type: str | None = None
    id: str | None = None
    timestamp: datetime | None = None
    local_timestamp: datetime | None = None
    local_timezone: str | None = None
    channel_id: str | None = None
    service_url: str | None = None
    from_property: ChannelAccount | None = Field(default=None, alias="from")
    recipient: ChannelAccount | None = None
    conversation: ConversationAccount | None = None
    reply_to_id: str | None = None
    delivery_mode: str | None = None
    caller_id: str | None = None
    text: str | None = None
    text_format: str | None = None
    speak: str | None = None
    input_hint: str | None = None
    summary: str | None = None
    importance: str | None = None
    locale: str | None = None
    name: str | None = None
    label: str | None = None
    value_type: str | None = None
    value: Any = None
    code: str | None = None
    relates_to: ConversationReference | None = None
    channel_data: Any = None
    attachments: list[Attachment] | None = None
    entities: list[dict[str, Any]] | None = None

    def get_conversation_reference(self) -> ConversationReference:
        """Build a reference that can be used to reply to or continue this conversation."""
        if self.recipient is None:
            raise ValueError("Activity Recipient undefined")
        if self.conversation is None:
            raise ValueError("Activity Conversation undefined")
        if self.channel_id is None:
            raise ValueError("Activity ChannelId undefined")

        return ConversationReference(
            activity_id=self._get_appropriate_reply_to_id(),
            user=self.from_property,
            agent=self.recipient,
            conversation=self.conversation,
            channel_id=self.channel_id,
            locale=self.locale,
            service_url=self.service_url,
        )

    def _get_appropriate_reply_to_id(self) -> str | None:
        # Direct Line and Web Chat do not accept replies to conversation updates
        if self.type == ActivityTypes.CONVERSATION_UPDATE and self.channel_id in (
            Channels.DIRECTLINE,
            Channels.WEBCHAT,
        ):
            return None
        return self.id

    def apply_conversation_reference(
        self, reference: ConversationReference, is_incoming: bool = False
    ) -> "Activity":
        """Address this activity using a conversation reference.

        Outgoing activities are sent from the agent to the user and reply to the
        referenced activity. Incoming activities keep the original direction.
        """
        self.channel_id = reference.channel_id
        if self.locale is None:
            self.locale = reference.locale
        self.service_url = reference.service_url
        self.conversation = reference.conversation
        if is_incoming:
            self.from_property = reference.user
            self.recipient = reference.agent
            if reference.activity_id:
                self.id = reference.activity_id
        else:
            self.from_property = reference.agent
            self.recipient = reference.user
            if reference.activity_id:
                self.reply_to_id = reference.activity_id
        return self

    @classmethod
    def get_continuation_activity(cls, reference: ConversationReference) -> "Activity":
        """Create the event activity used to resume a conversation proactively."""
        return cls(
            type=ActivityTypes.EVENT,
            name=ActivityEventNames.CONTINUE_CONVERSATION,
            id=str(uuid.uuid4()),
            channel_id=reference.channel_id,
            locale=reference.locale,
            service_url=reference.service_url,
            conversation=reference.conversation,
            recipient=reference.agent,
            from_property=reference.user,
            relates_to=reference,
        )

    def is_agentic_request(self) -> bool:
        """Whether the activity is addressed to an agentic identity."""
        return self.recipient is not None and self.recipient.role in AGENTIC_ROLES

    def get_agentic_instance_id(self) -> str | None:
        if not self.is_agentic_request():
            return None
        return self.recipient.agentic_app_id

    def get_agentic_user(self) -> str | None:
        if not self.is_agentic_request():
            return None
        return self.recipient.agentic_user_id

    def get_agentic_tenant_id(self) -> str | None:
        if not self.is_agentic_request():
            return None
        if self.recipient.tenant_id:
            return self.recipient.tenant_id
        return self.conversation.tenant_id if self.conversation else None


class ResourceResponse(AgentsModel):
    """Identifier returned for a created or updated resource."""

    id: str = ""


class InvokeResponse(BaseModel):
    """HTTP status and body to return for a turn."""

    status: int
    body: Any = None


# Connector request/response models
class ConversationParameters(AgentsModel):
    """Parameters used to create a new conversation."""

    is_group: bool | None = None
    agent: ChannelAccount | None = Field(default=None, alias="bot")
    members: list[ChannelAccount] | None = None
    topic_name: str | None = None
    tenant_id: str | None = None
    activity: Activity | None = None
    channel_data: Any = None


class ConversationResourceResponse(AgentsModel):
    """Result of creating a conversation."""

    activity_id: str | None = None
    service_url: str | None = None
    id: str | None = None


class ConversationMembers(AgentsModel):
    id: str | None = None
    members: list[ChannelAccount] = []


class ConversationsResult(AgentsModel):
    """A page of conversations the agent has participated in."""

    continuation_token: str | None = None
    conversations: list[ConversationMembers] = []


class AttachmentData(AgentsModel):
    """Attachment payload uploaded to the channel."""

    type: str | None = None
    name: str | None = None
    original_base64: str | None = None
    thumbnail_base64: str | None = None


class AttachmentView(AgentsModel):
    view_id: str | None = None
    size: int | None = None


class AttachmentInfo(AgentsModel):
    """Metadata for an uploaded attachment."""

    name: str | None = None
    type: str | None = None
    views: list[AttachmentView] = []


# Token service models
class TokenResponse(AgentsModel):
    """User token returned by the token service."""

    channel_id: str | None = None
    connection_name: str | None = None
    token: str | None = None
    expiration: str | None = None


class TokenExchangeResource(AgentsModel):
    id: str | None = None
    uri: str | None = None
    provider_id: str | None = None


class TokenPostResource(AgentsModel):
    sas_url: str | None = None


class SignInResource(AgentsModel):
    """Link and exchange details used to sign a user in."""

    sign_in_link: str | None = None
    token_exchange_resource: TokenExchangeResource | None = None
    token_post_resource: TokenPostResource | None = None


class TokenOrSignInResourceResponse(AgentsModel):
    token_response: TokenResponse | None = None
    sign_in_resource: SignInResource | None = None


class TokenStatus(AgentsModel):
    """Whether a user has a token for a given connection."""

    channel_id: str | None = None
    connection_name: str | None = None
    has_token: bool | None = None
    service_provider_display_name: str | None = None


class OAuthTokenResponse(BaseModel):
    """Response from an OAuth 2.0 token endpoint."""

    token_type: str = "Bearer"
    expires_in: int
    access_token: str
    ext_expires_in: int | None = None


# Identity
class ClaimsIdentity(BaseModel):
    """Claims extracted from a validated inbound token."""

    claims: dict[str, Any] = {}
    is_authenticated: bool = False
    authentication_type: str | None = None

    def get_claim(self, name: str) -> Any:
        return self.claims.get(name)

    @property
    def audience(self) -> str | None:
        aud = self.claims.get("aud")
        if isinstance(aud, list):
            return aud[0] if aud else None
        return aud

    @property
    def app_id(self) -> str | None:
        """Calling application, from the ``azp`` claim (v2 tokens) or ``appid`` (v1)."""
        return self.claims.get("azp") or self.claims.get("appid")
