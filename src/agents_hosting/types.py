"""Type definitions for activity protocol constants and JSON response bodies.

String enums mirror the values used on the wire. TypedDict classes describe the
JSON bodies returned to the channel from ``/api/messages``.
"""

from enum import StrEnum
from typing import Any, NotRequired, TypedDict


class ActivityTypes(StrEnum):
    """Activity types understood by the protocol."""

    MESSAGE = "message"
    CONTACT_RELATION_UPDATE = "contactRelationUpdate"
    CONVERSATION_UPDATE = "conversationUpdate"
    TYPING = "typing"
    END_OF_CONVERSATION = "endOfConversation"
    EVENT = "event"
    INVOKE = "invoke"
    INVOKE_RESPONSE = "invokeResponse"
    DELETE_USER_DATA = "deleteUserData"
    MESSAGE_UPDATE = "messageUpdate"
    MESSAGE_DELETE = "messageDelete"
    INSTALLATION_UPDATE = "installationUpdate"
    MESSAGE_REACTION = "messageReaction"
    SUGGESTION = "suggestion"
    TRACE = "trace"
    HANDOFF = "handoff"
    COMMAND = "command"
    COMMAND_RESULT = "commandResult"
    DELAY = "delay"


class ActivityEventNames(StrEnum):
    """Well-known names for event activities raised by the adapter."""

    CONTINUE_CONVERSATION = "ContinueConversation"
    CREATE_CONVERSATION = "CreateConversation"


class RoleTypes(StrEnum):
    """Roles a channel account can hold in a conversation."""

    USER = "user"
    AGENT = "bot"
    SKILL = "skill"
    CONNECTOR_USER = "connectoruser"
    AGENTIC_IDENTITY = "agenticAppInstance"
    AGENTIC_USER = "agenticUser"


AGENTIC_ROLES = frozenset({RoleTypes.AGENTIC_IDENTITY, RoleTypes.AGENTIC_USER})


class DeliveryModes(StrEnum):
    """How the sender wants replies to be delivered."""

    NORMAL = "normal"
    NOTIFICATION = "notification"
    EXPECT_REPLIES = "expectReplies"
    EPHEMERAL = "ephemeral"


class InputHints(StrEnum):
    """Whether the agent is expecting user input after the message."""

    ACCEPTING_INPUT = "acceptingInput"
    IGNORING_INPUT = "ignoringInput"
    EXPECTING_INPUT = "expectingInput"


class Channels(StrEnum):
    """Known channel identifiers."""

    AGENTS = "agents"
    ALEXA = "alexa"
    CONSOLE = "console"
    DIRECTLINE = "directline"
    DIRECTLINE_SPEECH = "directlinespeech"
    EMAIL = "email"
    EMULATOR = "emulator"
    FACEBOOK = "facebook"
    GROUPME = "groupme"
    LINE = "line"
    MSTEAMS = "msteams"
    OMNI = "omnichannel"
    OUTLOOK = "outlook"
    SKYPE = "skype"
    SLACK = "slack"
    SMS = "sms"
    TELEGRAM = "telegram"
    TELEPHONY = "telephony"
    TEST = "test"
    WEBCHAT = "webchat"


# Response body types
class InvokeResponseBody(TypedDict):
    """Status and body recorded by an ``invokeResponse`` activity."""

    status: int
    body: NotRequired[Any]


class ExpectRepliesBody(TypedDict):
    """Buffered replies returned for ``expectReplies`` delivery."""

    activities: list[dict[str, Any]]


# Body of a 401 response produced by the inbound token check
JwtAuthErrorBody = TypedDict("JwtAuthErrorBody", {"jwt-auth-error": str})
