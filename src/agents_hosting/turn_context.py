"""Per-turn context: the inbound activity, turn state, and outbound activity hooks."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, TypeVar

from .errors import ContextReleasedError
from .models import (
    Activity,
    AttachmentData,
    AttachmentInfo,
    ConversationReference,
    ResourceResponse,
)
from .types import ActivityTypes, DeliveryModes, InputHints

if TYPE_CHECKING:
    from .adapter import BaseAdapter
    from .client import ConnectorClient
    from .models import ClaimsIdentity
    from .user_token_client import UserTokenClient

T = TypeVar("T")

SendActivitiesHandler = Callable[
    ["TurnContext", list[Activity], Callable[[], Awaitable[list[ResourceResponse]]]],
    Awaitable[list[ResourceResponse]],
]
UpdateActivityHandler = Callable[
    ["TurnContext", Activity, Callable[[], Awaitable[None]]], Awaitable[None]
]
DeleteActivityHandler = Callable[
    ["TurnContext", ConversationReference, Callable[[], Awaitable[None]]], Awaitable[None]
]


class TurnStateKey(StrEnum):
    """Well-known turn state entries set by the adapter."""

    CONNECTOR_CLIENT = "connectorClient"
    USER_TOKEN_CLIENT = "userTokenClient"
    INVOKE_RESPONSE = "invokeResponse"
    IDENTITY = "agentIdentity"
    TURN = "turn"


class TurnState:
    """Keyed side-table for a single turn.

    ``push`` shadows the current value of a key and ``pop`` restores the
    shadowed value, so nested turns can override services temporarily.
    """

    def __init__(self) -> None:
        self._values: dict[Any, Any] = {}
        self._scopes: dict[Any, list[Any]] = {}

    def __contains__(self, key: Any) -> bool:
        return key in self._values

    def __getitem__(self, key: Any) -> Any:
        return self._values[key]

    def __setitem__(self, key: Any, value: Any) -> None:
        self._values[key] = value

    def __delitem__(self, key: Any) -> None:
        del self._values[key]

    def get(self, key: Any, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: Any, value: Any) -> None:
        self._values[key] = value

    def push(self, key: Any, value: Any = None) -> None:
        current = self._values.get(key)
        self._scopes.setdefault(key, []).append(current)
        self._values[key] = current if value is None else value

    def pop(self, key: Any) -> Any:
        current = self._values.get(key)
        stack = self._scopes.get(key)
        self._values[key] = stack.pop() if stack else None
        return current

    @property
    def connector_client(self) -> ConnectorClient | None:
        return self._values.get(TurnStateKey.CONNECTOR_CLIENT)

    @connector_client.setter
    def connector_client(self, value: ConnectorClient | None) -> None:
        self._values[TurnStateKey.CONNECTOR_CLIENT] = value

    @property
    def user_token_client(self) -> UserTokenClient | None:
        return self._values.get(TurnStateKey.USER_TOKEN_CLIENT)

    @user_token_client.setter
    def user_token_client(self, value: UserTokenClient | None) -> None:
        self._values[TurnStateKey.USER_TOKEN_CLIENT] = value

    @property
    def invoke_response(self) -> Activity | None:
        return self._values.get(TurnStateKey.INVOKE_RESPONSE)

    @invoke_response.setter
    def invoke_response(self, value: Activity | None) -> None:
        self._values[TurnStateKey.INVOKE_RESPONSE] = value

    @property
    def identity(self) -> ClaimsIdentity | None:
        return self._values.get(TurnStateKey.IDENTITY)

    @identity.setter
    def identity(self, value: ClaimsIdentity | None) -> None:
        self._values[TurnStateKey.IDENTITY] = value


class TurnContext:
    """Everything a handler needs to process one inbound activity.

    Outbound operations go through ordered hook chains. A hook receives the
    context, the activities (or reference) and a ``next`` callable; it may skip
    ``next`` to short-circuit the operation.
    """

    def __init__(
        self,
        adapter: BaseAdapter,
        activity: Activity,
        identity: ClaimsIdentity | None = None,
    ) -> None:
        self._adapter = adapter
        self._activity = activity
        self._responded = False
        self._turn_state = TurnState()
        self._on_send_activities: list[SendActivitiesHandler] = []
        self._on_update_activity: list[UpdateActivityHandler] = []
        self._on_delete_activity: list[DeleteActivityHandler] = []
        self.buffered_reply_activities: list[Activity] = []
        if identity is not None:
            self._turn_state.identity = identity

    @property
    def adapter(self) -> BaseAdapter:
        return self._adapter

    @property
    def activity(self) -> Activity:
        return self._activity

    @property
    def turn_state(self) -> TurnState:
        return self._turn_state

    @property
    def identity(self) -> ClaimsIdentity | None:
        return self._turn_state.identity

    @property
    def responded(self) -> bool:
        return self._responded

    @responded.setter
    def responded(self, value: bool) -> None:
        if not value:
            raise ValueError("TurnContext: cannot set 'responded' to a value of 'false'.")
        self._responded = True

    @property
    def locale(self) -> str | None:
        turn = self._turn_state.get(TurnStateKey.TURN)
        if turn and isinstance(turn.get("locale"), str):
            return turn["locale"]
        return None

    @locale.setter
    def locale(self, value: str | None) -> None:
        turn = self._turn_state.get(TurnStateKey.TURN)
        if turn is None:
            self._turn_state.set(TurnStateKey.TURN, {"locale": value})
        else:
            turn["locale"] = value

    # Hook registration

    def on_send_activities(self, handler: SendActivitiesHandler) -> TurnContext:
        self._on_send_activities.append(handler)
        return self

    def on_update_activity(self, handler: UpdateActivityHandler) -> TurnContext:
        self._on_update_activity.append(handler)
        return self

    def on_delete_activity(self, handler: DeleteActivityHandler) -> TurnContext:
        self._on_delete_activity.append(handler)
        return self

    # Outbound operations

    async def send_activity(
        self,
        activity_or_text: Activity | str,
        speak: str | None = None,
        input_hint: str | None = None,
    ) -> ResourceResponse | None:
        """Send a single activity, or a text message built from a string."""
        if isinstance(activity_or_text, str):
            activity = Activity(
                type=ActivityTypes.MESSAGE,
                text=activity_or_text,
                input_hint=input_hint or InputHints.ACCEPTING_INPUT,
                speak=speak,
            )
        else:
            activity = activity_or_text
        responses = await self.send_activities([activity])
        return responses[0] if responses else None

    async def send_trace_activity(
        self,
        name: str,
        value: Any = None,
        value_type: str | None = None,
        label: str | None = None,
    ) -> ResourceResponse | None:
        trace = Activity(
            type=ActivityTypes.TRACE,
            timestamp=datetime.now(UTC),
            name=name,
            value=value,
            value_type=value_type,
            label=label,
        )
        return await self.send_activity(trace)

    async def send_activities(self, activities: list[Activity]) -> list[ResourceResponse]:
        """Address and send activities through the send hooks.

        With ``expectReplies`` delivery the activities are buffered for the
        HTTP response instead of being sent to the channel.
        """
        reference = self.activity.get_conversation_reference()
        sent_non_trace = False
        output: list[Activity] = []
        for activity in activities:
            result = activity.model_copy(deep=True).apply_conversation_reference(reference)
            if not result.type:
                result.type = ActivityTypes.MESSAGE
            if result.type == ActivityTypes.INVOKE_RESPONSE:
                self._turn_state.invoke_response = result
            if result.type != ActivityTypes.TRACE:
                sent_non_trace = True
            result.id = None
            output.append(result)

        async def deliver() -> list[ResourceResponse]:
            if self.activity.delivery_mode == DeliveryModes.EXPECT_REPLIES:
                responses = []
                for activity in output:
                    self.buffered_reply_activities.append(activity)
                    responses.append(ResourceResponse(id=""))
            else:
                responses = await self.adapter.send_activities(self, output)
                for activity, response in zip(output, responses, strict=False):
                    activity.id = response.id or None
            if sent_non_trace:
                self.responded = True
            return responses

        return await self._emit(self._on_send_activities, output, deliver)

    async def update_activity(self, activity: Activity) -> None:
        reference = self.activity.get_conversation_reference()
        updated = activity.model_copy(deep=True).apply_conversation_reference(reference)

        async def update() -> None:
            await self.adapter.update_activity(self, updated)

        await self._emit(self._on_update_activity, updated, update)

    async def delete_activity(self, id_or_reference: str | ConversationReference) -> None:
        if isinstance(id_or_reference, str):
            reference = self.activity.get_conversation_reference()
            reference.activity_id = id_or_reference
        else:
            reference = id_or_reference

        async def delete() -> None:
            await self.adapter.delete_activity(self, reference)

        await self._emit(self._on_delete_activity, reference, delete)

    async def upload_attachment(
        self, conversation_id: str, attachment: AttachmentData
    ) -> ResourceResponse:
        return await self.adapter.upload_attachment(self, conversation_id, attachment)

    async def get_attachment_info(self, attachment_id: str) -> AttachmentInfo:
        return await self.adapter.get_attachment_info(self, attachment_id)

    async def get_attachment(self, attachment_id: str, view_id: str) -> bytes:
        return await self.adapter.get_attachment(self, attachment_id, view_id)

    async def _emit(
        self,
        handlers: list[Callable[..., Awaitable[T]]],
        arg: Any,
        final: Callable[[], Awaitable[T]],
    ) -> T:
        async def run(index: int) -> T:
            if index < len(handlers):
                return await handlers[index](self, arg, lambda: run(index + 1))
            return await final()

        return await run(0)


class ContextHandle:
    """Revocable view of a TurnContext handed to middleware and handlers.

    Once the turn ends the adapter revokes the handle and any further access
    raises ContextReleasedError.
    """

    __slots__ = ("_target", "_revoked")

    def __init__(self, context: TurnContext) -> None:
        object.__setattr__(self, "_target", context)
        object.__setattr__(self, "_revoked", False)

    def revoke(self) -> None:
        object.__setattr__(self, "_revoked", True)

    @property
    def is_revoked(self) -> bool:
        return self._revoked

    @property
    def context(self) -> TurnContext:
        if self._revoked:
            raise ContextReleasedError("TurnContext was used after the turn completed")
        return self._target

    def __getattr__(self, name: str) -> Any:
        return getattr(self.context, name)

    def __setattr__(self, name: str, value: Any) -> None:
        setattr(self.context, name, value)
