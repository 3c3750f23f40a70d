"""Adapters that turn inbound HTTP activities into turns and deliver replies."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from contextlib import AsyncExitStack
from typing import Any

from pydantic import ValidationError

from .client import ConnectorClient
from .config import AGENTS_ISSUER, AgentsConfiguration
from .connections import ConnectionManager
from .errors import AuthenticationError, ConfigurationError, TokenAcquisitionError
from .jwt_verifier import JwtTokenVerifier
from .middleware import Middleware, MiddlewareHandler, MiddlewareSet
from .models import (
    Activity,
    AttachmentData,
    AttachmentInfo,
    ClaimsIdentity,
    ConversationAccount,
    ConversationParameters,
    ConversationReference,
    InvokeResponse,
    ResourceResponse,
)
from .token_provider import APX_PRODUCTION_SCOPE, MsalTokenProvider
from .turn_context import ContextHandle, TurnContext
from .types import (
    ActivityEventNames,
    ActivityTypes,
    Channels,
    DeliveryModes,
    RoleTypes,
)
from .user_token_client import UserTokenClient
from .wire_compat import normalize_incoming_activity

logger = logging.getLogger(__name__)

TurnLogic = Callable[[TurnContext], Awaitable[None]]
TurnErrorHandler = Callable[[TurnContext, Exception], Awaitable[None]]

ERROR_VALUE_TYPE = "https://www.botframework.com/schemas/error"
DEFAULT_DELAY_MS = 1000


def _is_addressed(target: Activity | ConversationReference) -> bool:
    return bool(target.service_url and target.conversation and target.conversation.id)


async def default_on_turn_error(context: TurnContext, error: Exception) -> None:
    logger.error("Unhandled error during turn: %s", error, exc_info=error)
    await context.send_trace_activity(
        "OnTurnError Trace", f"{error}", ERROR_VALUE_TYPE, "TurnError"
    )
    await context.send_activity("The agent encountered an error or bug.")
    await context.send_activity("To continue to run this agent, please fix the source code.")


class BaseAdapter:
    """Middleware pipeline and turn error handling shared by all adapters.

    Subclasses deliver activities to a channel by implementing
    ``send_activities``, ``update_activity`` and ``delete_activity``.
    """

    def __init__(self) -> None:
        self.middleware = MiddlewareSet()
        self._on_turn_error: TurnErrorHandler = default_on_turn_error

    @property
    def on_turn_error(self) -> TurnErrorHandler:
        return self._on_turn_error

    @on_turn_error.setter
    def on_turn_error(self, handler: TurnErrorHandler) -> None:
        self._on_turn_error = handler

    def use(self, *middleware: Middleware | MiddlewareHandler) -> BaseAdapter:
        self.middleware.use(*middleware)
        return self

    async def send_activities(
        self, context: TurnContext, activities: list[Activity]
    ) -> list[ResourceResponse]:
        raise NotImplementedError

    async def update_activity(self, context: TurnContext, activity: Activity) -> None:
        raise NotImplementedError

    async def delete_activity(self, context: TurnContext, reference: ConversationReference) -> None:
        raise NotImplementedError

    async def run_middleware(self, context: TurnContext, logic: TurnLogic | None) -> None:
        """Run the pipeline and ``logic`` against a revocable view of ``context``.

        Exceptions raised by middleware or ``logic`` are passed to ``on_turn_error``
        and do not propagate. The view is revoked once the turn completes.
        """
        if context.activity.locale:
            context.locale = context.activity.locale

        handle = ContextHandle(context)
        try:
            await self.middleware.run(handle, logic)
        except Exception as e:
            if self._on_turn_error is None:
                raise
            try:
                await self._on_turn_error(handle, e)
            except Exception:
                logger.exception("on_turn_error failed while handling: %s", e)
        finally:
            handle.revoke()


class CloudAdapter(BaseAdapter):
    """Adapter for agents hosted behind an HTTP endpoint.

    Inbound requests are authenticated with ``verifier``. Outbound calls use
    connector clients whose tokens come from the connection resolved for the
    caller.
    """

    def __init__(
        self,
        connection_manager: ConnectionManager,
        verifier: JwtTokenVerifier | None = None,
    ) -> None:
        super().__init__()
        self.connection_manager = connection_manager
        self.verifier = verifier or JwtTokenVerifier(connection_manager.all_configurations())

    @classmethod
    def from_configuration(cls, configuration: AgentsConfiguration) -> CloudAdapter:
        manager = ConnectionManager.from_configuration(configuration)
        verifier = JwtTokenVerifier(
            manager.all_configurations(), production=configuration.is_production
        )
        return cls(manager, verifier)

    async def close(self) -> None:
        await self.connection_manager.close()

    # Inbound

    async def process(
        self,
        body: dict[str, Any],
        authorization_header: str | None,
        logic: TurnLogic,
        *,
        identity: ClaimsIdentity | None = None,
    ) -> InvokeResponse:
        """Authenticate and run one inbound activity.

        ``identity`` skips verification when the caller already authenticated
        the request. Returns the status and body the HTTP endpoint should
        answer with. Connection and token acquisition failures answer 500 with
        an ``error`` body.
        """
        try:
            activity = Activity.model_validate(normalize_incoming_activity(body))
        except ValidationError as e:
            logger.warning("BadRequest: Invalid activity payload: %s", e)
            return InvokeResponse(status=400)
        if not activity.type:
            logger.warning("BadRequest: Missing activity type")
            return InvokeResponse(status=400)
        if activity.conversation is None or not activity.conversation.id:
            logger.warning("BadRequest: Missing conversation.id")
            return InvokeResponse(status=400)

        if identity is None:
            try:
                identity = await self.verifier.authorize_request(authorization_header)
            except AuthenticationError as e:
                return InvokeResponse(status=e.status_code, body={"jwt-auth-error": e.message})

        logger.info("Received activity %s of type %s", activity.id, activity.type)
        context = TurnContext(self, activity, identity)
        try:
            await self._run_turn(context, identity, logic)
        except (ConfigurationError, TokenAcquisitionError) as e:
            logger.error("Could not process activity %s: %s", activity.id, e)
            return InvokeResponse(
                status=500, body={"error": {"code": type(e).__name__, "message": e.message}}
            )
        return self.process_turn_results(context)

    def process_turn_results(self, context: TurnContext) -> InvokeResponse:
        activity = context.activity
        if activity.delivery_mode == DeliveryModes.EXPECT_REPLIES:
            activities = [a.to_dict() for a in context.buffered_reply_activities]
            return InvokeResponse(status=200, body={"activities": activities})

        if activity.type == ActivityTypes.INVOKE:
            stored = context.turn_state.invoke_response
            if stored is None or stored.value is None:
                return InvokeResponse(status=501)
            value = stored.value
            if isinstance(value, InvokeResponse):
                return value
            if isinstance(value, dict) and "status" in value:
                return InvokeResponse.model_validate(value)
            logger.warning("Invoke response has no status, answering 200")
            return InvokeResponse(status=200, body=value)

        return InvokeResponse(status=200)

    async def _run_turn(
        self, context: TurnContext, identity: ClaimsIdentity, logic: TurnLogic | None
    ) -> None:
        async with AsyncExitStack() as stack:
            if self._needs_connector_client(context.activity):
                connector = await self._create_connector_client(context.activity, identity)
                context.turn_state.connector_client = await stack.enter_async_context(connector)
                user_tokens = await self._create_user_token_client(context.activity, identity)
                context.turn_state.user_token_client = await stack.enter_async_context(
                    user_tokens
                )
            await self.run_middleware(context, logic)

    @staticmethod
    def _needs_connector_client(activity: Activity) -> bool:
        return not (
            activity.delivery_mode == DeliveryModes.EXPECT_REPLIES and not activity.service_url
        )

    def _resolve_provider(
        self, identity: ClaimsIdentity, service_url: str | None
    ) -> MsalTokenProvider:
        if not identity.is_authenticated:
            return self.connection_manager.get_default_connection()
        return self.connection_manager.get_token_provider(identity.audience, service_url)

    async def _create_connector_client(
        self, activity: Activity, identity: ClaimsIdentity
    ) -> ConnectorClient:
        provider = self._resolve_provider(identity, activity.service_url)
        config = provider.require_connection_settings()

        if activity.is_agentic_request():
            instance_id = activity.get_agentic_instance_id()
            tenant_id = activity.get_agentic_tenant_id()
            role = activity.recipient.role if activity.recipient else None
            if role == RoleTypes.AGENTIC_IDENTITY and instance_id:
                logger.debug("Creating connector client for agentic instance %s", instance_id)
                token = await provider.get_agentic_instance_token(config, instance_id, tenant_id)
            elif role == RoleTypes.AGENTIC_USER and instance_id and activity.get_agentic_user():
                logger.debug("Creating connector client for agentic user")
                token = await provider.get_agentic_user_token(
                    config,
                    instance_id,
                    activity.get_agentic_user(),
                    [APX_PRODUCTION_SCOPE],
                    tenant_id,
                )
            else:
                raise ConfigurationError("Could not create connector client for agentic user")
            return ConnectorClient.create_client_with_token(activity.service_url, token)

        scope = identity.app_id or AGENTS_ISSUER
        return await ConnectorClient.create_client_with_auth(
            activity.service_url, config, provider, scope
        )

    async def _create_user_token_client(
        self, activity: Activity, identity: ClaimsIdentity
    ) -> UserTokenClient:
        provider = self._resolve_provider(identity, activity.service_url)
        config = provider.require_connection_settings()
        token = await provider.get_access_token(config, AGENTS_ISSUER)
        return UserTokenClient(token, config.client_id or "")

    # Outbound

    async def send_activities(
        self, context: TurnContext, activities: list[Activity]
    ) -> list[ResourceResponse]:
        if context is None:
            raise TypeError("context is required")
        if activities is None:
            raise TypeError("activities are required")
        if len(activities) == 0:
            raise ValueError("Expecting one or more activities, but the array was empty.")

        responses: list[ResourceResponse] = []
        for activity in activities:
            activity.id = None
            response: ResourceResponse | None = None

            if activity.type == ActivityTypes.DELAY:
                delay_ms = activity.value if isinstance(activity.value, (int, float)) else None
                await asyncio.sleep((delay_ms or DEFAULT_DELAY_MS) / 1000)
            elif activity.type == ActivityTypes.INVOKE_RESPONSE:
                context.turn_state.invoke_response = activity
            elif activity.type == ActivityTypes.TRACE and activity.channel_id != Channels.EMULATOR:
                pass
            else:
                if not _is_addressed(activity):
                    raise ValueError("Invalid activity object")
                connector = self._connector_client(context)
                if activity.reply_to_id:
                    response = await connector.reply_to_activity(
                        activity.conversation.id, activity.reply_to_id, activity
                    )
                else:
                    response = await connector.send_to_conversation(
                        activity.conversation.id, activity
                    )

            responses.append(response or ResourceResponse(id=activity.id or ""))
        return responses

    async def update_activity(self, context: TurnContext, activity: Activity) -> None:
        if not _is_addressed(activity) or not activity.id:
            raise ValueError("Invalid activity object")
        await self._connector_client(context).update_activity(
            activity.conversation.id, activity.id, activity
        )

    async def delete_activity(self, context: TurnContext, reference: ConversationReference) -> None:
        if not _is_addressed(reference) or not reference.activity_id:
            raise ValueError("Invalid conversation reference object")
        await self._connector_client(context).delete_activity(
            reference.conversation.id, reference.activity_id
        )

    @staticmethod
    def _connector_client(context: TurnContext) -> ConnectorClient:
        connector = context.turn_state.connector_client
        if connector is None:
            raise ConfigurationError("No connector client is available for this turn")
        return connector

    # Proactive

    def _default_identity(self) -> ClaimsIdentity:
        config = self.connection_manager.get_default_connection_configuration()
        if not config.client_id:
            return ClaimsIdentity()
        # No appid: connector tokens are scoped to the relay
        return ClaimsIdentity(claims={"aud": config.client_id}, is_authenticated=True)

    async def continue_conversation(
        self,
        reference: ConversationReference,
        logic: TurnLogic,
        identity: ClaimsIdentity | None = None,
    ) -> None:
        """Run ``logic`` in an existing conversation without an inbound request."""
        if not _is_addressed(reference):
            raise ValueError("Invalid conversation reference object")

        identity = identity or self._default_identity()
        context = TurnContext(self, Activity.get_continuation_activity(reference), identity)
        await self._run_turn(context, identity, logic)

    async def create_conversation(
        self,
        agent_app_id: str,
        channel_id: str,
        service_url: str,
        audience: str,
        parameters: ConversationParameters,
        logic: TurnLogic,
    ) -> None:
        """Create a conversation on the channel and run ``logic`` in it."""
        if not service_url:
            raise TypeError("service_url is required")
        if parameters is None:
            raise TypeError("parameters are required")

        identity = ClaimsIdentity(
            claims={"aud": audience, "appid": agent_app_id}, is_authenticated=True
        )
        provider = self._resolve_provider(identity, service_url)
        config = provider.require_connection_settings()

        async with AsyncExitStack() as stack:
            rest_client = await ConnectorClient.create_client_with_auth(
                service_url, config, provider, audience
            )
            connector = await stack.enter_async_context(rest_client)
            token = await provider.get_access_token(config, AGENTS_ISSUER)
            user_tokens = await stack.enter_async_context(
                UserTokenClient(token, config.client_id or agent_app_id)
            )

            created = await connector.create_conversation(parameters)
            logger.info("Created conversation %s", created.id)
            activity = Activity(
                type=ActivityTypes.EVENT,
                name=ActivityEventNames.CREATE_CONVERSATION,
                id=created.id or str(uuid.uuid4()),
                channel_id=channel_id,
                service_url=service_url,
                conversation=ConversationAccount(
                    id=created.id,
                    is_group=parameters.is_group,
                    tenant_id=parameters.tenant_id,
                ),
                channel_data=parameters.channel_data,
                recipient=parameters.agent,
            )

            context = TurnContext(self, activity, identity)
            context.turn_state.connector_client = connector
            context.turn_state.user_token_client = user_tokens
            await self.run_middleware(context, logic)

    # Attachments

    async def upload_attachment(
        self, context: TurnContext, conversation_id: str, attachment: AttachmentData
    ) -> ResourceResponse:
        if not conversation_id:
            raise ValueError("conversationId is required")
        return await self._connector_client(context).upload_attachment(conversation_id, attachment)

    async def get_attachment_info(self, context: TurnContext, attachment_id: str) -> AttachmentInfo:
        if not attachment_id:
            raise ValueError("attachmentId is required")
        return await self._connector_client(context).get_attachment_info(attachment_id)

    async def get_attachment(self, context: TurnContext, attachment_id: str, view_id: str) -> bytes:
        if not attachment_id:
            raise ValueError("attachmentId is required")
        if not view_id:
            raise ValueError("viewId is required")
        return await self._connector_client(context).get_attachment(attachment_id, view_id)
