"""Tests for the user token service client."""

import base64
import json

import pytest
from httpx import Response

from agents_hosting.errors import ConnectorError
from agents_hosting.models import ChannelAccount, ConversationAccount, ConversationReference
from agents_hosting.user_token_client import UserTokenClient

TOKEN_SERVICE = "https://api.botframework.com"


@pytest.fixture
async def client():
    async with UserTokenClient("service-token", "test-client-id") as client:
        yield client


@pytest.fixture
def conversation():
    return ConversationReference(
        agent=ChannelAccount(id="agent-1"),
        user=ChannelAccount(id="user-1"),
        conversation=ConversationAccount(id="conv-1"),
        channel_id="msteams",
    )


def decode_state(request):
    return json.loads(base64.b64decode(request.url.params["state"]))


class TestGetUserToken:
    """Test UserTokenClient.get_user_token."""

    async def test_returns_token(self, client, respx_mock):
        route = respx_mock.get(f"{TOKEN_SERVICE}/api/usertoken/GetToken").mock(
            return_value=Response(
                200, json={"connectionName": "graph", "token": "user-token", "channelId": "msteams"}
            )
        )

        token = await client.get_user_token("graph", "msteams", "user-1")

        assert token.token == "user-token"
        request = route.calls[0].request
        assert request.url.params["connectionName"] == "graph"
        assert "code" not in request.url.params
        assert request.headers["authorization"] == "Bearer service-token"

    async def test_not_found_returns_empty_response(self, client, respx_mock):
        respx_mock.get(f"{TOKEN_SERVICE}/api/usertoken/GetToken").mock(
            return_value=Response(404)
        )

        token = await client.get_user_token("graph", "msteams", "user-1", code="123456")

        assert token.token is None

    async def test_other_errors_propagate(self, client, respx_mock):
        respx_mock.get(f"{TOKEN_SERVICE}/api/usertoken/GetToken").mock(
            return_value=Response(500, json={"error": "boom"})
        )

        with pytest.raises(ConnectorError) as exc_info:
            await client.get_user_token("graph", "msteams", "user-1")

        assert exc_info.value.status_code == 500


class TestSignOut:
    """Test UserTokenClient.sign_out."""

    async def test_sign_out(self, client, respx_mock):
        route = respx_mock.delete(f"{TOKEN_SERVICE}/api/usertoken/SignOut").mock(
            return_value=Response(200)
        )

        await client.sign_out("user-1", "graph", "msteams")

        assert route.calls[0].request.url.params["userId"] == "user-1"

    async def test_failure_is_reported(self, client, respx_mock):
        respx_mock.delete(f"{TOKEN_SERVICE}/api/usertoken/SignOut").mock(
            return_value=Response(400)
        )

        with pytest.raises(ConnectorError, match="Failed to sign out"):
            await client.sign_out("user-1", "graph", "msteams")


class TestSignInResource:
    """Test sign-in resource requests and their encoded state."""

    async def test_state_uses_bot_wire_name(self, client, conversation, respx_mock):
        route = respx_mock.get(f"{TOKEN_SERVICE}/api/botsignin/GetSignInResource").mock(
            return_value=Response(200, json={"signInLink": "https://sign.in/link"})
        )

        resource = await client.get_sign_in_resource("graph", conversation)

        assert resource.sign_in_link == "https://sign.in/link"
        state = decode_state(route.calls[0].request)
        assert state["connectionName"] == "graph"
        assert state["msAppId"] == "test-client-id"
        assert state["conversation"]["bot"] == {"id": "agent-1"}
        assert "agent" not in state["conversation"]

    async def test_token_or_sign_in_resource(self, client, conversation, respx_mock):
        route = respx_mock.get(f"{TOKEN_SERVICE}/api/usertoken/GetTokenOrSignInResource").mock(
            return_value=Response(
                200,
                json={
                    "signInResource": {
                        "signInLink": "https://sign.in/link",
                        "tokenExchangeResource": {"id": "exchange-1", "uri": "api://agent"},
                    }
                },
            )
        )

        result = await client.get_token_or_sign_in_resource(
            "user-1", "graph", "msteams", conversation
        )

        assert result.token_response is None
        assert result.sign_in_resource.token_exchange_resource.id == "exchange-1"
        assert decode_state(route.calls[0].request)["conversation"]["bot"]["id"] == "agent-1"


class TestTokenOperations:
    """Test exchange, status and AAD token requests."""

    async def test_exchange_token(self, client, respx_mock):
        route = respx_mock.post(f"{TOKEN_SERVICE}/api/usertoken/exchange").mock(
            return_value=Response(200, json={"token": "exchanged"})
        )

        token = await client.exchange_token("user-1", "graph", "msteams", {"token": "sso"})

        assert token.token == "exchanged"
        assert json.loads(route.calls[0].request.content) == {"token": "sso"}

    async def test_exchange_not_found(self, client, respx_mock):
        respx_mock.post(f"{TOKEN_SERVICE}/api/usertoken/exchange").mock(
            return_value=Response(404)
        )

        token = await client.exchange_token("user-1", "graph", "msteams", {"token": "sso"})

        assert token.token is None

    async def test_get_token_status(self, client, respx_mock):
        respx_mock.get(f"{TOKEN_SERVICE}/api/usertoken/GetTokenStatus").mock(
            return_value=Response(
                200, json=[{"connectionName": "graph", "hasToken": True, "channelId": "msteams"}]
            )
        )

        statuses = await client.get_token_status("user-1", "msteams")

        assert len(statuses) == 1
        assert statuses[0].has_token is True

    async def test_get_aad_tokens(self, client, respx_mock):
        route = respx_mock.post(f"{TOKEN_SERVICE}/api/usertoken/GetAadTokens").mock(
            return_value=Response(200, json={"https://graph": {"token": "graph-token"}})
        )

        tokens = await client.get_aad_tokens("user-1", "graph", "msteams", ["https://graph"])

        assert tokens["https://graph"].token == "graph-token"
        assert json.loads(route.calls[0].request.content) == {"resourceUrls": ["https://graph"]}
