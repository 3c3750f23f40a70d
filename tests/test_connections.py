"""Tests for connection resolution."""

import pytest

from agents_hosting.config import DEFAULT_CONNECTION, AuthConfiguration, ConnectionMapItem
from agents_hosting.connections import ConnectionManager
from agents_hosting.errors import ConfigurationError, ConnectionNotFoundError
from agents_hosting.models import Activity
from agents_hosting.token_provider import MsalTokenProvider


@pytest.fixture
def connections():
    return {
        DEFAULT_CONNECTION: AuthConfiguration(client_id="default-id", client_secret="s"),
        "teams": AuthConfiguration(client_id="teams-id", client_secret="s"),
        "fallback": AuthConfiguration(client_id="fallback-id", client_secret="s"),
    }


@pytest.fixture
def manager(connections):
    return ConnectionManager(
        connections,
        [
            ConnectionMapItem(
                audience="aud-1", service_url="smba\\.trafficmanager", connection="teams"
            ),
            ConnectionMapItem(audience="aud-1", service_url="*", connection="fallback"),
            ConnectionMapItem(audience="aud-2", service_url="", connection="serviceConnection"),
        ],
        production=False,
    )


class TestConnectionManager:
    """Test ConnectionManager lookups and routing."""

    def test_requires_default_connection(self):
        with pytest.raises(ConfigurationError, match="serviceConnection"):
            ConnectionManager({"other": AuthConfiguration(client_id="x")})

    def test_connection_names_are_case_insensitive(self, manager):
        assert manager.get_connection("TEAMS") is manager.get_connection("teams")
        assert manager.get_connection("serviceconnection") is manager.get_default_connection()

    def test_unknown_connection(self, manager):
        with pytest.raises(ConnectionNotFoundError, match="Connection not found: missing"):
            manager.get_connection("missing")

    def test_first_matching_entry_wins(self, manager):
        provider = manager.get_token_provider(
            "aud-1", "https://smba.trafficmanager.net/amer/"
        )

        assert provider.connection_settings.client_id == "teams-id"

    def test_wildcard_service_url(self, manager):
        provider = manager.get_token_provider("aud-1", "https://other.example.com")

        assert provider.connection_settings.client_id == "fallback-id"

    def test_service_url_match_is_case_insensitive(self, manager):
        config = manager.resolve("aud-1", "https://SMBA.TrafficManager.net/")

        assert config.client_id == "teams-id"

    def test_empty_service_url_pattern_matches_any(self, manager):
        config = manager.resolve("aud-2", "https://anything.example.com")

        assert config.client_id == "default-id"

    def test_no_match_raises(self, manager):
        with pytest.raises(ConnectionNotFoundError, match="aud-3"):
            manager.get_token_provider("aud-3", "https://service.example.com")

    @pytest.mark.parametrize(
        "audience,service_url", [(None, "https://x"), ("aud-1", None), ("", "")]
    )
    def test_requires_audience_and_service_url(self, manager, audience, service_url):
        with pytest.raises(ValueError, match="Audience and Service URL are required"):
            manager.get_token_provider(audience, service_url)

    def test_empty_map_uses_default(self, connections):
        manager = ConnectionManager(connections, production=False)

        provider = manager.get_token_provider("any-audience", "https://service.example.com")

        assert provider is manager.get_default_connection()

    def test_from_activity(self, manager):
        activity = Activity(type="message", service_url="https://other.example.com")

        provider = manager.get_token_provider_from_activity("aud-1", activity)

        assert provider.connection_settings.client_id == "fallback-id"

    def test_all_configurations(self, manager):
        client_ids = {config.client_id for config in manager.all_configurations()}

        assert client_ids == {"default-id", "teams-id", "fallback-id"}
        assert manager.get_default_connection_configuration().client_id == "default-id"

    def test_resolve_returns_configuration(self, manager):
        config = manager.resolve("aud-1", "https://smba.trafficmanager.net/teams")

        assert config.client_id == "teams-id"

    def test_provider_without_settings_raises(self):
        provider = MsalTokenProvider(production=False)

        with pytest.raises(ConfigurationError, match="no connection settings"):
            provider.require_connection_settings()
