"""Connection resolution from (audience, service URL) to a credential configuration."""

from __future__ import annotations

import logging
import re

from .config import DEFAULT_CONNECTION, AgentsConfiguration, AuthConfiguration, ConnectionMapItem
from .errors import ConfigurationError, ConnectionNotFoundError
from .models import Activity
from .token_provider import MsalTokenProvider

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Holds one token provider per named connection and routes requests to them.

    Connection names are matched case-insensitively. A ``serviceConnection``
    connection is required; it is used when the connection map is empty.
    """

    def __init__(
        self,
        connections: dict[str, AuthConfiguration],
        connections_map: list[ConnectionMapItem] | None = None,
        *,
        production: bool | None = None,
    ) -> None:
        self._configurations: dict[str, AuthConfiguration] = {}
        self._providers: dict[str, MsalTokenProvider] = {}
        for name, config in connections.items():
            self._configurations[name.casefold()] = config
            self._providers[name.casefold()] = MsalTokenProvider(config, production=production)
        self._connections_map = list(connections_map or [])

        if DEFAULT_CONNECTION.casefold() not in self._providers:
            raise ConfigurationError(f"Missing default connection: {DEFAULT_CONNECTION}")

    @classmethod
    def from_configuration(cls, configuration: AgentsConfiguration) -> ConnectionManager:
        return cls(
            configuration.connections,
            configuration.connections_map,
            production=configuration.is_production,
        )

    @property
    def connections_map(self) -> list[ConnectionMapItem]:
        return list(self._connections_map)

    def get_connection(self, name: str) -> MsalTokenProvider:
        provider = self._providers.get(name.casefold())
        if provider is None:
            raise ConnectionNotFoundError(f"Connection not found: {name}")
        return provider

    def get_default_connection(self) -> MsalTokenProvider:
        return self.get_connection(DEFAULT_CONNECTION)

    def get_default_connection_configuration(self) -> AuthConfiguration:
        return self._configurations[DEFAULT_CONNECTION.casefold()]

    def all_configurations(self) -> list[AuthConfiguration]:
        return list(self._configurations.values())

    def resolve(self, audience: str | None, service_url: str | None) -> AuthConfiguration:
        """Return the configuration of the first map entry matching the request."""
        return self.get_token_provider(audience, service_url).require_connection_settings()

    def get_token_provider(
        self, audience: str | None, service_url: str | None
    ) -> MsalTokenProvider:
        """Select the token provider for an audience and service URL.

        Map entries are evaluated in order. An entry matches when its audience
        equals ``audience`` and its service URL pattern is ``*``, empty, or a
        case-insensitive regex that matches ``service_url``.

        Raises:
            ValueError: If audience or service URL is missing.
            ConnectionNotFoundError: If no entry matches.
        """
        if not audience or not service_url:
            raise ValueError("Audience and Service URL are required to get the token provider.")

        if not self._connections_map:
            return self.get_default_connection()

        for item in self._connections_map:
            if item.audience != audience:
                continue
            if not item.service_url or item.service_url == "*":
                return self.get_connection(item.connection)
            if re.search(item.service_url, service_url, re.IGNORECASE):
                return self.get_connection(item.connection)

        logger.warning(
            "No connection matched audience %s and service URL %s", audience, service_url
        )
        raise ConnectionNotFoundError(
            f"No connection found for audience: {audience} and serviceUrl: {service_url}"
        )

    def get_token_provider_from_activity(
        self, audience: str | None, activity: Activity
    ) -> MsalTokenProvider:
        return self.get_token_provider(audience, activity.service_url)

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()
