"""Credential and connection configuration loaded from the environment."""

from __future__ import annotations

import os
from enum import StrEnum
from typing import Any

from dotenv import load_dotenv
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError, InvalidAuthConfigurationError

DEFAULT_AUTHORITY = "https://login.microsoftonline.com"
DEFAULT_CONNECTION = "serviceConnection"
AGENTS_ISSUER = "https://api.botframework.com"


def is_production() -> bool:
    """Whether the process runs with production checks enabled."""
    environment = os.getenv("ENVIRONMENT") or os.getenv("NODE_ENV") or ""
    return environment.lower() == "production"


def get_default_issuers(tenant_id: str | None, authority: str) -> list[str]:
    tenant = tenant_id or ""
    return [
        AGENTS_ISSUER,
        f"https://sts.windows.net/{tenant}/",
        f"{authority}/{tenant}/v2.0",
    ]


def _split_list(value: Any) -> Any:
    if isinstance(value, str):
        return [item for item in value.replace(" ", ",").split(",") if item]
    return value


class AuthType(StrEnum):
    """Token acquisition mechanism selected by the populated credential fields."""

    FEDERATED_CREDENTIALS = "federated_credentials"
    CLIENT_SECRET = "client_secret"
    CERTIFICATE = "certificate"
    USER_MANAGED_IDENTITY = "user_managed_identity"


class AuthConfiguration(BaseModel):
    """Credentials for a single named connection.

    Field names accept snake_case, camelCase and the lowercased keys produced
    by case-insensitive environment parsing. A ``settings`` wrapper, as used by
    ``CONNECTIONS__<NAME>__SETTINGS__*`` variables, is unwrapped.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    client_id: str = Field("", validation_alias=AliasChoices("client_id", "clientId", "clientid"))
    tenant_id: str | None = Field(
        None, validation_alias=AliasChoices("tenant_id", "tenantId", "tenantid")
    )
    client_secret: str | None = Field(
        None, validation_alias=AliasChoices("client_secret", "clientSecret", "clientsecret")
    )
    cert_pem_file: str | None = Field(
        None, validation_alias=AliasChoices("cert_pem_file", "certPemFile", "certpemfile")
    )
    cert_key_file: str | None = Field(
        None, validation_alias=AliasChoices("cert_key_file", "certKeyFile", "certkeyfile")
    )
    fic_client_id: str | None = Field(
        None, validation_alias=AliasChoices("fic_client_id", "FICClientId", "ficclientid")
    )
    authority: str = Field(
        DEFAULT_AUTHORITY,
        validation_alias=AliasChoices("authority", "authorityEndpoint", "authorityendpoint"),
    )
    issuers: list[str] = []
    scopes: list[str] | None = None
    connection_name: str | None = Field(
        None, validation_alias=AliasChoices("connection_name", "connectionName", "connectionname")
    )

    @model_validator(mode="before")
    @classmethod
    def unwrap_settings(cls, data: Any) -> Any:
        if isinstance(data, dict):
            for key in ("settings", "SETTINGS", "Settings"):
                if isinstance(data.get(key), dict):
                    return data[key]
        return data

    @field_validator("issuers", "scopes", mode="before")
    @classmethod
    def split_lists(cls, value: Any) -> Any:
        return _split_list(value)

    @field_validator("authority", mode="before")
    @classmethod
    def strip_authority(cls, value: Any) -> Any:
        if not value:
            return DEFAULT_AUTHORITY
        return value.rstrip("/") if isinstance(value, str) else value

    @model_validator(mode="after")
    def fill_default_issuers(self) -> AuthConfiguration:
        if not self.issuers:
            object.__setattr__(self, "issuers", get_default_issuers(self.tenant_id, self.authority))
        return self

    @property
    def auth_type(self) -> AuthType:
        """Select the acquisition mechanism, in priority order.

        Raises:
            InvalidAuthConfigurationError: A certificate pair is only half populated.
        """
        if self.fic_client_id:
            return AuthType.FEDERATED_CREDENTIALS
        if self.client_secret:
            return AuthType.CLIENT_SECRET
        if self.cert_pem_file and self.cert_key_file:
            return AuthType.CERTIFICATE
        if not self.cert_pem_file and not self.cert_key_file:
            return AuthType.USER_MANAGED_IDENTITY
        raise InvalidAuthConfigurationError("Invalid authConfig.")


class ConnectionMapItem(BaseModel):
    """Routing rule from (audience, service URL pattern) to a connection name."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    audience: str | None = None
    service_url: str = Field(
        "", validation_alias=AliasChoices("service_url", "serviceUrl", "serviceurl")
    )
    connection: str


class AgentsConfiguration(BaseModel):
    """All configured connections plus the ordered routing table."""

    connections: dict[str, AuthConfiguration]
    connections_map: list[ConnectionMapItem] = []
    environment: str = "development"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def default_connection(self) -> AuthConfiguration | None:
        for name, config in self.connections.items():
            if name.casefold() == DEFAULT_CONNECTION.casefold():
                return config
        return None


class AgentsSettings(BaseSettings):
    """Environment-backed settings.

    Named connections use ``CONNECTIONS__<NAME>__SETTINGS__<FIELD>`` and routing
    rules use ``CONNECTIONSMAP__<N>__<FIELD>``. When no named connection is
    present, the flat ``CLIENTID``/``CLIENTSECRET``/``TENANTID`` keys define
    the default connection.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
        populate_by_name=True,
    )

    connections: dict[str, AuthConfiguration] = {}
    connections_map: list[ConnectionMapItem] = Field(
        default_factory=list, validation_alias=AliasChoices("connectionsmap", "connections_map")
    )

    client_id: str = Field("", validation_alias=AliasChoices("clientid", "client_id"))
    tenant_id: str | None = Field(None, validation_alias=AliasChoices("tenantid", "tenant_id"))
    client_secret: str | None = Field(
        None, validation_alias=AliasChoices("clientsecret", "client_secret")
    )
    cert_pem_file: str | None = Field(
        None, validation_alias=AliasChoices("certpemfile", "cert_pem_file")
    )
    cert_key_file: str | None = Field(
        None, validation_alias=AliasChoices("certkeyfile", "cert_key_file")
    )
    fic_client_id: str | None = Field(
        None, validation_alias=AliasChoices("ficclientid", "fic_client_id")
    )
    authority: str = Field(
        DEFAULT_AUTHORITY, validation_alias=AliasChoices("authorityendpoint", "authority")
    )
    connection_name: str | None = Field(
        None, validation_alias=AliasChoices("connectionname", "connection_name")
    )
    environment: str = Field(
        "development", validation_alias=AliasChoices("environment", "node_env")
    )

    @field_validator("connections_map", mode="before")
    @classmethod
    def order_connections_map(cls, value: Any) -> Any:
        # Indexed env keys arrive as {"0": {...}, "1": {...}}
        if isinstance(value, dict):
            return [
                value[key]
                for key in sorted(value, key=lambda k: int(k) if str(k).isdigit() else str(k))
            ]
        return value

    @model_validator(mode="after")
    def validate_production(self) -> AgentsSettings:
        if self.environment.lower() != "production":
            return self
        if self.connections:
            missing = [name for name, cfg in self.connections.items() if not cfg.client_id]
            if missing:
                raise ValueError(f"ClientId required in production for connections: {missing}")
        elif not self.client_id:
            raise ValueError("ClientId required in production")
        return self

    def to_configuration(self) -> AgentsConfiguration:
        if self.connections:
            connections = {
                _canonical_connection_name(name): cfg for name, cfg in self.connections.items()
            }
        else:
            connections = {
                DEFAULT_CONNECTION: AuthConfiguration(
                    client_id=self.client_id,
                    tenant_id=self.tenant_id,
                    client_secret=self.client_secret,
                    cert_pem_file=self.cert_pem_file,
                    cert_key_file=self.cert_key_file,
                    fic_client_id=self.fic_client_id,
                    authority=self.authority,
                    connection_name=self.connection_name,
                )
            }
        return AgentsConfiguration(
            connections=connections,
            connections_map=self.connections_map,
            environment=self.environment,
        )


def _canonical_connection_name(name: str) -> str:
    # Environment keys are lowercased; restore the default connection's name
    if name.casefold() == DEFAULT_CONNECTION.casefold():
        return DEFAULT_CONNECTION
    return name


def load_auth_configuration(**overrides: Any) -> AgentsConfiguration:
    """Load connection configuration from the environment and ``.env`` file.

    Raises:
        ConfigurationError: If the settings fail validation.
    """
    load_dotenv()
    try:
        settings = AgentsSettings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid agents configuration: {e}") from e
    return settings.to_configuration()
