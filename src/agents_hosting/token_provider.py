"""Outbound access token acquisition using MSAL and the agentic token exchange."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import httpx
import msal
import requests
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization

from .config import DEFAULT_AUTHORITY, AuthConfiguration, AuthType, is_production
from .errors import (
    AgenticApplicationTokenError,
    AgenticInstanceTokenError,
    AgenticUserTokenError,
    ConfigurationError,
    InvalidAuthConfigurationError,
    TokenAcquisitionError,
)
from .memory_cache import MemoryCache
from .models import OAuthTokenResponse

logger = logging.getLogger(__name__)

TOKEN_EXCHANGE_AUDIENCE = "api://AzureADTokenExchange"
AGENTIC_TOKEN_SCOPE = "api://AzureAdTokenExchange/.default"
APX_PRODUCTION_SCOPE = "ea9ffc3e-8a23-4a7d-836d-234d7c7565c1/.default"
CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"
DEFAULT_TENANT = "botframework.com"
CACHE_EXPIRY_SKEW_SECONDS = 300

# Never part of an agentic cache key
_SECRET_BODY_PARAMETERS = frozenset(
    {"user_federated_identity_credential", "client_secret", "client_assertion"}
)


def _authority_url(config: AuthConfiguration) -> str:
    return f"{config.authority or DEFAULT_AUTHORITY}/{config.tenant_id or DEFAULT_TENANT}"


def _extract_access_token(result: dict[str, Any] | None) -> str:
    if result and result.get("access_token"):
        return result["access_token"]
    error = (result or {}).get("error", "no_token")
    description = (result or {}).get("error_description", "empty token response")
    logger.error("MSAL token acquisition failed: %s", error)
    raise TokenAcquisitionError(f"Failed to acquire token: {error} ({description})")


def load_certificate_credential(cert_pem_file: str, cert_key_file: str) -> dict[str, str]:
    """Build an MSAL certificate credential from a PEM certificate and private key.

    The key is re-encoded as PKCS#8 and the certificate's SHA-1 fingerprint is
    used as the thumbprint.
    """
    key = serialization.load_pem_private_key(Path(cert_key_file).read_bytes(), password=None)
    private_key = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()

    cert_pem = Path(cert_pem_file).read_bytes()
    certificate = x509.load_pem_x509_certificate(cert_pem)
    thumbprint = certificate.fingerprint(hashes.SHA1()).hex().upper()

    return {
        "private_key": private_key,
        "thumbprint": thumbprint,
        "public_certificate": cert_pem.decode(),
    }


class MsalTokenProvider:
    """Acquires access tokens for a connection.

    ``get_access_token`` dispatches on the populated credential fields:
    federated identity credential, client secret, certificate, or user-assigned
    managed identity. The agentic methods exchange tokens directly with the
    token endpoint and cache each step separately.
    """

    def __init__(
        self,
        connection_settings: AuthConfiguration | None = None,
        *,
        production: bool | None = None,
        token_cache: MemoryCache[str] | None = None,
    ) -> None:
        self.connection_settings = connection_settings
        self._production = production
        self._agentic_token_cache: MemoryCache[str] = token_cache or MemoryCache()
        self._confidential_clients: dict[
            tuple[str, str, str], msal.ConfidentialClientApplication
        ] = {}
        self._managed_identity_clients: dict[str, msal.ManagedIdentityClient] = {}
        self._http_session = requests.Session()

    @property
    def is_production(self) -> bool:
        return is_production() if self._production is None else self._production

    def require_connection_settings(self) -> AuthConfiguration:
        if self.connection_settings is None:
            raise ConfigurationError("Token provider has no connection settings")
        return self.connection_settings

    async def close(self) -> None:
        await self._agentic_token_cache.close()
        self._http_session.close()

    # Client credential flows

    async def get_access_token(self, config: AuthConfiguration, scope: str) -> str:
        """Acquire an app-only token for ``scope``.

        Raises:
            InvalidAuthConfigurationError: If no acquisition mechanism matches the config.
            TokenAcquisitionError: If the identity platform returned no token.
        """
        if not config.client_id and not self.is_production:
            logger.debug("No client id configured, using anonymous access")
            return ""

        auth_type = config.auth_type
        logger.debug("Acquiring token for scope %s using %s", scope, auth_type)

        if auth_type == AuthType.USER_MANAGED_IDENTITY:
            result = await asyncio.to_thread(
                self._acquire_with_managed_identity, config.client_id, scope
            )
        else:
            result = await asyncio.to_thread(
                self._acquire_for_client, config, [f"{scope}/.default"]
            )
        return _extract_access_token(result)

    async def acquire_token_on_behalf_of(
        self, config: AuthConfiguration, scopes: list[str], assertion: str
    ) -> str:
        """Exchange a user assertion for a token with the given scopes."""
        if config.auth_type == AuthType.USER_MANAGED_IDENTITY:
            raise InvalidAuthConfigurationError(
                "On-behalf-of requires a client secret, certificate or federated credential"
            )

        result = await asyncio.to_thread(self._acquire_on_behalf_of, config, scopes, assertion)
        return _extract_access_token(result)

    def _acquire_for_client(self, config: AuthConfiguration, scopes: list[str]) -> dict[str, Any]:
        app = self._get_confidential_client(config)
        try:
            return app.acquire_token_for_client(scopes=scopes)
        except requests.RequestException as e:
            raise TokenAcquisitionError(f"Failed to acquire token: {e}") from e

    def _acquire_on_behalf_of(
        self, config: AuthConfiguration, scopes: list[str], assertion: str
    ) -> dict[str, Any]:
        app = self._get_confidential_client(config)
        try:
            return app.acquire_token_on_behalf_of(user_assertion=assertion, scopes=scopes)
        except requests.RequestException as e:
            raise TokenAcquisitionError(f"Failed to acquire token: {e}") from e

    def _get_confidential_client(
        self, config: AuthConfiguration
    ) -> msal.ConfidentialClientApplication:
        auth_type = config.auth_type
        authority = _authority_url(config)
        key = (config.client_id, authority, auth_type.value)
        if key in self._confidential_clients:
            return self._confidential_clients[key]

        client_credential: Any
        if auth_type == AuthType.FEDERATED_CREDENTIALS:
            fic_client_id = config.fic_client_id or ""
            client_credential = {
                "client_assertion": lambda: self._fetch_external_token(fic_client_id)
            }
        elif auth_type == AuthType.CLIENT_SECRET:
            client_credential = config.client_secret
        elif auth_type == AuthType.CERTIFICATE:
            client_credential = load_certificate_credential(
                config.cert_pem_file or "", config.cert_key_file or ""
            )
        else:
            raise InvalidAuthConfigurationError("Invalid authConfig.")

        app = msal.ConfidentialClientApplication(
            client_id=config.client_id,
            client_credential=client_credential,
            authority=authority,
            enable_pii_log=False,
        )
        self._confidential_clients[key] = app
        return app

    def _get_managed_identity_client(self, client_id: str) -> msal.ManagedIdentityClient:
        if client_id not in self._managed_identity_clients:
            self._managed_identity_clients[client_id] = msal.ManagedIdentityClient(
                msal.UserAssignedManagedIdentity(client_id=client_id),
                http_client=self._http_session,
            )
        return self._managed_identity_clients[client_id]

    def _acquire_with_managed_identity(self, client_id: str, resource: str) -> dict[str, Any]:
        client = self._get_managed_identity_client(client_id)
        try:
            return client.acquire_token_for_client(resource=resource)
        except requests.RequestException as e:
            raise TokenAcquisitionError(f"Failed to acquire token: {e}") from e

    def _fetch_external_token(self, fic_client_id: str) -> str:
        """Managed identity token used as the client assertion for FIC."""
        result = self._acquire_with_managed_identity(fic_client_id, TOKEN_EXCHANGE_AUDIENCE)
        logger.debug("Acquired managed identity assertion for federated credential")
        return _extract_access_token(result)

    # Agentic flows

    async def get_agentic_application_token(
        self, config: AuthConfiguration, instance_id: str, tenant_id: str | None = None
    ) -> str:
        """Token for the agent application, scoped to the token exchange audience."""
        if not instance_id:
            raise ValueError("Agent instance id is required")

        client_assertion = None
        if config.fic_client_id:
            client_assertion = await asyncio.to_thread(
                self._fetch_external_token, config.fic_client_id
            )
        elif not config.client_secret:
            raise AgenticApplicationTokenError(
                "Agentic tokens require a client secret or federated credential", instance_id
            )

        try:
            return await self._acquire_token_for_agentic_scenarios(
                config,
                client_id=config.client_id,
                client_assertion=client_assertion,
                scopes=[AGENTIC_TOKEN_SCOPE],
                body_parameters={"grant_type": "client_credentials", "fmi_path": instance_id},
                tenant_id=tenant_id,
            )
        except TokenAcquisitionError as e:
            raise AgenticApplicationTokenError(
                f"Failed to acquire token for agent instance: {instance_id}", instance_id
            ) from e

    async def get_agentic_instance_token(
        self, config: AuthConfiguration, instance_id: str, tenant_id: str | None = None
    ) -> str:
        """Token for the agent instance, using the application token as its assertion."""
        app_token = await self.get_agentic_application_token(config, instance_id, tenant_id)
        logger.debug("Acquiring agentic instance token")
        try:
            return await self._acquire_token_for_agentic_scenarios(
                config,
                client_id=instance_id,
                client_assertion=app_token,
                scopes=[AGENTIC_TOKEN_SCOPE],
                body_parameters={"grant_type": "client_credentials"},
                tenant_id=tenant_id,
            )
        except TokenAcquisitionError as e:
            raise AgenticInstanceTokenError(
                f"Failed to acquire instance token for agent instance: {instance_id}", instance_id
            ) from e

    async def get_agentic_user_token(
        self,
        config: AuthConfiguration,
        instance_id: str,
        upn: str,
        scopes: list[str],
        tenant_id: str | None = None,
    ) -> str:
        """Token acting as the agentic user ``upn`` via the ``user_fic`` grant."""
        app_token = await self.get_agentic_application_token(config, instance_id, tenant_id)
        instance_token = await self.get_agentic_instance_token(config, instance_id, tenant_id)
        logger.debug("Acquiring agentic user token")
        try:
            return await self._acquire_token_for_agentic_scenarios(
                config,
                client_id=instance_id,
                client_assertion=app_token,
                scopes=scopes,
                body_parameters={
                    "username": upn,
                    "user_federated_identity_credential": instance_token,
                    "grant_type": "user_fic",
                },
                tenant_id=tenant_id,
            )
        except TokenAcquisitionError as e:
            raise AgenticUserTokenError(
                f"Failed to acquire user token for agent instance: {instance_id}", instance_id
            ) from e

    def get_token_endpoint(self, config: AuthConfiguration, tenant_id: str | None = None) -> str:
        """Token endpoint URL, substituting ``tenant_id`` for a ``common`` tenant."""
        tenant = config.tenant_id or DEFAULT_TENANT
        if tenant.lower() == "common" and tenant_id:
            tenant = tenant_id
        return f"{config.authority or DEFAULT_AUTHORITY}/{tenant}/oauth2/v2.0/token"

    @staticmethod
    def _agentic_cache_key(
        client_id: str, body_parameters: dict[str, str], scopes: list[str]
    ) -> str:
        params = "&".join(
            f"{key}={value}"
            for key, value in sorted(body_parameters.items())
            if key not in _SECRET_BODY_PARAMETERS
        )
        return f"{client_id}/{params}/{';'.join(scopes)}"

    async def _acquire_token_for_agentic_scenarios(
        self,
        config: AuthConfiguration,
        *,
        client_id: str,
        client_assertion: str | None,
        scopes: list[str],
        body_parameters: dict[str, str],
        tenant_id: str | None = None,
    ) -> str:
        cache_key = self._agentic_cache_key(client_id, body_parameters, scopes)
        cached = self._agentic_token_cache.get(cache_key)
        if cached:
            return cached

        data = {"client_id": client_id, "scope": " ".join(scopes), **body_parameters}
        if client_assertion:
            data["client_assertion_type"] = CLIENT_ASSERTION_TYPE
            data["client_assertion"] = client_assertion
        elif config.client_secret:
            data["client_secret"] = config.client_secret

        url = self.get_token_endpoint(config, tenant_id)
        try:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.post(
                    url,
                    data=data,
                    headers={"Content-Type": "application/x-www-form-urlencoded;charset=utf-8"},
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Token endpoint returned HTTP %s for grant %s",
                e.response.status_code,
                body_parameters.get("grant_type"),
            )
            raise TokenAcquisitionError(
                f"HTTP {e.response.status_code} from token endpoint"
            ) from e
        except httpx.RequestError as e:
            logger.error("Token endpoint request failed: %s", e)
            raise TokenAcquisitionError(f"Request failed: {e}") from e

        token = OAuthTokenResponse.model_validate(response.json())
        ttl = token.expires_in - CACHE_EXPIRY_SKEW_SECONDS
        if ttl > 0:
            self._agentic_token_cache.set(cache_key, token.access_token, ttl)
        return token.access_token
