"""Validation of inbound bearer tokens issued to the agent."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import jwt
from jwt import PyJWKClient

from .config import AGENTS_ISSUER, AuthConfiguration, is_production
from .errors import AuthenticationError
from .http_auth import extract_bearer_token
from .models import ClaimsIdentity

logger = logging.getLogger(__name__)

BOT_FRAMEWORK_JWKS_URI = "https://login.botframework.com/v1/.well-known/keys"
CLOCK_TOLERANCE_SECONDS = 300
ALLOWED_ALGORITHMS = ["RS256"]
JWKS_CACHE_LIFESPAN_SECONDS = 3600


def anonymous_identity() -> ClaimsIdentity:
    return ClaimsIdentity(
        claims={"name": "anonymous"}, is_authenticated=False, authentication_type="anonymous"
    )


class JwtTokenVerifier:
    """Verifies tokens against every configured connection.

    The connection is selected by matching the token's ``aud`` claim to a
    client id. Signing keys come from the Bot Framework key set for tokens
    issued by ``https://api.botframework.com`` and from the tenant's key set
    otherwise.
    """

    def __init__(
        self,
        configurations: list[AuthConfiguration],
        *,
        production: bool | None = None,
    ) -> None:
        self._configurations = list(configurations)
        self._production = production
        self._jwk_clients: dict[str, PyJWKClient] = {}

    @property
    def is_production(self) -> bool:
        return is_production() if self._production is None else self._production

    @property
    def allows_anonymous(self) -> bool:
        """Anonymous requests are accepted only in development with no client ids."""
        has_client_id = any(config.client_id for config in self._configurations)
        return not has_client_id and not self.is_production

    def find_configuration(self, audience: Any) -> AuthConfiguration | None:
        audiences = audience if isinstance(audience, list) else [audience]
        for config in self._configurations:
            if config.client_id and config.client_id in audiences:
                return config
        return None

    @staticmethod
    def get_jwks_uri(issuer: str | None, config: AuthConfiguration) -> str:
        if issuer == AGENTS_ISSUER:
            return BOT_FRAMEWORK_JWKS_URI
        return f"{config.authority}/{config.tenant_id}/discovery/v2.0/keys"

    def _get_jwk_client(self, jwks_uri: str) -> PyJWKClient:
        if jwks_uri not in self._jwk_clients:
            self._jwk_clients[jwks_uri] = PyJWKClient(
                jwks_uri, cache_jwk_set=True, lifespan=JWKS_CACHE_LIFESPAN_SECONDS
            )
        return self._jwk_clients[jwks_uri]

    async def verify(self, raw_token: str) -> ClaimsIdentity:
        """Validate ``raw_token`` and return its claims.

        Raises:
            AuthenticationError: If the token is malformed, addressed to an unknown
                audience, or fails signature, lifetime, audience or issuer checks.
        """
        try:
            unverified = jwt.decode(raw_token, options={"verify_signature": False})
        except jwt.PyJWTError as e:
            raise AuthenticationError("invalid token") from e

        audience = unverified.get("aud")
        config = self.find_configuration(audience)
        if config is None:
            logger.error("Audience mismatch: %s", audience)
            raise AuthenticationError("Audience mismatch")

        jwks_uri = self.get_jwks_uri(unverified.get("iss"), config)
        logger.debug("Fetching signing keys from %s", jwks_uri)
        jwk_client = self._get_jwk_client(jwks_uri)

        try:
            signing_key = await asyncio.to_thread(jwk_client.get_signing_key_from_jwt, raw_token)
            claims = jwt.decode(
                raw_token,
                signing_key.key,
                algorithms=ALLOWED_ALGORITHMS,
                audience=[config.client_id, AGENTS_ISSUER],
                issuer=config.issuers,
                leeway=CLOCK_TOLERANCE_SECONDS,
                options={"require": ["exp", "iss", "aud"]},
            )
        except jwt.PyJWTError as e:
            logger.error("Token validation failed: %s", e)
            raise AuthenticationError(str(e)) from e

        logger.debug("Token verified for audience %s", audience)
        return ClaimsIdentity(claims=claims, is_authenticated=True, authentication_type="Bearer")

    async def authorize_request(self, authorization_header: str | None) -> ClaimsIdentity:
        """Authenticate a request from its ``Authorization`` header value."""
        if authorization_header:
            return await self.verify(extract_bearer_token(authorization_header))
        if self.allows_anonymous:
            logger.info("Using anonymous auth")
            return anonymous_identity()
        logger.error("Authorization header not found")
        raise AuthenticationError("authorization header not found")
