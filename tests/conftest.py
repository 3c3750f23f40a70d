"""Pytest configuration and shared fixtures."""

import time

import jwt
import pytest
import respx
from cryptography.hazmat.primitives.asymmetric import rsa

from agents_hosting.config import AuthConfiguration


@pytest.fixture
def auth_config():
    """Provide a client secret connection configuration for testing."""
    return AuthConfiguration(
        client_id="test-client-id",
        client_secret="test-client-secret",
        tenant_id="test-tenant",
    )


@pytest.fixture
def anonymous_config():
    """Provide a connection with no credentials (development only)."""
    return AuthConfiguration()


@pytest.fixture
def respx_mock():
    """Provide a respx mock router for HTTP requests."""
    with respx.mock(assert_all_called=False) as respx_mock:
        yield respx_mock


@pytest.fixture(scope="session")
def rsa_private_key():
    """RSA key used to sign test tokens."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def make_token(rsa_private_key):
    """Build signed JWTs with sensible default claims."""

    def _make_token(**overrides):
        now = int(time.time())
        claims = {
            "aud": "test-client-id",
            "iss": "https://api.botframework.com",
            "appid": "caller-app-id",
            "iat": now,
            "nbf": now,
            "exp": now + 3600,
        }
        claims.update(overrides)
        claims = {key: value for key, value in claims.items() if value is not None}
        return jwt.encode(claims, rsa_private_key, algorithm="RS256", headers={"kid": "test-kid"})

    return _make_token
