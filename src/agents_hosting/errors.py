"""Exception hierarchy for the agents hosting SDK."""


class AgentsHostingError(Exception):
    """Base class for all errors raised by the hosting SDK."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ConfigurationError(AgentsHostingError):
    """Credential or connection configuration is missing or inconsistent."""


class InvalidAuthConfigurationError(ConfigurationError):
    """No token acquisition mechanism matches the populated credential fields."""


class ConnectionNotFoundError(ConfigurationError):
    """No connection matches the requested name, audience or service URL."""


class AuthenticationError(AgentsHostingError):
    """Inbound request could not be authenticated. Maps to HTTP 401."""

    status_code = 401


class TokenAcquisitionError(AgentsHostingError):
    """An outbound access token could not be obtained."""


class AgenticTokenError(TokenAcquisitionError):
    """A step in the agentic federated credential chain failed."""

    def __init__(self, message: str, instance_id: str | None = None):
        self.instance_id = instance_id
        super().__init__(message)


class AgenticApplicationTokenError(AgenticTokenError):
    """Failed to acquire the agentic application token."""


class AgenticInstanceTokenError(AgenticTokenError):
    """Failed to acquire the agentic instance token."""


class AgenticUserTokenError(AgenticTokenError):
    """Failed to acquire the agentic user token."""


class ConnectorError(AgentsHostingError):
    """Error returned by the channel connector or token service."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class ContextReleasedError(AgentsHostingError):
    """A turn context was used after its turn completed."""


class ETagConflictError(AgentsHostingError):
    """A storage write was rejected because the stored eTag changed."""
