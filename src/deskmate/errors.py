"""Summary: Typed errors for credential resolution and provider access.

Importance: Lets route handlers map failures to status codes and reconnect prompts
without parsing error strings.
Alternatives: Raise ValueError/RuntimeError and inspect messages at the edge.
"""

from __future__ import annotations


class CredentialError(Exception):
    """Summary: Base class for credential lifecycle failures.

    Importance: Gives every failure an HTTP status and a user-facing call to action.
    Alternatives: Return error tuples from each service call.
    """

    status_code = 500
    action = "Please try again later."
    reconnect = False
    retryable = False

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider

    @property
    def code(self) -> str:
        return type(self).__name__


class ConfigurationMissing(CredentialError):
    """No stored email configuration and no explicit host."""

    status_code = 400
    action = "Set up your email account to continue."


class IdentityMissing(CredentialError):
    """No email address could be found for the user."""

    status_code = 400
    action = "Add an email address to your profile."


class UnknownProvider(CredentialError):
    """Provider name is not present in the registry."""

    status_code = 400
    action = "Choose a supported provider: google, microsoft, or yahoo."


class ProviderMisconfigured(CredentialError):
    """The server lacks OAuth client credentials for the provider."""

    status_code = 500
    action = "Email provider is not configured on the server. Contact the administrator."


class CredentialMissing(CredentialError):
    """Neither a password nor a stored OAuth token exists."""

    status_code = 401
    action = "Connect your account to continue."
    reconnect = True


class CredentialExpired(CredentialError):
    """The stored token is expired and cannot be refreshed."""

    status_code = 401
    action = "Reconnect your account to continue."
    reconnect = True


class RefreshRejected(CredentialError):
    """Summary: The provider rejected the refresh grant.

    Importance: Signals a revoked or invalid grant; retrying cannot succeed.
    Alternatives: Treat all refresh failures as transient.
    """

    status_code = 401
    action = "Reconnect your account to continue."
    reconnect = True


class ProviderUnreachable(CredentialError):
    """Summary: The provider could not be reached or timed out.

    Importance: Marks transient failures the caller may retry at its discretion.
    Alternatives: Collapse network failures into generic server errors.
    """

    retryable = True
    action = "The provider is unavailable. Try again shortly."

    def __init__(self, message: str, provider: str | None = None, timed_out: bool = False) -> None:
        super().__init__(message, provider)
        self.timed_out = timed_out

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return 504 if self.timed_out else 502


class TokenPersistFailed(CredentialError):
    """A refreshed token was obtained but could not be stored."""

    status_code = 500
    action = "We could not save your refreshed credentials. Try again shortly."
    retryable = True
