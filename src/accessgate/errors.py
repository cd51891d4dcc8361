# Error taxonomy.
# Created: 2026-10-02
#
# Stores return None/False for ordinary "not found / expired / invalid"
# outcomes. Exceptions here are for protocol failures surfaced by the
# authorization server, broken configuration, and login refusals.

from __future__ import annotations


class AccessGateError(Exception):
    """Base class for all accessgate errors."""


# ---------------------------------------------------------------------------
# OAuth2 protocol errors (RFC 6749 §5.2 error codes)
# ---------------------------------------------------------------------------


class OAuthError(AccessGateError):
    """Protocol-level error with an RFC 6749 error code."""

    error = "invalid_request"
    status_code = 400

    def __init__(self, description: str = "", *, status_code: int | None = None):
        super().__init__(description or self.error)
        self.description = description
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict[str, str]:
        body = {"error": self.error}
        if self.description:
            body["error_description"] = self.description
        return body


class InvalidRequest(OAuthError):
    error = "invalid_request"


class InvalidGrant(OAuthError):
    """Expired, unknown or replayed authorization code / refresh token."""

    error = "invalid_grant"


class InvalidClient(OAuthError):
    """Unknown client, inactive client or bad secret."""

    error = "invalid_client"
    status_code = 401


class InvalidScope(OAuthError):
    error = "invalid_scope"


class UnauthorizedClient(OAuthError):
    error = "unauthorized_client"


class AccessDenied(OAuthError):
    error = "access_denied"
    status_code = 403


class UnsupportedGrantType(OAuthError):
    error = "unsupported_grant_type"


class UnsupportedResponseType(OAuthError):
    error = "unsupported_response_type"


class InvalidToken(OAuthError):
    """Bearer token missing, expired or of the wrong kind (RFC 6750)."""

    error = "invalid_token"
    status_code = 401


# ---------------------------------------------------------------------------
# Configuration errors (fatal at load time)
# ---------------------------------------------------------------------------


class ConfigurationError(AccessGateError):
    """Broken deployment configuration. Never raised per-request."""


class ConfigurationCycle(ConfigurationError):
    """Group inheritance graph contains a cycle."""

    def __init__(self, group_id: str, parent_id: str, path: list[str] | None = None):
        self.group_id = group_id
        self.parent_id = parent_id
        self.path = path or []
        chain = " -> ".join([*self.path, parent_id]) if self.path else f"{group_id} -> {parent_id}"
        super().__init__(f"Circular group inheritance detected: {chain}")


class UnknownParentGroup(ConfigurationError):
    def __init__(self, group_id: str, parent_id: str):
        self.group_id = group_id
        self.parent_id = parent_id
        super().__init__(f"Group '{group_id}' inherits from unknown group '{parent_id}'")


class MissingSigningKey(ConfigurationError):
    """No JWT secret or key pair could be resolved."""


# ---------------------------------------------------------------------------
# Authentication / account errors
# ---------------------------------------------------------------------------


class AuthenticationError(AccessGateError):
    pass


class InvalidCredentials(AuthenticationError):
    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class AccountDisabled(AuthenticationError):
    def __init__(self, user_id: str = ""):
        self.user_id = user_id
        super().__init__("User account is disabled. Please contact your administrator.")


class SelfSignupDisallowed(AuthenticationError):
    def __init__(self, subject: str = ""):
        self.subject = subject
        super().__init__(
            "New user registration is not allowed. Please contact your administrator."
        )


# ---------------------------------------------------------------------------
# Registry errors
# ---------------------------------------------------------------------------


class ClientNotFound(AccessGateError, KeyError):
    def __init__(self, client_id: str):
        self.client_id = client_id
        super().__init__(f"OAuth client not found: {client_id}")

    def __str__(self) -> str:
        return self.args[0]


class UserNotFound(AccessGateError, KeyError):
    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")

    def __str__(self) -> str:
        return self.args[0]


class LastAdminError(AccessGateError):
    """Refused to remove admin rights from the only remaining administrator."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User {user_id} is the last administrator")
