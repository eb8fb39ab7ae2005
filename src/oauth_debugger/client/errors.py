from typing import Any

from pydantic import ValidationError


class OAuthFlowError(Exception):
    """Base exception for OAuth flow errors."""

    pass


class OAuthStateTransitionError(OAuthFlowError):
    """Raised when a step is executed while its precondition does not hold."""

    def __init__(self, step: str):
        super().__init__(f"Cannot transition from {step}")
        self.step = step


class ProtectedResourceMetadataError(OAuthFlowError):
    """Raised when protected resource metadata cannot be discovered."""

    pass


class OAuthMetadataError(OAuthFlowError):
    """Raised when authorization server metadata is missing or invalid."""

    pass


class OAuthRegistrationError(OAuthFlowError):
    """Raised when client registration fails."""

    pass


class OAuthAuthorizationError(OAuthFlowError):
    """Raised when the authorization redirect cannot be built."""

    pass


class OAuthTokenError(OAuthFlowError):
    """Raised when token operations fail."""

    pass


class AuthorizationCodeRequiredError(OAuthFlowError):
    """
    Raised when the operator continues without an authorization code.

    Unlike the other failures, this one carries a partial state update
    (the validation message) that the caller should still apply.
    """

    def __init__(self, validation_error: str):
        super().__init__("Authorization code required")
        self.updates: dict[str, Any] = {"validation_error": validation_error}


def stringify_pydantic_error(validation_error: ValidationError) -> str:
    return "\n".join(
        f"{'.'.join(str(loc) for loc in e['loc'])}: {e['msg']}"
        for e in validation_error.errors()
    )
