"""Exception types raised by the authentication core.

Only lightweight, **data-carrying** exceptions live here so that the HTTP and
conversation layers can turn them into responses or user-facing messages.
``to_payload()`` never includes tokens, codes, nonces or secrets.
"""

from __future__ import annotations

from typing import Any


class AuthenticationError(Exception):
    """Base class for every failure raised by the authentication core."""

    error_code: str = "authentication_failed"

    def to_payload(self) -> dict[str, Any]:
        """Return a JSON-serialisable payload **without secrets**."""
        return {"error": self.error_code, "message": str(self)}


class ArgumentInvalidError(AuthenticationError, ValueError):
    """A required argument was missing, empty or ``None``."""

    error_code = "argument_invalid"

    def __init__(self, name: str, message: str | None = None) -> None:
        super().__init__(message or f"{name} is not set")
        self.name = name


class CacheUnavailableError(AuthenticationError):
    """The backing cache store failed to fetch, store or delete a value."""

    error_code = "cache_unavailable"

    def __init__(self, operation: str, key: str | None = None, message: str | None = None) -> None:
        super().__init__(message or f"Cache {operation} failed")
        self.operation = operation
        self.key = key


class InteractionRequiredError(AuthenticationError):
    """Silent acquisition cannot succeed; the interactive flow must restart."""

    error_code = "interaction_required"

    def __init__(
        self,
        *,
        resource: str,
        message: str | None = None,
        authority_error: str | None = None,
    ) -> None:
        super().__init__(message or "Interactive authentication required.")
        self.resource = resource
        self.authority_error = authority_error

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["resource"] = self.resource
        if self.authority_error:
            payload["authority_error"] = self.authority_error
        return payload


class AuthorityError(AuthenticationError):
    """The identity authority refused a request.

    ``error`` carries the authority's own error code (``invalid_client``,
    ``unauthorized_client`` ...) so callers can branch on it.
    """

    error_code = "authority_rejected"

    def __init__(
        self,
        error: str,
        description: str | None = None,
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(description or error)
        self.error = error
        self.description = description
        self.status_code = status_code

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": self.error_code,
            "authority_error": self.error,
            "status_code": self.status_code,
        }


class InvalidGrantError(AuthorityError):
    """Authorization code, refresh token or assertion was rejected."""

    error_code = "invalid_grant"


class AuthorityUnavailableError(AuthorityError):
    """The authority could not be reached or returned an unreadable reply."""

    error_code = "authority_unavailable"


class DirectoryLookupError(AuthenticationError):
    """The directory could not list the subject's roles and groups."""

    error_code = "directory_unavailable"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StateValidationError(AuthenticationError):
    """Callback ``state`` was malformed, tampered with or did not match."""

    error_code = "state_validation_failed"


class NotAuthorizedError(AuthenticationError):
    """The subject has no relationship / directory role that grants access."""

    error_code = "not_authorized"

    def __init__(self, *, tenant_id: str | None = None, message: str | None = None) -> None:
        super().__init__(message or "No business relationship exists for this account.")
        self.tenant_id = tenant_id


# --------------------------------------------------------------------------- #
# Argument guards                                                             #
# --------------------------------------------------------------------------- #
def assert_not_empty(value: str | None, name: str) -> None:
    """Raise :class:`ArgumentInvalidError` when *value* is empty or blank."""
    if value is None or not str(value).strip():
        raise ArgumentInvalidError(name)


def assert_not_none(value: object, name: str) -> None:
    if value is None:
        raise ArgumentInvalidError(name, f"{name} cannot be None")
