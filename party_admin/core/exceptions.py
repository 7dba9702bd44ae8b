"""Custom exception classes for the party admin backend."""

from fastapi import status


class PartyAdminError(Exception):
    """Base exception for Party Admin."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class ValidationError(PartyAdminError):
    """Raised when input validation fails."""
    pass


class AuthenticationError(PartyAdminError):
    """Raised when the caller cannot be authenticated."""

    status_code = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(PartyAdminError):
    """Raised when user lacks permission."""

    status_code = status.HTTP_403_FORBIDDEN


class ResourceNotFoundError(PartyAdminError):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ResourceConflictError(PartyAdminError):
    """Raised when a resource already exists."""

    status_code = status.HTTP_409_CONFLICT


class ExternalDependencyError(PartyAdminError):
    """Raised when the identity provider or the database call fails.

    The message is shown to callers, so it must stay generic. Put the
    underlying cause in the log, not here.
    """

    status_code = status.HTTP_502_BAD_GATEWAY


class InconsistentStateError(ExternalDependencyError):
    """Raised when identity provider and directory no longer agree."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
