# src/invokta_session/errors.py

from typing import Optional

SERVICE_UNAVAILABLE_MESSAGE = "Backend server is unavailable. Please try again later."


class SessionError(Exception):
    """Base class for everything the session layer raises."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class MalformedResponseError(SessionError):
    """The server answered, but not with the envelope shape we expect."""


class AuthenticationError(SessionError):
    """Login, registration or federated login was refused."""


class FederatedReplayError(AuthenticationError):
    """A federated login payload that was already consumed arrived again."""


class FatalSessionError(SessionError):
    """The session cannot continue; the user has to sign in again."""


class NoRefreshTokenError(FatalSessionError):
    def __init__(self, message: str = "No refresh token available"):
        super().__init__(message)


class RenewalRejectedError(FatalSessionError):
    def __init__(self, message: str = "Token refresh failed", status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ServiceUnavailableError(SessionError):
    """The transport could not reach the billing API."""

    def __init__(self, message: str = SERVICE_UNAVAILABLE_MESSAGE):
        super().__init__(message)


class BackendUnavailableError(ServiceUnavailableError):
    """The liveness probe at start-up could not reach the billing API."""


class ApiError(SessionError):
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(message)

    def __repr__(self) -> str:
        return f"ApiError(status_code={self.status_code}, message={self.message!r})"
