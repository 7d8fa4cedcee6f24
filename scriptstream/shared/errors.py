"""Exception hierarchy for the synchronization layer.

HTTP failures split into "no response at all" (NetworkError, with the
timeout subtype) and "a well-formed HTTP error" (ApiError). Socket failures
surface as SocketConnectionError. MalformedPayloadError never leaves the
session's receive loop.
"""

USER_MESSAGES = {
    400: "The request was invalid. Please check your input and try again.",
    401: "Your session has expired. Please log in again.",
    403: "You do not have permission to perform this action.",
    404: "The requested resource could not be found.",
    408: "The request timed out. Please try again.",
    409: "This action conflicts with the current state. Please refresh and retry.",
    422: "Some of the submitted data is invalid.",
    429: "Too many requests. Please wait a moment and retry.",
}

SERVER_ERROR_MESSAGE = "Server error. Please try again later."
NETWORK_ERROR_MESSAGE = "Network error. Check your connection and try again."
CONNECTION_FAILED_MESSAGE = "Connection failed, please retry."


class ScriptStreamError(Exception):
    """Base exception for all client errors."""


class NetworkError(ScriptStreamError):
    """No HTTP response was received (offline, DNS, refused, abrupt close)."""
    def __init__(self, message: str, endpoint: str | None = None):
        self.endpoint = endpoint
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return NETWORK_ERROR_MESSAGE


class RequestTimeoutError(NetworkError):
    """The per-attempt deadline expired before a response arrived."""
    def __init__(self, endpoint: str, timeout_s: float):
        self.timeout_s = timeout_s
        super().__init__(f"Request to {endpoint} timed out after {timeout_s}s", endpoint)


class ApiError(ScriptStreamError):
    """A well-formed HTTP error response."""
    def __init__(self, status_code: int, code: str, message: str):
        self.status_code = status_code
        self.code = code
        self.message = message
        super().__init__(f"HTTP {status_code} ({code}): {message}")

    @property
    def user_message(self) -> str:
        if self.status_code >= 500:
            return SERVER_ERROR_MESSAGE
        return USER_MESSAGES.get(self.status_code, self.message or "Something went wrong.")

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code == 401


class ResponseParseError(ScriptStreamError):
    """A successful response declared JSON but its body could not be parsed."""
    def __init__(self, endpoint: str, status_code: int, reason: str):
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(f"Could not parse JSON response from {endpoint} (HTTP {status_code}): {reason}")


class SocketConnectionError(ScriptStreamError):
    """Handshake failure, an operation on a closed socket, or an exhausted reconnect budget."""
    def __init__(self, message: str, attempts: int = 0):
        self.attempts = attempts
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return CONNECTION_FAILED_MESSAGE


class MalformedPayloadError(ScriptStreamError):
    """A server message that could not be decoded or validated."""
    def __init__(self, event: str, reason: str):
        self.event = event
        self.reason = reason
        super().__init__(f"Malformed '{event}' payload: {reason}")


class InvalidTransitionError(ScriptStreamError):
    """A connection state change that the transition table does not allow."""
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Invalid connection transition {current} -> {target}")
