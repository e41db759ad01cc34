"""Failure taxonomy shared by the credential store, API client and poller."""

import enum


class UsageBarError(Exception):
    pass


class NoCredentials(UsageBarError):
    def __init__(self):
        super().__init__("No credentials configured")


class Unauthorized(UsageBarError):
    def __init__(self, status_code: int = 401):
        self.status_code = status_code
        super().__init__("Session expired - please sign in again")


class NetworkFailure(UsageBarError):
    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"Network error: {cause}")


class DecodeFailure(UsageBarError):
    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"Failed to parse response: {cause}")


class HTTPStatusError(UsageBarError):
    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"Unexpected response (status: {status_code})")


class CryptoError(UsageBarError):
    pass


class ExtractionExhausted(UsageBarError):
    def __init__(self, attempts: int, reason: str = ""):
        self.attempts = attempts
        msg = reason or f"Could not read the session after {attempts} attempts"
        super().__init__(msg)


class ErrorKind(enum.Enum):
    NO_CREDENTIALS = "no_credentials"
    UNAUTHORIZED = "unauthorized"
    NETWORK = "network"
    DECODE = "decode"
    HTTP_STATUS = "http_status"
    UNKNOWN = "unknown"

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorKind":
        for exc_type, kind in _KINDS:
            if isinstance(exc, exc_type):
                return kind
        return cls.UNKNOWN


_KINDS = (
    (NoCredentials, ErrorKind.NO_CREDENTIALS),
    (Unauthorized, ErrorKind.UNAUTHORIZED),
    (NetworkFailure, ErrorKind.NETWORK),
    (DecodeFailure, ErrorKind.DECODE),
    (HTTPStatusError, ErrorKind.HTTP_STATUS),
)
