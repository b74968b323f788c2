class QuotameterError(Exception):
    """Base exception for quotameter."""


class SessionNotFoundError(QuotameterError):
    """Raised when a session has no stored messages at all."""

    def __init__(self, session_id: "str", checked_path: "str") -> "None":
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id
        self.checked_path = checked_path


class RequestTimeoutError(QuotameterError):
    """Raised when an outbound call exceeds its time budget."""

    def __init__(self, url: "str", timeout_seconds: "float") -> "None":
        super().__init__(f"Request timeout after {timeout_seconds:g}s: {url}")
        self.url = url
        self.timeout_seconds = timeout_seconds


class TokenRefreshError(QuotameterError):
    """Raised when an access token could not be refreshed."""


class TokenRevokedError(TokenRefreshError):
    """Raised when the provider answers invalid_grant for a refresh token."""


class QuotaFetchError(QuotameterError):
    """Raised when the quota endpoint answers with an error status."""

    def __init__(self, status_code: "int", message: "str" = "") -> "None":
        super().__init__(message or f"Quota API error: {status_code}")
        self.status_code = status_code


class QuotaAuthError(QuotaFetchError):
    """Raised on 401/403 from the quota endpoint."""

    def __init__(self, status_code: "int") -> "None":
        super().__init__(status_code, f"Quota API auth error: {status_code}")
