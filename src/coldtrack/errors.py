"""
Exceptions raised by coldtrack.
"""


class ColdtrackError(Exception):
    """Base exception for all coldtrack errors."""
    pass


class NotFoundError(ColdtrackError):
    """Raised when a function or account connection does not exist."""
    pass


class ConfigurationError(ColdtrackError):
    """Raised when region or threshold configuration is missing or invalid."""
    pass


class AuthorizationError(ColdtrackError):
    """Raised when the cross-account role rejects AssumeRole."""
    pass


class SubmissionError(ColdtrackError):
    """Raised when StartQuery does not return a query id."""
    pass


class ThrottleError(ColdtrackError):
    """
    Throttling signal for logs clients that are not botocore clients.

    boto3 reports throttling as a ClientError; a substitute client handed to
    InsightsQueryClient raises this instead. Either is retried inside the
    poll loop and never escapes it as long as the timeout allows.
    """
    pass


class TerminalQueryError(ColdtrackError):
    """Raised when a Logs Insights query ends Failed or Cancelled."""

    def __init__(self, status: str, query_id: str | None = None):
        self.status = status
        self.query_id = query_id
        super().__init__(f"Logs Insights query {status}")


class GatewayError(ColdtrackError):
    """Raised for any transport failure crossing the refresh boundary."""

    def __init__(self, message: str, request_id: str | None = None):
        self.message = message
        self.request_id = request_id
        super().__init__(message)

    def __str__(self) -> str:
        if self.request_id:
            return f"{self.message} (request id {self.request_id})"
        return self.message
