"""Custom exception types for domain and API layers."""


class AppError(Exception):
    """Base app exception."""


class ConfigurationError(AppError):
    """A required setting is missing."""


class ValidationError(AppError):
    """Malformed trigger or request input. Rejected before any run exists."""


class SignatureError(ValidationError):
    """Webhook signature did not verify."""


class PreconditionNotMet(AppError):
    """Nothing to do for this run. Ends the run as skipped, not failed."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class IntegrationError(AppError):
    """External integration call failure."""


class TransientUpstreamError(IntegrationError):
    """429 or 5xx from a dependency; retried inside the gateway client."""

    def __init__(self, status_code: int, target: str = ""):
        super().__init__(f"{target} returned {status_code}".strip())
        self.status_code = status_code


class PermanentUpstreamError(IntegrationError):
    """Non-2xx from a dependency that is not worth retrying."""

    def __init__(self, service: str, status_code: int, body: str = ""):
        super().__init__(f"{service} failed [{status_code}]: {body}")
        self.service = service
        self.status_code = status_code
        self.body = body
