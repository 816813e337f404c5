"""Error taxonomy shared by the persistence, provider and webhook layers"""

from typing import Optional


class LexDeskError(Exception):
    """Base error carrying a short machine-readable reason"""
    reason = "error"
    status_code = 500

    def __init__(self, message: str = "", reason: Optional[str] = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        if reason:
            self.reason = reason

    def to_dict(self) -> dict:
        return {"error": self.message, "reason": self.reason}


class NotFound(LexDeskError):
    """Tenant, tracking or request is absent"""
    reason = "not_found"
    status_code = 404


class ConstraintViolation(LexDeskError):
    """Uniqueness or foreign-key breach"""
    reason = "constraint_violation"
    status_code = 409


class QuotaExceeded(LexDeskError):
    """Plan allowance used up and the plan has no overage fee"""
    reason = "quota_exceeded"
    status_code = 429


class UpstreamFailure(LexDeskError):
    """Non-2xx, unreachable or malformed response from the provider"""
    reason = "upstream_failure"
    status_code = 502

    def __init__(self, message: str = "", status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.upstream_status = status_code
        self.body = body

    @property
    def transient(self) -> bool:
        """Network errors, 5xx and 429 are worth retrying; other 4xx are not"""
        if self.upstream_status is None:
            return True
        return self.upstream_status >= 500 or self.upstream_status == 429


class ProviderTimeout(LexDeskError):
    """Completion polling window elapsed without a terminal status"""
    reason = "timeout"
    status_code = 504


class ProviderNotConfigured(LexDeskError):
    """Neither the tenant nor the deployment has a provider API key"""
    reason = "provider_not_configured"
    status_code = 503


class InvalidWebhook(LexDeskError):
    """Inbound callback is missing its tenant or correlation key"""
    reason = "invalid_payload"
    status_code = 400
