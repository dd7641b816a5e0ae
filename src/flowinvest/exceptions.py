"""
Error taxonomy for analysis requests.

Every error is scoped to one request; the web layer renders them as
``{"error", "details"}`` JSON bodies using ``status_code``.
"""

from __future__ import annotations

RAW_PREVIEW_CHARS = 500


class FlowInvestError(Exception):
    """Base exception for request-scoped failures."""

    status_code = 500

    def __init__(self, message: str, details: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code


class RequestError(FlowInvestError):
    """The inbound request is missing data or carries an unusable upload."""

    status_code = 400


class ExtractionError(FlowInvestError):
    """Raw model text could not be coerced to JSON after cleanup."""

    def __init__(self, message: str, raw_text: str | None = None, details: str | None = None):
        super().__init__(message, details=details)
        raw_text = raw_text or ""
        self.raw_text = raw_text[:RAW_PREVIEW_CHARS]


class ValidationExhausted(FlowInvestError):
    """The constrained-output retry loop ended without a usable object."""

    def __init__(self, attempts: int, cause: Exception | None = None):
        details = str(cause) if cause else None
        super().__init__(f"Model output never matched the required format after {attempts} attempts", details)
        self.attempts = attempts
        self.cause = cause


UPSTREAM_MESSAGES = {
    "rate_limit": ("Rate Limit Exceeded", "You have exceeded your API rate limit. Please try again later."),
    "invalid_key": ("Invalid API Key", "The configured AI provider key is missing or invalid."),
    "model_not_found": ("Model not found", "The requested AI model is not available."),
    "timeout": ("AI service timed out", "The AI provider did not answer in time. Please try again."),
    "network": ("AI service unreachable", "Could not connect to the AI provider."),
    "upstream": ("AI service error", "The AI provider returned an error."),
}


class UpstreamError(FlowInvestError):
    """The LLM provider call itself failed."""

    def __init__(self, kind: str = "upstream", details: str | None = None):
        if kind not in UPSTREAM_MESSAGES:
            kind = "upstream"
        message, user_details = UPSTREAM_MESSAGES[kind]
        super().__init__(message, details=user_details, status_code=429 if kind == "rate_limit" else 500)
        self.kind = kind
        self.provider_details = details


class PersistenceUnavailable(FlowInvestError):
    """A persistence route was called without a configured database."""

    status_code = 503
