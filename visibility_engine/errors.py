"""
Error taxonomy shared by the provider adapters and orchestrators.
"""

from enum import Enum
from typing import Optional


class ProviderErrorKind(str, Enum):
    AUTH_MISSING = "AUTH_MISSING"
    RATE_LIMITED = "RATE_LIMITED"
    TRANSIENT = "TRANSIENT"
    PERMANENT = "PERMANENT"
    PARSE_FAILURE = "PARSE_FAILURE"


class ProviderError(Exception):
    """Raised by a provider adapter when a model call does not produce an answer."""

    def __init__(
        self,
        kind: ProviderErrorKind,
        message: str,
        provider: Optional[str] = None,
        model_id: Optional[str] = None,
        status_code: Optional[int] = None,
        retry_after: Optional[int] = None,
        timed_out: bool = False,
        deprecated: bool = False,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.provider = provider
        self.model_id = model_id
        self.status_code = status_code
        self.retry_after = retry_after
        self.timed_out = timed_out
        self.deprecated = deprecated

    @property
    def retryable(self) -> bool:
        """Only transient failures are retried by the orchestrator."""
        return self.kind == ProviderErrorKind.TRANSIENT

    def __str__(self) -> str:
        prefix = f"{self.provider} " if self.provider else ""
        status = f" (HTTP {self.status_code})" if self.status_code else ""
        return f"{prefix}{self.kind.value}: {self.message}{status}"


class MissingAPIKeyError(ProviderError):
    """Raised when a provider has no credential configured."""

    def __init__(self, provider: str, env_var: str, model_id: Optional[str] = None):
        super().__init__(
            ProviderErrorKind.AUTH_MISSING,
            f"API key not configured ({env_var})",
            provider=provider,
            model_id=model_id,
        )


class InvalidURLError(ValueError):
    """Raised when the URL handed to a visibility run cannot be turned into a domain."""
    pass
