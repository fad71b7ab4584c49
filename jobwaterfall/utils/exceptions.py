"""
Custom exception classes for the job acquisition pipeline.

Provides a hierarchy of exceptions for different failure scenarios
with appropriate context and debugging information. Upstream failures
are split into transient (retryable) and fatal (not retried) branches
so the retry and circuit-breaking layers can classify them by type.
"""

from typing import Any, Optional


def _preview(text: Optional[str], limit: int = 200) -> Optional[str]:
    """Truncate text for error details."""
    if not text:
        return text
    return text[:limit] + "..." if len(text) > limit else text


class AcquisitionError(Exception):
    """Base exception for all pipeline errors.

    All custom exceptions inherit from this class, allowing
    catch-all error handling when needed.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
    """

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class BudgetExhaustedError(AcquisitionError):
    """Raised when the paid request budget for a tier is exhausted.

    Attributes:
        tier: Paid tier that was refused
        total_cost: Spend so far (USD)
        budget_limit: Configured budget (USD)
    """

    def __init__(
        self,
        message: str = "Request budget exhausted",
        tier: Optional[str] = None,
        total_cost: Optional[float] = None,
        budget_limit: Optional[float] = None,
        **kwargs
    ):
        details = {
            "tier": tier,
            "total_cost": total_cost,
            "budget_limit": budget_limit,
            **kwargs
        }
        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.tier = tier
        self.total_cost = total_cost
        self.budget_limit = budget_limit


class CacheError(AcquisitionError):
    """Raised when cache or store operations fail.

    Attributes:
        operation: The operation that failed (read/write/delete/clear)
        cache_key: The key involved in the failed operation
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        cache_key: Optional[str] = None,
        **kwargs
    ):
        details = {
            "operation": operation,
            "cache_key": cache_key,
            **kwargs
        }
        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.operation = operation
        self.cache_key = cache_key


class UpstreamError(AcquisitionError):
    """Raised when a call to an external source fails.

    Attributes:
        endpoint: Endpoint or source name that failed
        status_code: HTTP status code (if applicable)
        response_body: Response content (if available)
    """

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        **kwargs
    ):
        details = {
            "endpoint": endpoint,
            "status_code": status_code,
            **kwargs
        }
        if response_body:
            details["response_preview"] = _preview(response_body)

        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code
        self.response_body = response_body


class TransientUpstreamError(UpstreamError):
    """Network failure, timeout, 5xx or rate limit. Retried locally."""


class FatalUpstreamError(UpstreamError):
    """Authentication failure or malformed request. Never retried."""


class RateLimitError(TransientUpstreamError):
    """Raised when an upstream rate limit is exceeded (HTTP 429).

    Attributes:
        retry_after: Seconds to wait before retrying (if provided by upstream)
    """

    def __init__(
        self,
        message: str = "Upstream rate limit exceeded",
        retry_after: Optional[float] = None,
        **kwargs
    ):
        if retry_after is not None:
            kwargs["retry_after"] = retry_after
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class ServerError(TransientUpstreamError):
    """Raised when the upstream returns a 5xx response."""


class UpstreamTimeoutError(TransientUpstreamError):
    """Raised when a single attempt exceeds its timeout.

    Attributes:
        timeout: Timeout that elapsed (seconds)
    """

    def __init__(self, message: str = "Upstream call timed out", timeout: Optional[float] = None, **kwargs):
        if timeout is not None:
            kwargs["timeout"] = timeout
        super().__init__(message, **kwargs)
        self.timeout = timeout


class AuthError(FatalUpstreamError):
    """Raised when authentication fails (401/403)."""


def classify_status(
    status: int,
    endpoint: Optional[str] = None,
    response_body: Optional[str] = None,
    retry_after: Optional[float] = None,
) -> UpstreamError:
    """
    Build the typed error for a non-success HTTP status.

    Args:
        status: HTTP status code (>= 400)
        endpoint: Endpoint that answered
        response_body: Body text of the response
        retry_after: Parsed Retry-After header, if any

    Returns:
        Error instance to raise

    Example:
        >>> isinstance(classify_status(429), TransientUpstreamError)
        True
        >>> isinstance(classify_status(403), FatalUpstreamError)
        True
    """
    context = {"endpoint": endpoint, "status_code": status, "response_body": response_body}

    if status in (401, 403):
        return AuthError(f"Authentication failed: {status}", **context)
    if status == 429:
        return RateLimitError("Rate limit exceeded", retry_after=retry_after, **context)
    if status == 408:
        return UpstreamTimeoutError(f"Upstream request timeout: {status}", **context)
    if status >= 500:
        return ServerError(f"Server error: {status}", **context)
    return FatalUpstreamError(f"Request rejected: {status}", **context)


class CircuitOpenError(AcquisitionError):
    """Raised when a circuit is open and the call was not attempted.

    Attributes:
        key: Operation key with the open circuit
        failure_count: Failures recorded against the key
        retry_in: Seconds until a probe will be allowed
    """

    def __init__(
        self,
        message: str = "Circuit breaker is open",
        key: Optional[str] = None,
        failure_count: Optional[int] = None,
        retry_in: Optional[float] = None,
        **kwargs
    ):
        details = {
            "key": key,
            "failure_count": failure_count,
            "retry_in": retry_in,
            **kwargs
        }
        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.key = key
        self.failure_count = failure_count
        self.retry_in = retry_in


class RetryExhaustedError(AcquisitionError):
    """Raised when every attempt of a retried operation failed.

    The underlying cause is chained as ``__cause__`` and kept in
    ``last_error``.

    Attributes:
        operation: Name of the retried operation
        attempts: Number of attempts made
        last_error: Error raised by the final attempt
    """

    def __init__(
        self,
        operation: str,
        attempts: int,
        last_error: Optional[BaseException] = None,
    ):
        details = {"operation": operation, "attempts": attempts}
        if last_error is not None:
            details["last_error"] = f"{type(last_error).__name__}: {last_error}"
        super().__init__(f"Operation '{operation}' failed after {attempts} attempts", details)
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


class DecodeError(AcquisitionError):
    """Raised when no decoding strategy produced a structured value.

    Attributes:
        attempts: Strategy names tried, in order
        raw_preview: Bounded copy of the raw text
    """

    def __init__(
        self,
        message: str = "Failed to decode structured response",
        attempts: Optional[list[str]] = None,
        raw_preview: Optional[str] = None,
        **kwargs
    ):
        details = {
            "attempts": ",".join(attempts or []),
            **kwargs
        }
        if raw_preview:
            details["raw_preview"] = _preview(raw_preview)
        super().__init__(message, details)
        self.attempts = list(attempts or [])
        self.raw_preview = raw_preview


class ValidationError(AcquisitionError):
    """Raised when a decoded record does not conform to its shape.

    Attributes:
        shape: Registered shape name
        violations: Every (path, reason) pair that failed
    """

    def __init__(self, shape: str, violations: list[tuple[str, str]]):
        summary = "; ".join(f"{path}: {reason}" for path, reason in violations)
        super().__init__(
            f"Record does not match shape '{shape}'",
            {"shape": shape, "violations": summary},
        )
        self.shape = shape
        self.violations = list(violations)


class SelectorMissingError(AcquisitionError):
    """Raised when a job-board page lacks the required card fields.

    Attributes:
        source: Board name
        url: Page URL
        selectors: Required selectors that matched nothing usable
    """

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        url: Optional[str] = None,
        selectors: Optional[list[str]] = None,
        **kwargs
    ):
        details = {
            "source": source,
            "url": url,
            "selectors": ",".join(selectors) if selectors else None,
            **kwargs
        }
        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.source = source
        self.url = url
        self.selectors = list(selectors or [])


class AcquisitionFailedError(AcquisitionError):
    """Raised when every tier failed or returned zero records.

    Attributes:
        tier_failures: Tier name mapped to the failure summary
        timed_out: Whether the overall deadline elapsed
    """

    def __init__(
        self,
        message: str = "All acquisition tiers failed",
        tier_failures: Optional[dict[str, str]] = None,
        timed_out: bool = False,
    ):
        details: dict[str, Any] = {"timed_out": timed_out}
        if tier_failures:
            details["tiers"] = ",".join(tier_failures)
        super().__init__(message, details)
        self.tier_failures = dict(tier_failures or {})
        self.timed_out = timed_out


class NormalizationError(AcquisitionError):
    """Raised when a raw upstream payload cannot be turned into a record.

    Attributes:
        source: Upstream the payload came from
        field: Specific field that caused the error
        value: Value that failed normalization
    """

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        details = {
            "source": source,
            "field": field,
            **kwargs
        }
        if value is not None:
            details["value"] = _preview(str(value), 100)

        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.source = source
        self.field = field
        self.value = value
