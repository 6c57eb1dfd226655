"""Error taxonomy for assistant runs, with retry logic for model calls."""

import asyncio
import random
import re
from typing import Optional, Type, Tuple, Callable, Any
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories of errors for better handling."""
    CONFIGURATION = "configuration"  # Missing credentials or settings
    INPUT = "input"  # Missing/invalid request fields
    NETWORK = "network"  # Connection issues, timeouts
    API_ERROR = "api_error"  # API returned error response
    AUTH_ERROR = "auth_error"  # Authentication/authorization failures
    RATE_LIMIT = "rate_limit"  # Rate limit exceeded
    MODEL_OUTPUT = "model_output"  # Model answered with something unusable
    UNKNOWN = "unknown"  # Unknown errors


class AssistantError(Exception):
    """Base exception for categorized errors."""
    def __init__(self, message: str, category: ErrorCategory, retryable: bool = False, retry_after: Optional[float] = None):
        self.message = message
        self.category = category
        self.retryable = retryable
        self.retry_after = retry_after
        super().__init__(message)


class ConfigurationError(AssistantError):
    """Fatal configuration problem (e.g. missing model credentials)."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.CONFIGURATION, retryable=False)


class InputError(AssistantError):
    """Request is missing required fields or carries invalid values."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.INPUT, retryable=False)


class NetworkError(AssistantError):
    """Network-related errors (connection, timeout)."""
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, ErrorCategory.NETWORK, retryable=True, retry_after=retry_after)


class APIError(AssistantError):
    """API returned an error response."""
    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False, retry_after: Optional[float] = None):
        self.status_code = status_code
        super().__init__(message, ErrorCategory.API_ERROR, retryable=retryable, retry_after=retry_after)


class AuthError(AssistantError):
    """Authentication/authorization errors."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.AUTH_ERROR, retryable=False)


class RateLimitError(AssistantError):
    """Rate limit exceeded."""
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, ErrorCategory.RATE_LIMIT, retryable=True, retry_after=retry_after)


class ModelOutputError(AssistantError):
    """Model returned malformed or unusable content."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.MODEL_OUTPUT, retryable=False)


def classify_error(error: Exception) -> Tuple[ErrorCategory, bool, Optional[float]]:
    """
    Classify an error into a category and determine if it's retryable.

    Args:
        error: The exception to classify

    Returns:
        Tuple of (category, retryable, retry_after_seconds)
    """
    if isinstance(error, AssistantError):
        return error.category, error.retryable, error.retry_after

    error_str = str(error).lower()
    error_type = type(error).__name__

    # Network errors
    if any(keyword in error_str for keyword in ['connection', 'timeout', 'network', 'dns', 'refused']):
        return ErrorCategory.NETWORK, True, None

    if error_type in ['ConnectionError', 'TimeoutError']:
        return ErrorCategory.NETWORK, True, None

    # Rate limit errors
    if 'rate limit' in error_str or '429' in error_str or 'too many requests' in error_str:
        retry_after = None
        match = re.search(r'retry[_-]after[:\s]+(\d+)', error_str, re.IGNORECASE)
        if match:
            retry_after = float(match.group(1))
        return ErrorCategory.RATE_LIMIT, True, retry_after

    # Auth errors
    if any(keyword in error_str for keyword in ['unauthorized', 'forbidden', '401', '403', 'authentication', 'authorization']):
        return ErrorCategory.AUTH_ERROR, False, None

    # API errors (non-retryable by default)
    if 'api' in error_str or 'http' in error_str:
        return ErrorCategory.API_ERROR, False, None

    return ErrorCategory.UNKNOWN, False, None


async def retry_with_backoff(
    func: Callable,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[Exception, int], None]] = None,
) -> Any:
    """
    Retry a function with exponential backoff.

    Only errors that ``classify_error`` reports as retryable are retried;
    everything else is raised immediately.

    Args:
        func: Async function to retry
        max_retries: Maximum number of retry attempts
        initial_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential backoff
        retryable_exceptions: Tuple of exception types to retry
        on_retry: Optional callback called on each retry (exception, attempt_number)

    Returns:
        Result of the function call

    Raises:
        Last exception if all retries fail
    """
    for attempt in range(max_retries + 1):
        try:
            return await func()
        except retryable_exceptions as e:
            category, retryable, retry_after = classify_error(e)

            if not retryable or attempt >= max_retries:
                raise

            if retry_after:
                delay = min(retry_after, max_delay)
            else:
                delay = min(initial_delay * (exponential_base ** attempt), max_delay)

            # Add jitter to avoid thundering herd
            delay += random.uniform(0, delay * 0.1)

            if on_retry:
                result = on_retry(e, attempt + 1)
                if asyncio.iscoroutine(result):
                    await result

            await asyncio.sleep(delay)


def wrap_llm_error(error: Exception, provider: str) -> AssistantError:
    """
    Wrap LLM API errors into our error types.

    Args:
        error: Original exception
        provider: LLM provider name

    Returns:
        AssistantError with appropriate category
    """
    if isinstance(error, AssistantError):
        return error

    error_str = str(error)
    error_lower = error_str.lower()

    # Check for rate limit
    if 'rate limit' in error_lower or '429' in error_str:
        retry_after = None
        if hasattr(error, 'response') and hasattr(error.response, 'headers'):
            retry_after_header = error.response.headers.get('retry-after')
            if retry_after_header:
                try:
                    retry_after = float(retry_after_header)
                except ValueError:
                    retry_after = None
        return RateLimitError(f"{provider} rate limit exceeded", retry_after=retry_after)

    # Check for auth errors
    if '401' in error_str or 'unauthorized' in error_lower or 'authentication' in error_lower:
        return AuthError(f"{provider} authentication failed: {error_str}")

    # Check for network errors
    if any(keyword in error_lower for keyword in ['connection', 'timeout', 'network']):
        return NetworkError(f"{provider} network error: {error_str}")

    # Check for API errors
    status_code = getattr(error, 'status_code', None)
    if isinstance(status_code, int):
        if status_code == 429:
            return RateLimitError(f"{provider} rate limit exceeded (429)")
        elif status_code in [401, 403]:
            return AuthError(f"{provider} auth error ({status_code})")
        elif status_code >= 500:
            # Server errors are retryable
            return APIError(f"{provider} server error ({status_code})", status_code=status_code, retryable=True)
        else:
            return APIError(f"{provider} API error ({status_code})", status_code=status_code, retryable=False)

    return APIError(f"{provider} error: {error_str}", retryable=False)
