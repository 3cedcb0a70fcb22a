"""
Integration Error Handler

Wraps calls into the tracking system with classification, retry with
exponential backoff, server-driven rate-limit waits and per-key
concurrency control.

All delays are in milliseconds.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar, Union

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from ..utils.logger import setup_logger
from ..workflow.progress_config import ProgressConfigHolder, ProgressTrackerConfig

logger = setup_logger(__name__)

T = TypeVar("T")

DEFAULT_INITIAL_DELAY_MS = 1000
DEFAULT_RETRY_AFTER_MS = 60000
JITTER_RATIO = 0.1
DEFAULT_RATE_LIMIT = 100
EPOCH_MS_THRESHOLD = 10 ** 11

NETWORK_ERROR_CODES = {'ECONNREFUSED', 'ENOTFOUND', 'ETIMEDOUT', 'ECONNRESET'}
TIMEOUT_ERROR_CODES = {'ETIMEDOUT', 'ESOCKETTIMEDOUT'}


class IntegrationErrorType(str, Enum):
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    TIMEOUT = "timeout"
    INVALID_REQUEST = "invalid_request"
    UNAUTHORIZED = "unauthorized"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


NON_RETRYABLE_TYPES = {IntegrationErrorType.INVALID_REQUEST, IntegrationErrorType.UNAUTHORIZED}


class IntegrationError(Exception):
    """Classified failure of a tracking-system call."""

    def __init__(
        self,
        message: str,
        error_type: IntegrationErrorType,
        context: str,
        original_error: Optional[BaseException] = None,
        retry_after: Optional[int] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.context = context
        self.original_error = original_error
        self.retry_after = retry_after

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(type={self.error_type.value}, context={self.context}, message={self.message})"


@dataclass
class RetryResult(Generic[T]):
    success: bool
    attempts: int
    total_delay: float
    result: Optional[T] = None
    error: Optional[IntegrationError] = None


@dataclass
class RateLimitInfo:
    remaining: int
    reset: datetime
    limit: int


# ============================================
# ERROR INSPECTION
# ============================================

def _status_of(error: BaseException) -> Optional[int]:
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None) if response is not None else None
    return value if isinstance(value, int) else None


def _code_of(error: BaseException) -> str:
    code = getattr(error, "code", None)
    return str(code).upper() if code is not None else ""


def _headers_of(error: BaseException) -> Dict[str, str]:
    headers = getattr(error, "headers", None)
    if not headers:
        response = getattr(error, "response", None)
        headers = getattr(response, "headers", None) if response is not None else None
    return {str(k).lower(): str(v) for k, v in dict(headers or {}).items()}


def is_rate_limit_error(error: BaseException) -> bool:
    return (
        _status_of(error) == 429
        or _code_of(error) == "RATE_LIMIT_EXCEEDED"
        or "rate limit" in str(error).lower()
    )


def is_network_error(error: BaseException) -> bool:
    return (
        _code_of(error) in NETWORK_ERROR_CODES
        or isinstance(error, ConnectionError)
        or "network" in str(error).lower()
    )


def is_timeout_error(error: BaseException) -> bool:
    return (
        _code_of(error) in TIMEOUT_ERROR_CODES
        or isinstance(error, (TimeoutError, asyncio.TimeoutError))
        or "timeout" in str(error).lower()
    )


def extract_retry_after(error: BaseException) -> int:
    """Server-requested wait in ms, from the Retry-After header or a retry_after field."""
    header = _headers_of(error).get("retry-after")
    if header:
        try:
            return int(float(header) * 1000)
        except ValueError:
            logger.debug(f"[RETRY] Unparseable Retry-After header: {header}")
    retry_after = getattr(error, "retry_after", None)
    if retry_after is None:
        retry_after = getattr(error, "retryAfter", None)
    if retry_after:
        return int(retry_after * 1000)
    return DEFAULT_RETRY_AFTER_MS


def classify_error(error: BaseException, context: str) -> IntegrationError:
    """Map any exception onto the integration error taxonomy."""
    if isinstance(error, IntegrationError):
        return error

    status = _status_of(error)

    if is_rate_limit_error(error):
        return IntegrationError("Rate limit exceeded", IntegrationErrorType.RATE_LIMIT, context, error,
                                extract_retry_after(error))
    if is_network_error(error):
        return IntegrationError("Network error occurred", IntegrationErrorType.NETWORK, context, error)
    if is_timeout_error(error):
        return IntegrationError("Request timed out", IntegrationErrorType.TIMEOUT, context, error)
    if status in (401, 403):
        return IntegrationError("Authorization failed", IntegrationErrorType.UNAUTHORIZED, context, error)
    if status in (400, 422):
        return IntegrationError("Invalid request", IntegrationErrorType.INVALID_REQUEST, context, error)
    if status is not None and status >= 500:
        return IntegrationError("Server error", IntegrationErrorType.SERVER_ERROR, context, error)

    return IntegrationError(str(error) or "Unknown error", IntegrationErrorType.UNKNOWN, context, error)


# ============================================
# HANDLER
# ============================================

class IntegrationErrorHandler:
    """
    Retry and concurrency policy for tracking-system calls.

    Usage:
        handler = IntegrationErrorHandler(config_holder)
        result = await handler.execute_with_retry(lambda: client.get_issue(id), "get_issue")
    """

    def __init__(self, config: Union[ProgressConfigHolder, ProgressTrackerConfig, None] = None):
        if isinstance(config, ProgressConfigHolder):
            self._holder = config
        else:
            self._holder = ProgressConfigHolder(config)
        self._rate_limits: Dict[str, RateLimitInfo] = {}
        self._in_flight: Dict[str, asyncio.Task] = {}

    @property
    def config(self) -> ProgressTrackerConfig:
        return self._holder.current

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        context: str,
        max_attempts: Optional[int] = None,
        initial_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        on_retry: Optional[Callable[[int, float], None]] = None
    ) -> RetryResult[T]:
        """
        Run an async operation under the retry policy.

        The policy is read from the live configuration on every call.

        Args:
            operation: Zero-argument callable returning an awaitable
            context: Label used for logging and rate-limit bookkeeping
            max_attempts: Defaults to integration.linear_api_retry_attempts
            initial_delay: First backoff delay in ms
            max_delay: Cap for any single delay in ms
            on_retry: Called with (attempt, delay) before each wait

        Returns:
            RetryResult; failures are reported, never raised
        """
        integration = self.config.integration
        if max_attempts is None:
            max_attempts = integration.linear_api_retry_attempts
        max_attempts = max(max_attempts, 1)
        if initial_delay is None:
            initial_delay = DEFAULT_INITIAL_DELAY_MS
        if max_delay is None:
            max_delay = integration.max_backoff_delay

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            retry=retry_if_exception(lambda e: self._is_retryable(e, context)),
            wait=self._backoff(context, initial_delay, max_delay),
            before_sleep=self._before_sleep(context, max_attempts, on_retry),
            sleep=_sleep,
            reraise=True,
        )

        state: Optional[RetryCallState] = None
        try:
            async for attempt in retrying:
                state = attempt.retry_state
                with attempt:
                    await self._wait_for_rate_limit(context)
                    try:
                        result = await operation()
                    except Exception as e:
                        self._record_rate_limit(context, e)
                        raise
            return RetryResult(success=True, attempts=state.attempt_number,
                               total_delay=_idle_ms(state), result=result)
        except Exception as e:
            attempts = state.attempt_number if state else 1
            total_delay = _idle_ms(state)
            error = classify_error(e, context)

            if error.error_type in NON_RETRYABLE_TYPES:
                logger.warning(f"[RETRY] {context}: non-retryable {error.error_type.value} error: {error.message}")
                return RetryResult(success=False, attempts=attempts, total_delay=total_delay, error=error)

            final_error = IntegrationError(
                f"Operation failed after {attempts} attempts: {e}",
                IntegrationErrorType.UNKNOWN,
                context,
                e,
            )
            logger.error(f"[RETRY] {context}: {final_error.message}")
            return RetryResult(success=False, attempts=attempts, total_delay=total_delay, error=final_error)

    @staticmethod
    def _is_retryable(error: BaseException, context: str) -> bool:
        # CancelledError and other BaseExceptions propagate untouched
        if not isinstance(error, Exception):
            return False
        return classify_error(error, context).error_type not in NON_RETRYABLE_TYPES

    def _backoff(self, context: str, initial_delay: float, max_delay: float) -> Callable[[RetryCallState], float]:
        """tenacity wait in seconds, computed in ms by calculate_delay."""
        def wait(retry_state: RetryCallState) -> float:
            error = classify_error(retry_state.outcome.exception(), context)
            return self.calculate_delay(error, retry_state, initial_delay, max_delay) / 1000
        return wait

    def _before_sleep(
        self,
        context: str,
        max_attempts: int,
        on_retry: Optional[Callable[[int, float], None]]
    ) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            error = classify_error(retry_state.outcome.exception(), context)
            delay = retry_state.next_action.sleep * 1000
            logger.warning(
                f"[RETRY] {context}: attempt {retry_state.attempt_number}/{max_attempts} failed "
                f"({error.error_type.value}: {error.message}), retrying in {delay:.0f}ms"
            )
            if on_retry:
                on_retry(retry_state.attempt_number, delay)
        return before_sleep

    def calculate_delay(
        self,
        error: IntegrationError,
        retry_state: RetryCallState,
        initial_delay: float,
        max_delay: float
    ) -> float:
        """Server-provided wait for rate limits, jittered exponential backoff otherwise (ms)."""
        if error.error_type == IntegrationErrorType.RATE_LIMIT and error.retry_after:
            return min(error.retry_after, max_delay)

        exponential = wait_exponential(
            multiplier=initial_delay,
            exp_base=self.config.integration.rate_limit_backoff_multiplier,
            max=max_delay,
        )(retry_state)
        jitter = wait_random(0, JITTER_RATIO * exponential)(retry_state)
        return min(exponential + jitter, max_delay)

    async def execute_with_concurrency_control(
        self,
        key: str,
        operation: Callable[[], Awaitable[T]],
        context: str
    ) -> T:
        """
        Serialize operations sharing a key under the configured strategy.

        merge: wait for the in-flight operation, then run for fresh data
        latest: stop tracking the in-flight operation and run
        conflict: reject while one is in flight

        Raises:
            IntegrationError: strategy is "conflict" and the key is busy
        """
        strategy = self.config.integration.concurrent_update_strategy

        existing = self._in_flight.get(key)
        if existing is not None:
            if strategy == "conflict":
                raise IntegrationError(
                    "Concurrent operation detected",
                    IntegrationErrorType.INVALID_REQUEST,
                    context,
                )
            if strategy == "latest":
                logger.debug(f"[RETRY] {context}: superseding in-flight operation for {key}")
                self._in_flight.pop(key, None)
            else:
                while existing is not None:
                    logger.debug(f"[RETRY] {context}: waiting for in-flight operation on {key}")
                    await asyncio.wait([existing])
                    existing = self._in_flight.get(key)

        # No await between the check above and this insert
        task = asyncio.create_task(operation())
        self._in_flight[key] = task
        try:
            return await task
        finally:
            if self._in_flight.get(key) is task:
                del self._in_flight[key]

    async def _wait_for_rate_limit(self, context: str) -> None:
        info = self._rate_limits.get(context)
        if info is None or info.remaining > 0:
            return
        wait_seconds = (info.reset - datetime.now(timezone.utc)).total_seconds()
        if wait_seconds > 0:
            logger.warning(f"[RETRY] {context}: rate limit reached, waiting {wait_seconds:.1f}s until {info.reset}")
            await asyncio.sleep(wait_seconds)

    def _record_rate_limit(self, context: str, error: BaseException) -> None:
        headers = _headers_of(error)
        if any(key.startswith("x-ratelimit-") for key in headers):
            self.update_rate_limit_info(context, headers)

    def update_rate_limit_info(self, context: str, headers: Dict[str, Any]) -> RateLimitInfo:
        """
        Record X-RateLimit-* headers for a context.

        Linear's X-RateLimit-Requests-* names are accepted too; a reset given
        in epoch milliseconds is converted.
        """
        headers = {str(k).lower(): v for k, v in (headers or {}).items()}

        def header(name: str, default: int) -> int:
            value = headers.get(f"x-ratelimit-{name}", headers.get(f"x-ratelimit-requests-{name}"))
            return int(float(value)) if value is not None else default

        remaining = header("remaining", DEFAULT_RATE_LIMIT)
        limit = header("limit", DEFAULT_RATE_LIMIT)
        reset_value = header("reset", 0)
        if reset_value > EPOCH_MS_THRESHOLD:
            reset_value = reset_value / 1000
        reset = datetime.fromtimestamp(reset_value, tz=timezone.utc)

        info = RateLimitInfo(remaining=remaining, reset=reset, limit=limit)
        self._rate_limits[context] = info

        if remaining < limit * 0.1:
            logger.warning(f"[RETRY] {context}: rate limit approaching ({remaining}/{limit} remaining)")
        return info

    def get_rate_limit_status(self, context: str) -> Optional[RateLimitInfo]:
        return self._rate_limits.get(context)

    def clear_rate_limit_info(self, context: Optional[str] = None) -> None:
        if context:
            self._rate_limits.pop(context, None)
        else:
            self._rate_limits.clear()


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


def _idle_ms(retry_state: Optional[RetryCallState]) -> float:
    return retry_state.idle_for * 1000 if retry_state is not None else 0.0
