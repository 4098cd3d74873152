"""
Retry strategies for the kcloud request pipeline.

Retries are implemented as response handlers that resubmit the same
Request object through the client, so the request's cumulative attempt and
error counters keep growing across the whole logical call. Each handler
tracks its own retry budget, independent of those counters.

Two strategies are provided:
    - DefaultRetryResponseHandler: retries HTTP 429 with a fixed wait and a
      fixed maximum number of retries.
    - ConfigurableRetryResponseHandler: retries whatever a predicate over
      (response, error) accepts, with a custom budget and wait schedule.

Example:
    >>> from kcloud import BaseClient, ConfigurableRetryConfig, RetryStrategyConfig
    >>> from kcloud._retry import exponential_backoff, retry_on_status_codes
    >>> client = BaseClient(
    ...     token="...",
    ...     retry_requests=True,
    ...     retry_config=RetryStrategyConfig(
    ...         configurable_retry_config=ConfigurableRetryConfig(
    ...             retry_num=4,
    ...             interval=exponential_backoff(initial=0.5),
    ...             should_retry=retry_on_status_codes(429, 503),
    ...         ),
    ...     ),
    ... )
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, override

import requests

from kcloud._handlers import ResponseHandler, ResponseOrErrorHandler
from kcloud._utils import sleep_with_jitter

if TYPE_CHECKING:
    from kcloud._http import BaseClient, Request

logger = logging.getLogger(__name__)

TOO_MANY_REQUESTS = 429

DEFAULT_MAX_RETRIES = 5
DEFAULT_RETRY_INTERVAL = 0.5  # seconds

ShouldRetryFn = Callable[[requests.Response | None, Exception | None], bool]
IntervalFn = Callable[[int], float]


# =============================================================================
# Schedules and Predicates
# =============================================================================


def exponential_backoff(
    initial: float = 0.5,
    factor: float = 2.0,
    max_interval: float = 30.0,
) -> IntervalFn:
    """
    Build an exponential wait schedule.

    The returned callable maps the 1-based retry number to seconds:
    `min(initial * factor ** (retry_number - 1), max_interval)`.

    Example:
        >>> schedule = exponential_backoff(initial=0.5)
        >>> [schedule(n) for n in (1, 2, 3, 4)]
        [0.5, 1.0, 2.0, 4.0]
    """
    assert initial > 0, f"initial must be > 0, got {initial}"
    assert factor >= 1, f"factor must be >= 1, got {factor}"
    assert max_interval >= initial, "max_interval must be >= initial"

    def schedule(retry_number: int) -> float:
        return float(min(initial * factor ** (retry_number - 1), max_interval))

    return schedule


def retry_on_status_codes(
    *status_codes: int,
    retry_on_errors: tuple[type[Exception], ...] = (requests.ConnectionError, requests.Timeout),
) -> ShouldRetryFn:
    """
    Build a predicate that retries the given HTTP status codes and transport errors.

    Example:
        >>> should_retry = retry_on_status_codes(429, 502, 503, 504)
    """
    codes = frozenset(status_codes or (TOO_MANY_REQUESTS,))

    def should_retry(response: requests.Response | None, error: Exception | None) -> bool:
        if error is not None:
            return isinstance(error, retry_on_errors)
        return response is not None and response.status_code in codes

    return should_retry


def _retry_on_rate_limit(response: requests.Response | None, error: Exception | None) -> bool:
    return error is None and response is not None and response.status_code == TOO_MANY_REQUESTS


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class DefaultRetryConfig:
    """
    Fixed retry policy for rate-limited (HTTP 429) responses.

    Attributes:
        retry_num: Maximum number of retries per logical call.
        interval: Seconds to wait before each retry.
    """

    retry_num: int = DEFAULT_MAX_RETRIES
    interval: float = DEFAULT_RETRY_INTERVAL

    def __post_init__(self) -> None:
        assert self.retry_num >= 0, f"retry_num must be >= 0, got {self.retry_num}"
        assert self.interval >= 0, f"interval must be >= 0, got {self.interval}"


@dataclass(frozen=True)
class ConfigurableRetryConfig:
    """
    Custom retry policy.

    Attributes:
        retry_num: Maximum number of retries per logical call.
        interval: Seconds to wait before each retry, or a callable mapping the
            1-based retry number to seconds (see exponential_backoff()).
        should_retry: Predicate over (response, error) deciding whether an
            outcome is retryable. For transport errors `response` is None.
            Defaults to retrying HTTP 429 only.
        jitter_factor: Random +/- variation applied to each wait (0.0 = none).
    """

    retry_num: int
    interval: float | IntervalFn
    should_retry: ShouldRetryFn | None = None
    jitter_factor: float = 0.0

    def __post_init__(self) -> None:
        assert self.retry_num >= 0, f"retry_num must be >= 0, got {self.retry_num}"
        assert callable(self.interval) or self.interval >= 0, "interval must be >= 0 or a callable"
        assert 0.0 <= self.jitter_factor < 1.0, f"jitter_factor must be in [0, 1), got {self.jitter_factor}"


@dataclass(frozen=True)
class RetryStrategyConfig:
    """
    Selects the retry strategy used when a client retries requests.

    The configurable strategy takes precedence; with neither set, the
    default strategy is used.
    """

    default_retry_config: DefaultRetryConfig | None = None
    configurable_retry_config: ConfigurableRetryConfig | None = None

    def create_handler(self) -> ResponseHandler:
        """Build the retry handler for this strategy."""
        if self.configurable_retry_config is not None:
            return ConfigurableRetryResponseHandler(self.configurable_retry_config)
        return DefaultRetryResponseHandler(self.default_retry_config or DefaultRetryConfig())


# =============================================================================
# Handlers
# =============================================================================


class _RetryResponseHandler(ResponseHandler):
    """
    Shared bounded retry loop (internal).

    Subclasses provide the budget, the wait schedule and the predicate.
    """

    def __init__(self, retry_num: int, jitter_factor: float = 0.0):
        self.retry_num = retry_num
        self.jitter_factor = jitter_factor

    @abstractmethod
    def _should_retry(self, response: requests.Response | None, error: Exception | None) -> bool:
        pass

    @abstractmethod
    def _wait_time(self, retry_number: int) -> float:
        pass

    @override
    def handle_response(
        self,
        client: BaseClient,
        request: Request,
        response: requests.Response,
    ) -> requests.Response:
        return self._retry(client, request, response, None)

    def _retry(
        self,
        client: BaseClient,
        request: Request,
        response: requests.Response | None,
        error: requests.RequestException | None,
    ) -> requests.Response:
        """
        Resubmit the request while the outcome is retryable and budget remains.

        Returns:
            The last response obtained.

        Raises:
            requests.RequestException: If the last attempt ended in a transport error.
        """
        retries = 0
        while self._should_retry(response, error):
            if retries >= self.retry_num:
                logger.error(
                    f"{request.log_prefix} | Max retries ({self.retry_num}) exceeded "
                    f"after {request.num_attempts} attempts. Last outcome: {self._describe(response, error)}"
                )
                break

            retries += 1
            wait = self._wait_time(retries)
            logger.warning(
                f"{request.log_prefix} | Attempt {request.num_attempts} failed "
                f"({self._describe(response, error)}). Retry {retries}/{self.retry_num} in {wait:.1f}s..."
            )
            sleep_with_jitter(wait, jitter_factor=self.jitter_factor)

            try:
                response, error = client.resubmit(request), None
            except requests.RequestException as e:
                response, error = None, e

        if error is not None:
            raise error
        assert response is not None
        return response

    @staticmethod
    def _describe(response: requests.Response | None, error: Exception | None) -> str:
        if error is not None:
            return f"{type(error).__name__}: {error}"
        return f"HTTP {response.status_code}" if response is not None else "no response"


class DefaultRetryResponseHandler(_RetryResponseHandler):
    """
    Retries rate-limited (HTTP 429) responses with a fixed wait.

    Transport errors are not handled by this strategy.
    """

    def __init__(self, config: DefaultRetryConfig | None = None):
        self.config = config or DefaultRetryConfig()
        super().__init__(retry_num=self.config.retry_num)

    def _should_retry(self, response: requests.Response | None, error: Exception | None) -> bool:
        return _retry_on_rate_limit(response, error)

    def _wait_time(self, retry_number: int) -> float:
        return self.config.interval


class ConfigurableRetryResponseHandler(_RetryResponseHandler, ResponseOrErrorHandler):
    """
    Retries responses and transport errors accepted by a predicate.

    For transport errors the predicate is called with `response=None`; if it
    declines, the error is passed on to the next error-capable handler.
    """

    def __init__(self, config: ConfigurableRetryConfig):
        assert config is not None, "config cannot be None"
        self.config = config
        super().__init__(retry_num=config.retry_num, jitter_factor=config.jitter_factor)

    def _should_retry(self, response: requests.Response | None, error: Exception | None) -> bool:
        predicate = self.config.should_retry or _retry_on_rate_limit
        return predicate(response, error)

    def _wait_time(self, retry_number: int) -> float:
        interval = self.config.interval
        return interval(retry_number) if callable(interval) else interval

    @override
    def handle_request_error(
        self,
        client: BaseClient,
        request: Request,
        error: requests.RequestException,
    ) -> requests.Response:
        return self._retry(client, request, None, error)
