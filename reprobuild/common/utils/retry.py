from typing import Callable, TypeVar, Optional, Type, Tuple, Any, Awaitable
import random
import asyncio
from dataclasses import dataclass, field

from reprobuild.common.exceptions.base_exceptions import RetryableException
from reprobuild.common.config.logging_config import get_logger


logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.1
    retryable_exceptions: Tuple[Type[Exception], ...] = field(
        default_factory=lambda: (RetryableException, ConnectionError, TimeoutError)
    )


def calculate_delay(
    attempt: int,
    config: RetryConfig,
) -> float:
    delay = config.initial_delay * (config.exponential_base ** attempt)
    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_range = delay * config.jitter_factor
        delay = delay + random.uniform(-jitter_range, jitter_range)

    return max(0.0, delay)


def should_retry(
    exception: Exception,
    attempt: int,
    config: RetryConfig,
) -> bool:
    if attempt >= config.max_retries:
        return False

    if isinstance(exception, RetryableException):
        return exception.should_retry()

    return isinstance(exception, config.retryable_exceptions)


class RetryContext:
    def __init__(self, config: RetryConfig):
        self.config = config
        self.attempt = 0
        self.last_exception: Optional[Exception] = None

    def should_continue(self) -> bool:
        return self.attempt <= self.config.max_retries

    def record_failure(self, exception: Exception) -> bool:
        self.last_exception = exception

        if not should_retry(exception, self.attempt, self.config):
            return False

        if isinstance(exception, RetryableException):
            exception.increment_retry()

        return True

    def get_delay(self) -> float:
        return calculate_delay(self.attempt, self.config)

    def increment(self) -> None:
        self.attempt += 1


async def async_with_retry(
    func: Callable[..., Awaitable[T]],
    config: Optional[RetryConfig] = None,
    *args: Any,
    **kwargs: Any,
) -> T:
    if config is None:
        config = RetryConfig()

    context = RetryContext(config)

    while context.should_continue():
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not context.record_failure(e):
                raise

            delay = context.get_delay()

            logger.warning(
                f"Retry attempt {context.attempt + 1}/{config.max_retries} "
                f"for {getattr(func, '__name__', 'call')} after {delay:.2f}s delay. Error: {e}"
            )

            await asyncio.sleep(delay)
            context.increment()

    if context.last_exception:
        raise context.last_exception
    raise RuntimeError("Unexpected retry loop exit")
