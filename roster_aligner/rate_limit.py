import time
import logging
from typing import Any, Callable, Iterator, List, Sequence, TypeVar

from .config import RateLimitSettings
from .errors import RateLimitedError, RetriesExhaustedError
from .models import RateLimited

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RateLimitedCaller:
    """Paces platform calls and retries them with exponential backoff when rate limited.

    A call counts as rate limited when it raises ``RateLimitedError`` or returns a
    ``RateLimited`` result. The wait before retry ``n`` (0-based) is
    ``retry_after * 2**n``, falling back to ``base_backoff`` when the platform
    gives no hint. After ``max_retries`` retries ``RetriesExhaustedError`` is raised.
    """

    def __init__(self, settings: RateLimitSettings, sleep: Callable[[float], None] = time.sleep):
        self.settings = settings
        self._sleep = sleep

    def call(self, fn: Callable[..., Any], *args, description: str = "", **kwargs) -> Any:
        description = description or getattr(fn, '__name__', 'call')
        max_retries = self.settings.max_retries

        for attempt in range(max_retries + 1):
            try:
                result = fn(*args, **kwargs)
            except RateLimitedError as e:
                retry_after = e.retry_after
            else:
                if not isinstance(result, RateLimited):
                    return result
                retry_after = result.retry_after

            if attempt == max_retries:
                break
            wait = self.backoff(retry_after, attempt)
            logger.warning(f"  [!] Rate limited on {description}. Waiting {wait:.1f}s (attempt {attempt + 1})")
            self._sleep(wait)

        logger.warning(f"  [!] Max retries hit for {description}; giving up this run")
        raise RetriesExhaustedError(description, max_retries + 1)

    def backoff(self, retry_after, attempt: int) -> float:
        base = retry_after if retry_after else self.settings.base_backoff
        return float(base) * (2 ** attempt)

    def batches(self, items: Sequence[T], size: int = 0) -> Iterator[List[T]]:
        """Yields fixed-size chunks, pausing after each one whatever the caller did with it."""
        size = size or self.settings.lookup_batch_size
        for i in range(0, len(items), size):
            yield list(items[i:i + size])
            self._sleep(self.settings.batch_pause)

    def space(self):
        self._sleep(self.settings.lookup_spacing)

    def pause(self, seconds: float):
        if seconds > 0:
            self._sleep(seconds)
