"""Fixed-interval retry helper for cheap cluster polls."""

import time
from typing import Callable, Optional, TypeVar

from kubepostupgrade.constants import RETRY_INTERVAL_SECONDS

T = TypeVar("T")


class RetryingCommand:
    """Runs an operation until it succeeds or the attempt budget is spent."""

    def __init__(
        self,
        logger,
        interval_seconds: float = RETRY_INTERVAL_SECONDS,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.logger = logger
        self.interval_seconds = interval_seconds
        self.sleep = sleep or time.sleep

    def run(self, operation: Callable[[], T], max_attempts: int, description: str = "") -> T:
        max_attempts = max(1, max_attempts)
        label = description or getattr(operation, "__name__", "operation")

        for attempt in range(1, max_attempts + 1):
            try:
                return operation()
            except Exception as exc:
                if attempt >= max_attempts:
                    self.logger.debug(
                        "%s failed on final attempt %s/%s: %s", label, attempt, max_attempts, exc
                    )
                    raise
                self.logger.warning(
                    "%s failed on attempt %s/%s. Retrying in %.1fs: %s",
                    label,
                    attempt,
                    max_attempts,
                    self.interval_seconds,
                    exc,
                )
                self.sleep(self.interval_seconds)
