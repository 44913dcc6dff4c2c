import random
import time

from pydantic import Field
from pydantic.dataclasses import dataclass

from stackdeploy import config


@dataclass
class ExponentialBackoff:
    """
    Exponential backoff with randomization, used to pace status polls against the control plane.

    Every call to ``next_backoff()`` returns the current interval, randomized within
    ``interval * [1 - randomization_factor, 1 + randomization_factor]``, and then multiplies the
    interval by ``multiplier``, capped at ``max_interval``.

    With ``initial_interval=5``, ``multiplier=1.5``, ``max_interval=10`` and no randomization the
    sequence is 5, 7.5, 10, 10, ...

    Note:
        - `max_interval` caps the base interval, not the randomized value
        - Returns 0 when `max_retries` or `max_time_elapsed` is exceeded
        - The implementation is not thread-safe
    """

    initial_interval: float = Field(0.5, title="Initial backoff interval in seconds", gt=0)
    randomization_factor: float = Field(0.5, title="Factor to randomize backoff", ge=0, le=1)
    multiplier: float = Field(1.5, title="Multiply interval by this factor each retry", gt=1)
    max_interval: float = Field(60.0, title="Maximum backoff interval in seconds", gt=0)
    max_retries: int = Field(-1, title="Max retry attempts (-1 for unlimited)", ge=-1)
    max_time_elapsed: float = Field(-1, title="Max total time in seconds (-1 for unlimited)", ge=-1)

    def __post_init__(self):
        self.retry_interval: float = 0
        self.retries: int = 0
        self.start_time: float = 0.0

    @classmethod
    def for_stack_polling(cls, max_time_elapsed: float = -1) -> "ExponentialBackoff":
        """The backoff used between status polls of stacks and change sets."""
        return cls(
            initial_interval=config.STACK_POLL_INTERVAL,
            max_interval=max(config.STACK_POLL_MAX_INTERVAL, config.STACK_POLL_INTERVAL),
            randomization_factor=0.2,
            max_time_elapsed=max_time_elapsed,
        )

    @property
    def elapsed_duration(self) -> float:
        return max(time.monotonic() - self.start_time, 0)

    def next_backoff(self) -> float:
        if self.retry_interval == 0:
            self.retry_interval = self.initial_interval
            self.start_time = time.monotonic()

        self.retries += 1

        if self.max_retries >= 0 and self.retries > self.max_retries:
            return 0

        if self.max_time_elapsed > 0 and self.elapsed_duration > self.max_time_elapsed:
            return 0

        next_interval = self.retry_interval
        if 0 < self.randomization_factor <= 1:
            min_interval = self.retry_interval * (1 - self.randomization_factor)
            max_interval = self.retry_interval * (1 + self.randomization_factor)
            # NOTE: the jittered value can exceed the max_interval
            next_interval = random.uniform(min_interval, max_interval)

        self.retry_interval = min(self.max_interval, self.retry_interval * self.multiplier)

        return next_interval
