"""Bounded polling helper."""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PollOutcome(Generic[T]):
    """Last value seen and whether it satisfied the predicate."""

    value: Optional[T]
    attempts: int
    satisfied: bool


def poll(
    fn: Callable[[], T],
    predicate: Callable[[Any], bool] = bool,
    interval: float = 2.0,
    max_attempts: int = 10,
    sleep: Callable[[float], None] = time.sleep,
) -> PollOutcome[T]:
    """
    Call fn until predicate(value) holds or the attempt budget is spent.

    Sleeps interval seconds between attempts, never after the last one.

    Args:
        fn: Zero-argument callable producing a value
        predicate: Success test applied to each value
        interval: Seconds between attempts
        max_attempts: Maximum number of calls to fn
        sleep: Sleep function (injectable for tests)

    Returns:
        PollOutcome with the satisfying value, or the last value seen

    Raises:
        ValueError: If max_attempts is less than 1
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    value: Optional[T] = None
    for attempt in range(1, max_attempts + 1):
        value = fn()
        if predicate(value):
            return PollOutcome(value=value, attempts=attempt, satisfied=True)
        logger.debug(f"Attempt {attempt}/{max_attempts} not satisfied")
        if attempt < max_attempts:
            sleep(interval)

    return PollOutcome(value=value, attempts=max_attempts, satisfied=False)
