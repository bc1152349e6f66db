"""
Ordered fallback strategies for one logical request.

A Cascade is a list of labelled attempts tried in order. The first success
wins; failures are logged and, if every attempt fails, the error from the
first (canonical) attempt is raised.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Generic, List, Optional, Sequence, TypeVar

from .errors import OBAAPIError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Attempt(Generic[T]):
    """One way of obtaining the result, e.g. "path form" or "stop donor"."""
    label: str
    run: Callable[[], T]


class Cascade(Generic[T]):
    """Runs attempts in order until one succeeds."""

    def __init__(self, name: str, attempts: Sequence[Attempt[T]]):
        if not attempts:
            raise ValueError("A cascade needs at least one attempt")
        self.name = name
        self.attempts: List[Attempt[T]] = list(attempts)

    def run(self) -> T:
        """
        Returns:
            The result of the first attempt that does not raise.

        Raises:
            OBAAPIError: The first attempt's error, when every attempt failed.
        """
        first_error: Optional[OBAAPIError] = None
        for attempt in self.attempts:
            try:
                result = attempt.run()
            except OBAAPIError as e:
                logger.warning(f"{self.name}: {attempt.label} failed: {e}")
                if first_error is None:
                    first_error = e
                continue
            if attempt is not self.attempts[0]:
                logger.debug(f"{self.name}: served by {attempt.label}")
            return result

        logger.error(f"{self.name}: all {len(self.attempts)} attempts failed")
        raise first_error
