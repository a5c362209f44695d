"""
Error boundary for enrichment steps that must never fail their caller.

Profile fetches and contact upserts run through ``best_effort``; the caller
receives an ``Outcome`` it may inspect or log, but nothing is re-raised.
"""

from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a best-effort step: a value or the error that replaced it."""

    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def value_or(self, default: T) -> T:
        return self.value if self.ok and self.value is not None else default


async def best_effort(awaitable: Awaitable[T], *, action: str, logger: Any) -> Outcome[T]:
    """
    Await ``awaitable`` inside its own error boundary.

    Args:
        awaitable: The enrichment step
        action: Short description used in the log line
        logger: Logger receiving the warning on failure

    Returns:
        Outcome holding the value, or the swallowed exception
    """
    try:
        return Outcome(value=await awaitable)
    except Exception as exc:
        logger.warning(f"Best-effort step '{action}' failed: {type(exc).__name__}: {exc}")
        return Outcome(error=exc)
