# crew_engine/errors.py
"""
Typed failures raised by the engines, plus the Outcome wrapper used by bulk
operations so a failing crew member is reported instead of aborting the batch.
"""
import logging
from dataclasses import dataclass
from typing import Awaitable, Generic, Optional, TypeVar

T = TypeVar("T")

log = logging.getLogger("crew_engine")


class CrewEngineError(Exception):
    """Base class for engine errors."""


class CrewNotFoundError(CrewEngineError):
    def __init__(self, identifier: str):
        super().__init__(f"Crew member not found: {identifier}")
        self.identifier = identifier


class RuleTableError(CrewEngineError):
    """Static rule tables are missing or invalid. Fatal at startup."""

    def __init__(self, message: str, invalid: Optional[list] = None):
        super().__init__(message)
        self.invalid = invalid or []


@dataclass(frozen=True)
class Outcome(Generic[T]):
    key: str
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def capture(key: str, aw: Awaitable[T], what: str = "operation") -> Outcome[T]:
    """Await `aw` and wrap the result (or the exception) in an Outcome."""
    try:
        return Outcome(key=key, value=await aw)
    except Exception as e:
        if isinstance(e, CrewNotFoundError):
            log.warning("%s skipped for %s: %s", what, key, e)
        else:
            log.exception("%s failed for %s: %s", what, key, e)
        return Outcome(key=key, error=e)
