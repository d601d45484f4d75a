"""
Clock and cancellation primitives shared by the pollers.

Pollers never call time.sleep directly: they wait on the clock with their cancellation
token, so a cancel wakes them immediately and tests can drive time by hand.
"""
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Block up to seconds; True if cancelled meanwhile."""
        return self._event.wait(max(seconds, 0.0))


class Clock(ABC):
    @abstractmethod
    def now(self) -> float:
        """Wall-clock epoch seconds."""

    @abstractmethod
    def sleep(self, seconds: float, token: CancellationToken | None = None) -> None:
        pass


class SystemClock(Clock):
    def now(self) -> float:
        return time.time()

    def sleep(self, seconds: float, token: CancellationToken | None = None) -> None:
        if token is not None:
            token.wait(seconds)
        elif seconds > 0:
            time.sleep(seconds)


def epoch_to_datetime(epoch: float) -> datetime:
    return datetime.fromtimestamp(epoch, timezone.utc)
