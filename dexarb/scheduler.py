# dexarb/scheduler.py
import time
from typing import Callable, Optional


class IntervalGate:
    """
    Rate-limits a recurring action to at most once per interval.
    Owned by a strategy and handed to the components it gates.
    """
    def __init__(self, interval_seconds: float, clock: Callable[[], float] = time.time):
        self.interval = interval_seconds
        self.clock = clock
        self.last_run: Optional[float] = None

    def ready(self) -> bool:
        if self.last_run is None:
            return True
        return self.clock() - self.last_run >= self.interval

    def since_last(self) -> Optional[float]:
        """Seconds since the last acquired run, or None if it never ran."""
        if self.last_run is None:
            return None
        return self.clock() - self.last_run

    def mark(self, when: Optional[float] = None):
        self.last_run = self.clock() if when is None else when

    def try_acquire(self) -> bool:
        if not self.ready():
            return False
        self.mark()
        return True
