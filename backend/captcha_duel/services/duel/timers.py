"""Cancellable timers for the single-threaded session loop.

Nothing here sleeps. The owner calls ``fire_due(now)`` from its tick and every
due callback runs inline; ``cancel_all`` drops everything synchronously, so a
torn-down session can never be touched by a stale timer.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional


@dataclass
class Timer:
    name: str
    deadline: float
    callback: Callable[[float], None]
    interval: Optional[float] = None


class TimerSet:
    def __init__(self):
        self._timers: Dict[str, Timer] = {}

    def schedule(self, name: str, deadline: float, callback: Callable[[float], None], interval: Optional[float] = None) -> Timer:
        # Re-scheduling a name replaces the old timer
        timer = Timer(name, deadline, callback, interval)
        self._timers[name] = timer
        return timer

    def every(self, name: str, now: float, interval: float, callback: Callable[[float], None]) -> Timer:
        return self.schedule(name, now + interval, callback, interval)

    def cancel(self, name: str) -> None:
        self._timers.pop(name, None)

    def cancel_all(self) -> None:
        self._timers.clear()

    def pending(self) -> List[str]:
        return sorted(self._timers)

    def __contains__(self, name: str) -> bool:
        return name in self._timers

    def fire_due(self, now: float) -> int:
        fired = 0
        for timer in sorted(self._timers.values(), key=lambda t: t.deadline):
            # A callback may cancel other timers (or all of them)
            if self._timers.get(timer.name) is not timer or timer.deadline > now:
                continue
            if timer.interval:
                timer.deadline += timer.interval
                if timer.deadline <= now:
                    timer.deadline = now + timer.interval
            else:
                del self._timers[timer.name]
            fired += 1
            timer.callback(now)
        return fired
