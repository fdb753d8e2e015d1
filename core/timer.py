"""One-shot stopwatch used to time fetches and crawl phases."""
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class TimerResult:
    """Elapsed time of a finished Timer."""
    milli: int
    seconds: int

    def to_dict(self) -> Dict[str, Any]:
        return {"milli": self.milli, "seconds": self.seconds}


class Timer:
    """Captures a monotonic start instant on creation; end() computes the result once.

    Usage:
        timer = Timer()
        await do_work()
        result = timer.end()
    """

    def __init__(self):
        self._start = time.perf_counter()
        self.result: Optional[TimerResult] = None

    def end(self) -> TimerResult:
        if self.result is not None:
            raise RuntimeError("Timer.end() called on a timer that has already ended")

        elapsed = time.perf_counter() - self._start
        self.result = TimerResult(milli=int(elapsed * 1000), seconds=int(elapsed))
        return self.result
