"""
Delayed Effect Scheduler — fires one-shot callbacks after a delay.

Used for cross-region arrivals and, when enabled, deferred cascading
effects. Best effort: pending callbacks live in memory and are lost on
process exit.
"""

import logging
import threading
from typing import Any, Callable, Dict, Optional, Protocol
from uuid import uuid4

logger = logging.getLogger(__name__)


class EffectScheduler(Protocol):
    """Protocol for delayed execution — pluggable backend (timers, job queue)."""

    def schedule(self, delay_ms: int, callback: Callable[..., Any], *args: Any) -> str: ...


class DelayedEffectScheduler:
    """threading.Timer-backed scheduler."""

    def __init__(self):
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._timers: Dict[str, threading.Timer] = {}

    def schedule(self, delay_ms: int, callback: Callable[..., Any], *args: Any) -> str:
        """Run ``callback(*args)`` once after ``delay_ms`` milliseconds."""
        job_id = f"job_{uuid4().hex[:12]}"
        timer = threading.Timer(max(delay_ms, 0) / 1000.0, self._run, args=(job_id, callback, args))
        timer.daemon = True
        with self._lock:
            self._timers[job_id] = timer
        timer.start()
        logger.debug("Scheduled %s in %d ms", job_id, delay_ms)
        return job_id

    def _run(self, job_id: str, callback: Callable[..., Any], args: tuple) -> None:
        try:
            callback(*args)
        except Exception:
            # Nothing upstream is waiting on a timer thread
            logger.exception("Delayed job %s failed", job_id)
        finally:
            with self._idle:
                self._timers.pop(job_id, None)
                self._idle.notify_all()

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._timers)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no jobs are pending. Returns False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._timers, timeout=timeout)

    def cancel_all(self) -> int:
        """Cancel every pending job. Returns how many were cancelled."""
        with self._idle:
            timers = list(self._timers.values())
            self._timers.clear()
            self._idle.notify_all()
        for timer in timers:
            timer.cancel()
        if timers:
            logger.info("Cancelled %d pending delayed jobs", len(timers))
        return len(timers)
