"""Timing helpers for benchmark phases."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Generator, List, Optional

logger = logging.getLogger(__name__)

__all__ = ["PhaseTimer", "PhaseTimings"]


@dataclass
class PhaseTimer:
    """Timer tracking a named phase."""

    name: str
    start_time: float = field(default_factory=time.perf_counter)
    end_time: Optional[float] = None

    def stop(self) -> float:
        """Stop the timer and return the duration (seconds)."""
        self.end_time = time.perf_counter()
        return self.duration

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        end = self.end_time if self.end_time is not None else time.perf_counter()
        return end - self.start_time


class PhaseTimings:
    """Ordered collection of phase timers for one operation."""

    def __init__(self) -> None:
        self._phases: List[PhaseTimer] = []

    @contextmanager
    def time_phase(self, name: str) -> Generator[PhaseTimer, None, None]:
        """Context manager that tracks a phase duration."""
        timer = PhaseTimer(name=name)
        self._phases.append(timer)
        try:
            yield timer
        finally:
            timer.stop()
            logger.debug("Phase %s took %.3fs", name, timer.duration)

    def get(self, name: str) -> Optional[float]:
        """Duration of the last phase recorded under ``name``."""
        for phase in reversed(self._phases):
            if phase.name == name:
                return phase.duration
        return None
