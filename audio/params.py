"""
Sample-accurate parameter automation.

An AudioParam holds a timeline of automation events on the backend clock
(seconds) and renders it into per-sample value arrays:
- set_value_at_time: step to a value
- linear_ramp_to_value_at_time: linear ramp from the previous event
- exponential_ramp_to_value_at_time: exponential ramp from the previous event

A ramp starts at the time and value of the event before it.
"""
from dataclasses import dataclass
from enum import Enum
from typing import List

import numpy as np


class EventType(Enum):
    """Automation event kinds."""
    SET = "set"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class AutomationEvent:
    """
    Single automation event.

    Attributes:
        time: Event time in seconds on the backend clock
        value: Target value
        kind: How the value is reached
    """
    time: float
    value: float
    kind: EventType = EventType.SET


class AudioParam:
    """Automatable parameter (gain, frequency, ...)."""

    def __init__(self, default: float = 0.0):
        """
        Initialize parameter.

        Args:
            default: Value before the first event
        """
        self.default = float(default)
        self._events: List[AutomationEvent] = []

    @property
    def events(self) -> List[AutomationEvent]:
        """Scheduled events in time order (copy)."""
        return list(self._events)

    def _insert(self, event: AutomationEvent):
        # Keep time order; events at the same time keep insertion order
        index = len(self._events)
        while index > 0 and self._events[index - 1].time > event.time:
            index -= 1
        self._events.insert(index, event)

    def set_value_at_time(self, value: float, time: float):
        """Step to value at time."""
        self._insert(AutomationEvent(float(time), float(value), EventType.SET))

    def linear_ramp_to_value_at_time(self, value: float, time: float):
        """Ramp linearly from the previous event to value, arriving at time."""
        self._insert(AutomationEvent(float(time), float(value), EventType.LINEAR))

    def exponential_ramp_to_value_at_time(self, value: float, time: float):
        """
        Ramp exponentially from the previous event to value, arriving at time.

        Raises:
            ValueError: If value is not positive
        """
        if value <= 0:
            raise ValueError(f"Exponential ramp target must be positive, got {value}")
        self._insert(AutomationEvent(float(time), float(value), EventType.EXPONENTIAL))

    def cancel_scheduled_values(self, time: float):
        """Remove every event at or after time."""
        self._events = [e for e in self._events if e.time < time]

    def cancel_and_hold_at_time(self, time: float):
        """
        Freeze the parameter at its current value from time on.

        Removes events at or after time and pins the value the timeline had
        at that instant, so a ramp in progress stops where it is.
        """
        value = self.value_at(time)
        self.cancel_scheduled_values(time)
        self.set_value_at_time(value, time)

    def value_at(self, time: float) -> float:
        """Parameter value at a single instant."""
        return float(self.render(np.array([time], dtype=np.float64))[0])

    def end_time(self) -> float:
        """Time of the last scheduled event (or -inf if none)."""
        if not self._events:
            return float("-inf")
        return self._events[-1].time

    def prune(self, before: float):
        """
        Collapse events that are fully in the past.

        Events before `before` that are not needed to interpolate a ramp
        ending after it are replaced by a single set event.
        """
        keep_from = 0
        for index, event in enumerate(self._events):
            if event.time > before:
                break
            keep_from = index
        if keep_from == 0:
            return
        anchor = self._events[keep_from]
        self._events = [AutomationEvent(anchor.time, anchor.value, EventType.SET)] + self._events[keep_from + 1:]

    def render(self, times: np.ndarray) -> np.ndarray:
        """
        Evaluate the timeline at each time.

        Args:
            times: Sample times in seconds (ascending)

        Returns:
            Parameter values (float64, same shape as times)
        """
        out = np.full(times.shape, self.default, dtype=np.float64)
        prev_time = float("-inf")
        prev_value = self.default

        for event in self._events:
            mask = (times >= prev_time) & (times < event.time)
            if event.kind is EventType.SET or prev_time == float("-inf") or event.time <= prev_time:
                out[mask] = prev_value
            elif event.kind is EventType.LINEAR:
                frac = (times[mask] - prev_time) / (event.time - prev_time)
                out[mask] = prev_value + (event.value - prev_value) * frac
            elif prev_value > 0:
                frac = (times[mask] - prev_time) / (event.time - prev_time)
                out[mask] = prev_value * np.power(event.value / prev_value, frac)
            else:
                # Exponential ramps cannot start from zero: hold, then jump
                out[mask] = prev_value
            prev_time = event.time
            prev_value = event.value

        out[times >= prev_time] = prev_value
        return out
