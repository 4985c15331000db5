"""Clock and sequence helpers shared by capture, events and replay."""

import time
from dataclasses import dataclass
from uuid import uuid4


def epoch_ms() -> int:
    """Return the current wall clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def new_event_id() -> str:
    """Return a globally unique event id."""
    return f"evt_{uuid4().hex}"


def new_decision_id() -> str:
    """Return a globally unique backend decision id."""
    return f"dec_{uuid4().hex}"


@dataclass
class SequenceCounter:
    """Monotonic per-session counter starting at zero."""

    value: int = 0

    def next(self) -> int:
        """Return the current value and advance."""
        current = self.value
        self.value += 1
        return current

    def reset(self) -> None:
        """Restart numbering for a new session."""
        self.value = 0
