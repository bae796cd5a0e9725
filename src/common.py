"""Common utilities and types for atomic apply."""

import logging
import threading
import time
from typing import Optional

logger = logging.getLogger(__name__)

DEADLINE_EXCEEDED = 'deadline exceeded'
CANCELLED = 'context cancelled'


class RunContext:
    """Deadline-bearing, cancellable context shared by a run's stages.

    Cancellation is cooperative and cascades downward: cancelling a context
    (or reaching its deadline) marks every child context done as well.
    Children never affect their parent.

    Example:
        ctx = RunContext.with_timeout(30)
        child = ctx.child()
        child.cancel()          # stops work bound to child only
        ctx.done                # False until 30s elapse
    """

    def __init__(self, deadline: Optional[float] = None, parent: Optional['RunContext'] = None):
        """Initialize context.

        Args:
            deadline: Absolute time.monotonic() value after which the context
                is expired (None = no deadline)
            parent: Parent context whose cancellation and deadline are inherited
        """
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline
        self.parent = parent
        self._cancelled = threading.Event()
        self._children: list['RunContext'] = []
        self._lock = threading.Lock()
        if parent is not None:
            parent._adopt(self)

    @classmethod
    def background(cls) -> 'RunContext':
        """Context with no deadline."""
        return cls()

    @classmethod
    def with_timeout(cls, timeout: Optional[float], parent: Optional['RunContext'] = None) -> 'RunContext':
        """Context expiring `timeout` seconds from now (None = no deadline)."""
        deadline = None if timeout is None else time.monotonic() + timeout
        return cls(deadline=deadline, parent=parent)

    def child(self) -> 'RunContext':
        """Derive a cancellable child context sharing this deadline."""
        return RunContext(parent=self)

    def _adopt(self, child: 'RunContext') -> None:
        with self._lock:
            self._children.append(child)
        if self._cancelled.is_set():
            child.cancel()

    def cancel(self) -> None:
        """Cancel this context and all of its children."""
        self._cancelled.set()
        with self._lock:
            children = list(self._children)
        for child in children:
            child.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline (None if no deadline, 0.0 if past)."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def err(self) -> Optional[str]:
        """Reason the context is done, or None while it is still live.

        Deadline expiry wins over cancellation so callers can tell a
        timeout apart from an orderly stop.
        """
        if self.expired:
            return DEADLINE_EXCEEDED
        if self.cancelled:
            return CANCELLED
        return None

    def sleep(self, seconds: float) -> bool:
        """Sleep up to `seconds`, waking early when the context is done.

        Returns:
            True if the context is done on return, False otherwise
        """
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        self._cancelled.wait(max(0.0, seconds))
        return self.done

    def __repr__(self) -> str:
        remaining = self.remaining()
        deadline = 'none' if remaining is None else f'{remaining:.1f}s'
        return f"RunContext(deadline={deadline}, done={self.done})"


def format_duration(seconds: float) -> str:
    """Format seconds as a short human string (e.g. 90 -> '1m30s')."""
    seconds = int(round(seconds))
    if seconds < 60:
        return f"{seconds}s"
    minutes, secs = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m{secs}s" if secs else f"{minutes}m"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h{minutes}m" if minutes else f"{hours}h"
