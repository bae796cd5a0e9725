"""Status polling for convergence tracking.

A single producer thread reads every tracked resource at a fixed interval
and puts a PollEvent on a queue whenever a resource's observation changes.
The first cycle reports every resource. The loop stops as soon as the
context it was started with is done (cancelled or past its deadline).
"""

import json
import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from common import RunContext
from manifest import ResourceIdentity

logger = logging.getLogger(__name__)

# Returns the live object, or None if absent
Reader = Callable[[ResourceIdentity], Optional[dict]]


class EventType(str, Enum):
    UPDATE = 'update'  # observation of one resource changed
    ERROR = 'error'    # the poll loop itself failed and has stopped


@dataclass(frozen=True)
class PollEvent:
    """One status change on the event stream.

    Attributes:
        type: UPDATE or ERROR
        identity: Resource the update is about (UPDATE only)
        obj: Live object, None if not found or unreadable
        error: Read error for this resource (UPDATE) or loop failure (ERROR)
    """
    type: EventType
    identity: Optional[ResourceIdentity] = None
    obj: Optional[dict] = None
    error: Optional[str] = None


def _fingerprint(obj: Optional[dict], error: Optional[str]) -> tuple:
    if error is not None:
        return ('error', error)
    if obj is None:
        return ('absent',)
    version = (obj.get('metadata') or {}).get('resourceVersion')
    if version is not None:
        return ('version', str(version))
    return ('content', json.dumps(obj, sort_keys=True, default=str))


class EventStream:
    """Consumer side of a running poll loop."""

    def __init__(self, events: queue.Queue, thread: threading.Thread):
        self._events = events
        self._thread = thread

    def get(self, timeout: Optional[float] = None) -> Optional[PollEvent]:
        """Next event, or None if none arrived within `timeout` seconds."""
        try:
            return self._events.get(timeout=timeout)
        except queue.Empty:
            return None

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the poll loop to exit. Returns True if it has."""
        self._thread.join(timeout)
        return not self._thread.is_alive()


class StatusPoller:
    """Polls tracked resources through a reader callable.

    Example:
        poller = StatusPoller(lambda identity: handles[identity].get(identity.name))
        stream = poller.poll(ctx.child(), identities, interval=2.0)
    """

    def __init__(self, reader: Reader):
        self._reader = reader

    def poll(self, ctx: RunContext, identities: list[ResourceIdentity],
             interval: float) -> EventStream:
        """Start polling `identities` every `interval` seconds until `ctx` is done."""
        events: queue.Queue = queue.Queue()
        thread = threading.Thread(
            target=self._run,
            args=(ctx, list(identities), interval, events),
            name='status-poller',
            daemon=True,
        )
        thread.start()
        logger.debug(f"Polling {len(identities)} resource(s) every {interval}s")
        return EventStream(events, thread)

    def _observe(self, identity: ResourceIdentity) -> tuple[Optional[dict], Optional[str]]:
        try:
            return self._reader(identity), None
        except Exception as e:
            logger.debug(f"Status read failed for {identity}: {e}")
            return None, str(e) or type(e).__name__

    def _run(self, ctx: RunContext, identities: list[ResourceIdentity],
             interval: float, events: queue.Queue) -> None:
        last: dict[ResourceIdentity, tuple] = {}
        try:
            while not ctx.done:
                for identity in identities:
                    if ctx.done:
                        break
                    obj, error = self._observe(identity)
                    fingerprint = _fingerprint(obj, error)
                    if last.get(identity) == fingerprint:
                        continue
                    last[identity] = fingerprint
                    events.put(PollEvent(EventType.UPDATE, identity=identity, obj=obj, error=error))
                if ctx.sleep(interval):
                    break
        except Exception as e:
            logger.exception("Status poll loop failed")
            events.put(PollEvent(EventType.ERROR, error=str(e) or type(e).__name__))
        logger.debug(f"Status polling stopped ({ctx.err()})")
