"""Convergence wait for atomic apply.

Blocks until every planned resource reports Current, a tracked resource
fails terminally, or the run deadline passes.

The poll loop (producer thread) and the aggregator (this thread) only
share the event queue and a child RunContext. All convergence state is
owned by the StatusAggregator and changes only in response to events.
When the aggregate reaches Current the aggregator cancels the child
context, which stops the poll loop.
"""

import logging
from typing import Optional

from common import DEADLINE_EXCEEDED, RunContext, format_duration
from config import DEFAULT_POLL_INTERVAL
from errors import ConvergenceFailureError, ConvergenceTimeoutError
from manifest import ResourceIdentity
from transaction.plan import Plan
from transaction.poller import EventType, PollEvent, StatusPoller
from transaction.printer import ProgressPrinter
from transaction.readiness import ConvergenceState, StatusResult, aggregate, evaluate

logger = logging.getLogger(__name__)

# Upper bound on how long the aggregator blocks on the queue between
# deadline checks
_TICK = 0.1

# How long to wait for the poll loop to exit after cancellation
_JOIN_TIMEOUT = 5.0


class StatusAggregator:
    """Per-resource convergence state, reduced to an aggregate.

    Every tracked identity starts as Unknown until its first observation.
    """

    def __init__(self, identities: list[ResourceIdentity],
                 desired: ConvergenceState = ConvergenceState.CURRENT):
        self.identities = list(dict.fromkeys(identities))
        self.desired = desired
        self.statuses: dict[ResourceIdentity, StatusResult] = {
            identity: StatusResult(ConvergenceState.UNKNOWN, 'Resource not yet observed')
            for identity in self.identities
        }

    def observe(self, event: PollEvent) -> ConvergenceState:
        """Apply an UPDATE event and return the new aggregate."""
        if event.identity in self.statuses:
            if event.error is not None:
                result = StatusResult(ConvergenceState.UNKNOWN, event.error)
            else:
                result = evaluate(event.obj)
            previous = self.statuses[event.identity]
            self.statuses[event.identity] = result
            if previous.state != result.state:
                logger.debug(f"{event.identity}: {previous.state} -> {result.state} ({result.message})")
        return self.aggregate()

    def aggregate(self) -> ConvergenceState:
        return aggregate((r.state for r in self.statuses.values()), self.desired)

    def first_failed(self) -> Optional[tuple[ResourceIdentity, StatusResult]]:
        """First Failed resource in plan order, if any."""
        for identity in self.identities:
            result = self.statuses[identity]
            if result.state == ConvergenceState.FAILED:
                return identity, result
        return None

    def not_ready(self) -> list[tuple[ResourceIdentity, StatusResult]]:
        """Resources not in the desired state, in plan order."""
        return [(identity, self.statuses[identity]) for identity in self.identities
                if self.statuses[identity].state != self.desired]


class ConvergenceWatcher:
    """Waits for a plan's resources to converge.

    Example:
        watcher = ConvergenceWatcher(interval=2.0)
        watcher.wait(ctx, plan)   # raises on timeout or terminal failure
    """

    def __init__(self, interval: float = DEFAULT_POLL_INTERVAL,
                 printer: Optional[ProgressPrinter] = None,
                 poller: Optional[StatusPoller] = None):
        """Initialize watcher.

        Args:
            interval: Seconds between status polls
            printer: Progress output
            poller: Status poller override (default: reads through plan handles)
        """
        self.interval = interval
        self.printer = printer or ProgressPrinter()
        self.poller = poller

    def _poller_for(self, plan: Plan) -> StatusPoller:
        if self.poller is not None:
            return self.poller
        handles = {item.identity: item.handle for item in plan}
        return StatusPoller(lambda identity: handles[identity].get(identity.name))

    def wait(self, ctx: RunContext, plan: Plan) -> Optional[StatusAggregator]:
        """Block until the plan converges.

        Args:
            ctx: Run context carrying the deadline
            plan: Applied plan

        Returns:
            The aggregator holding final statuses (None if nothing was tracked)

        Raises:
            ConvergenceFailureError: A resource failed terminally, or polling broke
            ConvergenceTimeoutError: The deadline passed first
        """
        identities = plan.identities()
        if not identities:
            self.printer.no_resources()
            return None

        self.printer.tracking(identities)
        aggregator = StatusAggregator(identities)
        child = ctx.child()
        stream = self._poller_for(plan).poll(child, identities, self.interval)

        try:
            while not child.done:
                remaining = child.remaining()
                event = stream.get(timeout=_TICK if remaining is None else min(_TICK, remaining))
                if event is None:
                    continue

                if event.type == EventType.ERROR:
                    raise ConvergenceFailureError(f"status polling failed: {event.error}")

                if aggregator.observe(event) == aggregator.desired:
                    logger.info(f"All {len(aggregator.identities)} resource(s) are {aggregator.desired}")
                    return aggregator

                failed = aggregator.first_failed()
                if failed is not None:
                    identity, result = failed
                    raise ConvergenceFailureError(
                        f"resource failed: {identity} ({result.message or result.state})",
                        identity=identity,
                    )

                self.printer.waiting(aggregator.statuses, aggregator.desired)
        finally:
            child.cancel()
            if not stream.join(_JOIN_TIMEOUT):
                logger.warning("Status poller did not stop within "
                               f"{format_duration(_JOIN_TIMEOUT)}; abandoning it")

        raise self._timeout_error(ctx, aggregator)

    def _timeout_error(self, ctx: RunContext, aggregator: StatusAggregator) -> ConvergenceTimeoutError:
        not_ready = aggregator.not_ready()
        facts = [f"resource not ready: {identity} ({result.state})"
                 for identity, result in not_ready]
        reason = ctx.err() or DEADLINE_EXCEEDED
        for fact in facts:
            logger.error(fact)
        return ConvergenceTimeoutError(
            [identity for identity, _ in not_ready], facts, f"wait aborted: {reason}")
