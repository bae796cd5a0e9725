"""Transaction executor for atomic apply.

Runs the full transaction for an ordered list of desired objects:

1. Plan: resolve endpoints and back up every object that already exists
2. Apply: server-side apply each item in plan order
3. Wait: block until every item is Current (or the deadline passes)
4. Rollback: on any apply or wait failure, restore backups and delete
   newly created objects, in plan order

Nothing is mutated before planning completes, so planning failures abort
the run cleanly.
"""

import logging
from typing import Optional

from cluster.base import ResourceResolver
from common import RunContext
from config import ApplyConfig
from errors import (
    ApplyError,
    AtomicApplyError,
    ConvergenceFailureError,
    ConvergenceTimeoutError,
    RollbackError,
)
from manifest import DesiredObject
from transaction.applier import Applier
from transaction.outcome import OutcomeStatus, TransactionOutcome, TransactionState
from transaction.plan import Plan, build_plan
from transaction.poller import StatusPoller
from transaction.printer import ProgressPrinter
from transaction.rollback import RollbackCoordinator
from transaction.watcher import ConvergenceWatcher

logger = logging.getLogger(__name__)


class AtomicApply:
    """All-or-nothing apply of a set of desired objects.

    Example:
        engine = AtomicApply(KubeResolver.from_config(), load_config())
        outcome = engine.run(ManifestLoader().load(['app.yaml']))
        sys.exit(outcome.exit_code)
    """

    def __init__(self, resolver: ResourceResolver, config: Optional[ApplyConfig] = None,
                 printer: Optional[ProgressPrinter] = None,
                 poller: Optional[StatusPoller] = None):
        """Initialize executor.

        Args:
            resolver: Cluster resolver (endpoint mapping and handles)
            config: Run configuration (default: ApplyConfig())
            printer: Progress output (default: stdout)
            poller: Status poller override for the convergence wait
        """
        self.resolver = resolver
        self.config = config or ApplyConfig()
        self.printer = printer or ProgressPrinter()
        self.poller = poller

    def run(self, objects: list[DesiredObject], ctx: Optional[RunContext] = None) -> TransactionOutcome:
        """Apply `objects` atomically.

        Args:
            objects: Desired objects in manifest order
            ctx: Run context (default: a context expiring after config.timeout)

        Returns:
            TransactionOutcome describing the terminal state
        """
        if ctx is None:
            ctx = RunContext.with_timeout(self.config.timeout)

        state = TransactionState()
        state.start()

        try:
            plan = build_plan(objects, self.resolver, self.config.default_namespace)
        except AtomicApplyError as e:
            logger.error(f"Planning failed, nothing was changed: {e}")
            return self._finish(state, OutcomeStatus.ABORTED, e)

        for item in plan:
            state.add_item(item.identity, existed=item.existed)

        rollback = RollbackCoordinator(printer=self.printer, state=state)
        try:
            self._apply_and_wait(plan, ctx, rollback, state)
        except ApplyError as e:
            # Applier has already rolled back
            return self._finish(state, OutcomeStatus.ROLLED_BACK, e)
        except (ConvergenceTimeoutError, ConvergenceFailureError) as e:
            logger.error(f"Convergence failed: {e}")
            try:
                rollback.rollback(plan, trigger=e)
            except RollbackError as rollback_error:
                return self._finish(state, OutcomeStatus.ROLLBACK_FAILED, rollback_error)
            return self._finish(state, OutcomeStatus.ROLLED_BACK, e)
        except RollbackError as e:
            return self._finish(state, OutcomeStatus.ROLLBACK_FAILED, e)

        self.printer.success()
        message = (f"applied {len(plan)} resource(s)" if len(plan)
                   else "no trackable resources")
        return self._finish(state, OutcomeStatus.SUCCEEDED, message=message)

    def _apply_and_wait(self, plan: Plan, ctx: RunContext,
                        rollback: RollbackCoordinator, state: TransactionState) -> None:
        applier = Applier(rollback, field_manager=self.config.field_manager, state=state)
        applier.apply(plan, ctx)

        watcher = ConvergenceWatcher(
            interval=self.config.poll_interval,
            printer=self.printer,
            poller=self.poller,
        )
        watcher.wait(ctx, plan)
        for item_state in state.items:
            item_state.current()

    def _finish(self, state: TransactionState, status: OutcomeStatus,
                error: Optional[AtomicApplyError] = None, message: str = '') -> TransactionOutcome:
        state.finish()
        outcome = TransactionOutcome(
            status=status,
            items=state.items,
            error=error,
            message=message or (error.message if error is not None else ''),
            duration=state.duration or 0.0,
        )
        log = logger.info if outcome.success else logger.error
        log(f"Transaction {status}: {outcome.message}")
        return outcome
