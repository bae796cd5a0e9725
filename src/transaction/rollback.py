"""Rollback for atomic apply.

Restores the cluster to its pre-run state after an apply or convergence
failure. Items are visited in plan order (the same order used for apply):
- Items that existed are overwritten with their backup snapshot (a full
  update, not a patch)
- Items that did not exist are deleted; one that is already absent
  counts as rolled back

The first failure stops the rollback and raises RollbackError. It is not
retried: the operator must reconcile the remaining items by hand.
"""

import logging
from typing import Optional

from cluster.base import NotFoundError
from errors import RollbackError
from transaction.outcome import TransactionState
from transaction.plan import Plan, PlanItem
from transaction.printer import ProgressPrinter

logger = logging.getLogger(__name__)


class RollbackCoordinator:
    """Restores or deletes every plan item, in plan order."""

    def __init__(self, printer: Optional[ProgressPrinter] = None,
                 state: Optional[TransactionState] = None):
        self.printer = printer or ProgressPrinter()
        self.state = state

    def rollback(self, plan: Plan, trigger: Optional[Exception] = None) -> None:
        """Roll back the entire plan.

        Args:
            plan: The plan to undo (including items never applied)
            trigger: The error that caused the rollback

        Raises:
            RollbackError: On the first item that cannot be restored or deleted
        """
        self.printer.rollback_started()
        if trigger is not None:
            logger.warning(f"Rolling back {len(plan)} item(s) after: {trigger}")

        for index, item in enumerate(plan):
            try:
                if item.existed:
                    self._restore(item, trigger)
                    self._mark(index, 'restored')
                else:
                    self._delete(item, trigger)
                    self._mark(index, 'deleted')
            except RollbackError as e:
                if self.state is not None:
                    self.state.item(index).fail(e.message)
                logger.error(str(e))
                self.printer.rollback_failed(e)
                raise

        self.printer.rollback_complete()
        logger.info("Rollback complete")

    def _mark(self, index: int, status: str) -> None:
        if self.state is not None:
            getattr(self.state.item(index), status)()

    def _restore(self, item: PlanItem, trigger: Optional[Exception]) -> None:
        try:
            item.handle.update(item.name, item.restore_payload())
        except Exception as e:
            raise RollbackError(item.identity, 'restore', str(e), trigger=trigger) from e
        logger.info(f"Restored {item.identity}")

    def _delete(self, item: PlanItem, trigger: Optional[Exception]) -> None:
        try:
            item.handle.delete(item.name)
        except NotFoundError:
            logger.debug(f"{item.identity} already absent")
            return
        except Exception as e:
            raise RollbackError(item.identity, 'delete', str(e), trigger=trigger) from e
        logger.info(f"Deleted {item.identity}")
