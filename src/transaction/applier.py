"""Apply phase for atomic apply.

Submits each plan item as a server-side apply (merge patch with forced
ownership under a fixed field manager), one at a time in plan order. The
first failure stops the loop and rolls back the whole plan, including
items that were never reached, before the error is surfaced.
"""

import json
import logging
from typing import Optional

from common import RunContext
from config import FIELD_MANAGER
from errors import ApplyError
from transaction.outcome import TransactionState
from transaction.plan import Plan, PlanItem
from transaction.rollback import RollbackCoordinator

logger = logging.getLogger(__name__)


def serialize(item: PlanItem) -> str:
    """JSON payload for an item's desired object.

    Raises:
        ApplyError: If the object cannot be serialized
    """
    try:
        return json.dumps(item.desired.body)
    except (TypeError, ValueError) as e:
        raise ApplyError(item.identity, f"cannot serialize desired object: {e}") from e


class Applier:
    """Applies a plan, rolling it back on the first failure.

    Note: each patch blocks until the transport returns; there is no
    per-call timeout beyond the transport's own. The run deadline is
    checked between items.
    """

    def __init__(self, rollback: RollbackCoordinator, field_manager: str = FIELD_MANAGER,
                 state: Optional[TransactionState] = None):
        self.rollback = rollback
        self.field_manager = field_manager
        self.state = state

    def apply(self, plan: Plan, ctx: Optional[RunContext] = None) -> None:
        """Apply every item in plan order.

        Raises:
            ApplyError: After a successful rollback of the whole plan
            RollbackError: If the rollback itself failed
        """
        for index, item in enumerate(plan):
            try:
                self._apply_item(item, ctx)
            except ApplyError as e:
                logger.error(str(e))
                if self.state is not None:
                    self.state.item(index).fail(e.message)
                self.rollback.rollback(plan, trigger=e)
                raise
            if self.state is not None:
                self.state.item(index).applied()

        logger.info(f"Applied {len(plan)} item(s)")

    def _apply_item(self, item: PlanItem, ctx: Optional[RunContext]) -> None:
        identity = item.identity
        if ctx is not None and ctx.done:
            raise ApplyError(identity, ctx.err())

        payload = serialize(item)
        action = 'configured' if item.existed else 'created'
        try:
            item.handle.patch(item.name, payload, field_manager=self.field_manager, force=True)
        except Exception as e:
            raise ApplyError(identity, str(e) or type(e).__name__) from e
        logger.info(f"{identity} {action}")
