"""Transaction state and terminal outcome for atomic apply.

Tracks per-item status (pending, applied, current, restored, deleted,
failed) while a run progresses and summarises the run as a
TransactionOutcome. Nothing is persisted: the outcome lives only as long
as the process.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from errors import AtomicApplyError
from manifest import ResourceIdentity


class OutcomeStatus(str, Enum):
    """Terminal status of a run."""
    SUCCEEDED = 'succeeded'              # every resource Current
    ABORTED = 'aborted'                  # failed before any mutation
    ROLLED_BACK = 'rolled_back'          # failed, cluster restored
    ROLLBACK_FAILED = 'rollback_failed'  # failed, restore incomplete

    def __str__(self) -> str:
        return self.value


@dataclass
class ItemState:
    """Per-item execution state.

    Attributes:
        identity: Resource identity
        existed: True if the resource was live before the run
        status: pending, applied, current, restored, deleted, failed
        error: Error message if this item failed
    """
    identity: ResourceIdentity
    existed: bool = False
    status: str = 'pending'
    error: Optional[str] = None

    def applied(self) -> None:
        self.status = 'applied'

    def current(self) -> None:
        self.status = 'current'

    def restored(self) -> None:
        self.status = 'restored'

    def deleted(self) -> None:
        self.status = 'deleted'

    def fail(self, error: str) -> None:
        self.status = 'failed'
        self.error = error

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'kind': self.identity.kind,
            'group': self.identity.group,
            'namespace': self.identity.namespace,
            'name': self.identity.name,
            'existed': self.existed,
            'status': self.status,
        }
        if self.error is not None:
            d['error'] = self.error
        return d


class TransactionState:
    """Run-level state: ordered item states plus timing."""

    def __init__(self):
        self._items: list[ItemState] = []
        self.started_at: Optional[float] = None
        self.completed_at: Optional[float] = None

    def add_item(self, identity: ResourceIdentity, existed: bool = False) -> ItemState:
        """Register an item for tracking (plan order)."""
        state = ItemState(identity=identity, existed=existed)
        self._items.append(state)
        return state

    def item(self, index: int) -> ItemState:
        return self._items[index]

    @property
    def items(self) -> list[ItemState]:
        return list(self._items)

    def start(self) -> None:
        self.started_at = time.time()

    def finish(self) -> None:
        self.completed_at = time.time()

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return self.completed_at - self.started_at
        return None


@dataclass
class TransactionOutcome:
    """Terminal result of a run.

    Returned instead of exiting the process so CLI and library callers can
    both act on it.

    Attributes:
        status: Terminal status
        items: Per-item states in plan order
        error: The error that failed the run (None on success)
        message: Short summary line
        duration: Run wall-clock seconds
    """
    status: OutcomeStatus
    items: list[ItemState] = field(default_factory=list)
    error: Optional[AtomicApplyError] = None
    message: str = ''
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.status == OutcomeStatus.SUCCEEDED

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    @property
    def rolled_back(self) -> bool:
        return self.status == OutcomeStatus.ROLLED_BACK

    def raise_for_status(self) -> None:
        """Raise the run's error if it did not succeed."""
        if self.error is not None:
            raise self.error

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'status': str(self.status),
            'success': self.success,
            'message': self.message,
            'duration_seconds': round(self.duration, 2),
            'items': [item.to_dict() for item in self.items],
        }
        if self.error is not None:
            d['error'] = {'code': self.error.code, 'message': self.error.message}
        return d
