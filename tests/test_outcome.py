"""Tests for transaction.outcome module."""

import time

import pytest

from errors import ApplyError, RollbackError
from manifest import ResourceIdentity
from transaction.outcome import ItemState, OutcomeStatus, TransactionOutcome, TransactionState

WEB = ResourceIdentity('apps', 'Deployment', 'default', 'web')
TEAM = ResourceIdentity('', 'Namespace', '', 'team')


class TestItemState:
    """Tests for ItemState dataclass."""

    def test_defaults(self):
        state = ItemState(identity=WEB)
        assert state.status == 'pending'
        assert state.existed is False
        assert state.error is None

    def test_transitions(self):
        state = ItemState(identity=WEB)
        state.applied()
        assert state.status == 'applied'
        state.current()
        assert state.status == 'current'
        state.restored()
        assert state.status == 'restored'
        state.deleted()
        assert state.status == 'deleted'

    def test_fail(self):
        state = ItemState(identity=WEB)
        state.fail('rejected')
        assert state.status == 'failed'
        assert state.error == 'rejected'

    def test_to_dict(self):
        state = ItemState(identity=WEB, existed=True, status='restored')
        assert state.to_dict() == {
            'kind': 'Deployment',
            'group': 'apps',
            'namespace': 'default',
            'name': 'web',
            'existed': True,
            'status': 'restored',
        }

    def test_to_dict_includes_error(self):
        state = ItemState(identity=TEAM)
        state.fail('forbidden')
        assert state.to_dict()['error'] == 'forbidden'


class TestTransactionState:
    """Tests for TransactionState."""

    def test_items_in_order(self):
        state = TransactionState()
        state.add_item(WEB, existed=True)
        state.add_item(TEAM)
        assert [item.identity for item in state.items] == [WEB, TEAM]
        assert state.item(0).existed

    def test_duration(self):
        state = TransactionState()
        assert state.duration is None
        state.start()
        time.sleep(0.01)
        state.finish()
        assert state.duration > 0


class TestTransactionOutcome:
    """Tests for TransactionOutcome."""

    def test_success(self):
        outcome = TransactionOutcome(status=OutcomeStatus.SUCCEEDED, message='applied 1 resource(s)')
        assert outcome.success
        assert outcome.exit_code == 0
        assert not outcome.rolled_back
        outcome.raise_for_status()

    def test_rolled_back(self):
        error = ApplyError(WEB, 'rejected')
        outcome = TransactionOutcome(status=OutcomeStatus.ROLLED_BACK, error=error)
        assert not outcome.success
        assert outcome.exit_code == 1
        assert outcome.rolled_back
        with pytest.raises(ApplyError):
            outcome.raise_for_status()

    def test_to_dict(self):
        error = RollbackError(WEB, 'restore', 'conflict')
        outcome = TransactionOutcome(
            status=OutcomeStatus.ROLLBACK_FAILED,
            items=[ItemState(identity=WEB, existed=True, status='failed', error='conflict')],
            error=error,
            message=error.message,
            duration=1.234,
        )
        d = outcome.to_dict()
        assert d['status'] == 'rollback_failed'
        assert d['success'] is False
        assert d['duration_seconds'] == 1.23
        assert d['error']['code'] == 'E500'
        assert d['items'][0]['name'] == 'web'

    def test_status_str(self):
        assert str(OutcomeStatus.ROLLED_BACK) == 'rolled_back'
