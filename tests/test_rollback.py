"""Tests for transaction.rollback - restore and delete in plan order."""

import pytest

from cluster.base import ClusterError
from errors import ApplyError, RollbackError
from fakes import config_map
from manifest import DesiredObject
from transaction.outcome import TransactionState
from transaction.plan import build_plan
from transaction.rollback import RollbackCoordinator


def _plan(resolver, *bodies):
    return build_plan([DesiredObject(body=b) for b in bodies], resolver)


def _state_for(plan):
    state = TransactionState()
    for item in plan:
        state.add_item(item.identity, existed=item.existed)
    return state


class TestRollbackCoordinator:
    """Tests for RollbackCoordinator.rollback."""

    def test_restores_existing_and_deletes_new(self, cluster, resolver, printer):
        cluster.seed(config_map('old', {'k': 'before'}))
        plan = _plan(resolver, config_map('old', {'k': 'after'}), config_map('new'))
        # Simulate the apply having happened
        cluster.objects[('', 'ConfigMap', 'default', 'old')]['data'] = {'k': 'after'}
        cluster.seed(config_map('new'))

        RollbackCoordinator(printer=printer).rollback(plan)

        assert cluster.lookup('ConfigMap', 'old')['data'] == {'k': 'before'}
        assert cluster.lookup('ConfigMap', 'new') is None

    def test_visits_items_in_plan_order(self, cluster, resolver, printer):
        cluster.seed(config_map('b'))
        plan = _plan(resolver, config_map('c'), config_map('b'), config_map('a'))
        cluster.seed(config_map('c'))
        cluster.seed(config_map('a'))

        RollbackCoordinator(printer=printer).rollback(plan)

        assert cluster.mutations() == [
            ('delete', 'ConfigMap', 'c'),
            ('update', 'ConfigMap', 'b'),
            ('delete', 'ConfigMap', 'a'),
        ]

    def test_already_absent_counts_as_rolled_back(self, cluster, resolver, printer, output):
        plan = _plan(resolver, config_map('never-created'))
        state = _state_for(plan)

        RollbackCoordinator(printer=printer, state=state).rollback(plan)

        assert state.item(0).status == 'deleted'
        assert output.getvalue().splitlines() == ['⟲ rollback ...', 'rollback complete']

    def test_restore_failure_is_terminal(self, cluster, resolver, printer, output):
        cluster.seed(config_map('a'))
        cluster.seed(config_map('b'))
        plan = _plan(resolver, config_map('a'), config_map('b'))
        cluster.fail_on('update', 'a', ClusterError('conflict', status=409))
        state = _state_for(plan)
        trigger = ApplyError(plan[1].identity, 'rejected')

        with pytest.raises(RollbackError) as exc_info:
            RollbackCoordinator(printer=printer, state=state).rollback(plan, trigger=trigger)

        error = exc_info.value
        assert error.action == 'restore'
        assert error.identity == plan[0].identity
        assert error.trigger is trigger
        # Stops at the first failure
        assert ('update', 'ConfigMap', 'b') not in cluster.mutations()
        assert state.item(0).status == 'failed'
        assert 'rollback failed' in output.getvalue()
        assert 'rollback complete' not in output.getvalue()

    def test_delete_failure_is_terminal(self, cluster, resolver, printer):
        plan = _plan(resolver, config_map('a'))
        cluster.seed(config_map('a'))
        cluster.fail_on('delete', 'a')
        with pytest.raises(RollbackError, match='rollback delete failed'):
            RollbackCoordinator(printer=printer).rollback(plan)

    def test_restore_does_not_send_stale_version(self, cluster, resolver, printer):
        cluster.seed(config_map('a', {'k': 'before'}))
        plan = _plan(resolver, config_map('a'))
        # Concurrent writer bumps resourceVersion after planning
        cluster.set_status('ConfigMap', 'a', {'touched': True})

        RollbackCoordinator(printer=printer).rollback(plan)

        assert cluster.lookup('ConfigMap', 'a')['data'] == {'k': 'before'}

    def test_empty_plan(self, resolver, printer, output):
        RollbackCoordinator(printer=printer).rollback(_plan(resolver))
        assert output.getvalue().splitlines() == ['⟲ rollback ...', 'rollback complete']
