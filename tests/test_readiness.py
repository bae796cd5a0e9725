"""Tests for transaction.readiness - per-kind rules and aggregation."""

import pytest

from transaction.readiness import (
    ConvergenceState,
    StatusResult,
    aggregate,
    evaluate,
    get_condition,
    get_evaluator,
    list_evaluators,
    register_readiness,
)

CURRENT = ConvergenceState.CURRENT
IN_PROGRESS = ConvergenceState.IN_PROGRESS
FAILED = ConvergenceState.FAILED
UNKNOWN = ConvergenceState.UNKNOWN


def _deployment(replicas=2, generation=1, **status):
    return {
        'apiVersion': 'apps/v1',
        'kind': 'Deployment',
        'metadata': {'name': 'web', 'generation': generation},
        'spec': {'replicas': replicas},
        'status': status,
    }


def _ready_status(replicas=2, observed=1):
    return dict(observedGeneration=observed, replicas=replicas, updatedReplicas=replicas,
                readyReplicas=replicas, availableReplicas=replicas)


class TestRegistry:
    """Tests for the readiness rule registry."""

    def test_builtin_rules_registered(self):
        names = list_evaluators()
        assert 'Deployment.apps' in names
        assert 'Pod' in names
        assert 'Job.batch' in names

    def test_register_custom_rule(self):
        @register_readiness('example.com', 'Widget')
        def _widget(obj):
            return StatusResult(CURRENT, 'widget ok')

        assert get_evaluator('example.com', 'Widget') is _widget
        obj = {'apiVersion': 'example.com/v1', 'kind': 'Widget', 'metadata': {'name': 'w'}}
        assert evaluate(obj).message == 'widget ok'

    def test_unregistered_kind(self):
        assert get_evaluator('example.com', 'Gadget') is None


class TestEvaluateGeneric:
    """Tests for checks common to every kind."""

    def test_none_is_not_found(self):
        assert evaluate(None).state == ConvergenceState.NOT_FOUND

    def test_deletion_in_progress(self):
        obj = {'apiVersion': 'v1', 'kind': 'ConfigMap',
               'metadata': {'name': 'a', 'deletionTimestamp': '2024-01-01T00:00:00Z'}}
        assert evaluate(obj).state == IN_PROGRESS

    def test_observed_generation_lag(self):
        obj = _deployment(generation=3, **_ready_status(observed=2))
        result = evaluate(obj)
        assert result.state == IN_PROGRESS
        assert 'generation' in result.message

    def test_plain_object_is_current(self):
        obj = {'apiVersion': 'v1', 'kind': 'ConfigMap', 'metadata': {'name': 'a'}, 'data': {}}
        assert evaluate(obj).state == CURRENT

    @pytest.mark.parametrize('conditions,expected', [
        ([{'type': 'Ready', 'status': 'True'}], CURRENT),
        ([{'type': 'Ready', 'status': 'False'}], IN_PROGRESS),
        ([{'type': 'Reconciling', 'status': 'True'}], IN_PROGRESS),
        ([{'type': 'Stalled', 'status': 'True', 'message': 'bad config'}], FAILED),
    ])
    def test_generic_conditions(self, conditions, expected):
        obj = {'apiVersion': 'example.com/v1', 'kind': 'Thing', 'metadata': {'name': 't'},
               'status': {'conditions': conditions}}
        assert evaluate(obj).state == expected

    def test_malformed_status_is_unknown(self):
        obj = _deployment(**_ready_status())
        obj['spec'] = ['not', 'a', 'mapping']
        assert evaluate(obj).state == UNKNOWN

    def test_non_mapping_status_ignored(self):
        obj = {'apiVersion': 'v1', 'kind': 'ConfigMap', 'metadata': {'name': 'a', 'generation': 1},
               'status': 'garbage'}
        assert evaluate(obj).state == CURRENT

    @pytest.mark.parametrize('obj', [
        {'apiVersion': 'v1', 'kind': 'ConfigMap', 'metadata': ['not', 'a', 'mapping']},
        {'apiVersion': 42, 'kind': 'ConfigMap', 'metadata': {'name': 'a'}},
    ])
    def test_malformed_object_is_unknown(self, obj):
        result = evaluate(obj)
        assert result.state == UNKNOWN
        assert 'cannot evaluate status' in result.message

    def test_null_api_version_uses_generic_rules(self):
        obj = {'apiVersion': None, 'kind': 'Thing', 'metadata': {'name': 't'}}
        assert evaluate(obj).state == CURRENT

    def test_get_condition(self):
        obj = {'status': {'conditions': [{'type': 'Ready', 'status': 'True'}]}}
        assert get_condition(obj, 'Ready') == {'type': 'Ready', 'status': 'True'}
        assert get_condition(obj, 'Available') is None


class TestDeploymentRule:
    """Tests for the Deployment rule."""

    def test_ready(self):
        assert evaluate(_deployment(**_ready_status())).state == CURRENT

    def test_no_status_yet(self):
        assert evaluate(_deployment()).state == IN_PROGRESS

    def test_partially_ready(self):
        status = _ready_status()
        status['readyReplicas'] = 1
        result = evaluate(_deployment(**status))
        assert result.state == IN_PROGRESS
        assert result.message == 'Ready: 1/2'

    def test_old_replicas_terminating(self):
        status = _ready_status()
        status['replicas'] = 3
        assert evaluate(_deployment(**status)).state == IN_PROGRESS

    def test_progress_deadline_exceeded(self):
        status = _ready_status()
        status['conditions'] = [{'type': 'Progressing', 'status': 'False',
                                 'reason': 'ProgressDeadlineExceeded', 'message': 'timed out'}]
        assert evaluate(_deployment(**status)).state == FAILED


class TestOtherRules:
    """Tests for the remaining built-in rules."""

    def test_pod_running_ready(self):
        obj = {'apiVersion': 'v1', 'kind': 'Pod', 'metadata': {'name': 'p'},
               'status': {'phase': 'Running', 'conditions': [{'type': 'Ready', 'status': 'True'}]}}
        assert evaluate(obj).state == CURRENT

    def test_pod_crash_loop(self):
        obj = {'apiVersion': 'v1', 'kind': 'Pod', 'metadata': {'name': 'p'},
               'status': {'phase': 'Running', 'containerStatuses': [
                   {'name': 'app', 'state': {'waiting': {'reason': 'CrashLoopBackOff'}}}]}}
        assert evaluate(obj).state == FAILED

    def test_job_failed(self):
        obj = {'apiVersion': 'batch/v1', 'kind': 'Job', 'metadata': {'name': 'j'},
               'status': {'conditions': [{'type': 'Failed', 'status': 'True', 'reason': 'BackoffLimitExceeded'}]}}
        assert evaluate(obj).state == FAILED

    def test_pvc_pending(self):
        obj = {'apiVersion': 'v1', 'kind': 'PersistentVolumeClaim', 'metadata': {'name': 'data'},
               'status': {'phase': 'Pending'}}
        assert evaluate(obj).state == IN_PROGRESS

    def test_load_balancer_without_ingress(self):
        obj = {'apiVersion': 'v1', 'kind': 'Service', 'metadata': {'name': 's'},
               'spec': {'type': 'LoadBalancer'}, 'status': {}}
        assert evaluate(obj).state == IN_PROGRESS

    def test_statefulset_revision_pending(self):
        obj = {'apiVersion': 'apps/v1', 'kind': 'StatefulSet', 'metadata': {'name': 'db'},
               'spec': {'replicas': 1},
               'status': {'replicas': 1, 'readyReplicas': 1, 'currentReplicas': 1,
                          'currentRevision': 'db-1', 'updateRevision': 'db-2'}}
        assert evaluate(obj).state == IN_PROGRESS

    def test_crd_established(self):
        obj = {'apiVersion': 'apiextensions.k8s.io/v1', 'kind': 'CustomResourceDefinition',
               'metadata': {'name': 'widgets.example.com'},
               'status': {'conditions': [{'type': 'Established', 'status': 'True'}]}}
        assert evaluate(obj).state == CURRENT


class TestAggregate:
    """Tests for aggregate."""

    def test_all_current(self):
        assert aggregate([CURRENT, CURRENT]) == CURRENT

    def test_empty_is_desired(self):
        assert aggregate([]) == CURRENT

    def test_any_failed(self):
        assert aggregate([CURRENT, FAILED, IN_PROGRESS]) == FAILED

    def test_otherwise_unknown(self):
        assert aggregate([CURRENT, IN_PROGRESS]) == UNKNOWN
        assert aggregate([CURRENT, ConvergenceState.NOT_FOUND]) == UNKNOWN

    def test_str(self):
        assert str(CURRENT) == 'Current'
        assert f"{IN_PROGRESS}" == 'InProgress'
