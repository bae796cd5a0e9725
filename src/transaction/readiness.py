"""Readiness evaluation for convergence tracking.

Computes a ConvergenceState for a live object. Kind-specific rules live in
a registry keyed by (group, kind) so new kinds can be supported without
touching the aggregation logic:

    @register_readiness('apps', 'Deployment')
    def _deployment(obj):
        ...

Objects without a registered rule fall back to generic condition checks
(Ready, Reconciling, Stalled) and observedGeneration tracking.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)


class ConvergenceState(str, Enum):
    """Per-resource convergence state."""
    UNKNOWN = 'Unknown'
    IN_PROGRESS = 'InProgress'
    CURRENT = 'Current'
    FAILED = 'Failed'
    NOT_FOUND = 'NotFound'

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class StatusResult:
    """Evaluated state plus a short human explanation."""
    state: ConvergenceState
    message: str = ''


Evaluator = Callable[[dict], StatusResult]

# Registry of kind-specific readiness rules
_evaluators: dict[tuple[str, str], Evaluator] = {}


def register_readiness(group: str, kind: str) -> Callable[[Evaluator], Evaluator]:
    """Decorator to register a readiness rule for (group, kind)."""
    def decorator(fn: Evaluator) -> Evaluator:
        _evaluators[(group, kind)] = fn
        return fn
    return decorator


def get_evaluator(group: str, kind: str) -> Optional[Evaluator]:
    return _evaluators.get((group, kind))


def list_evaluators() -> list[str]:
    """List registered kinds as 'Kind.group' strings."""
    return sorted(f"{kind}.{group}" if group else kind for group, kind in _evaluators)


def _current(message: str = 'Resource is current') -> StatusResult:
    return StatusResult(ConvergenceState.CURRENT, message)


def _in_progress(message: str) -> StatusResult:
    return StatusResult(ConvergenceState.IN_PROGRESS, message)


def _failed(message: str) -> StatusResult:
    return StatusResult(ConvergenceState.FAILED, message)


def _status(obj: dict) -> dict:
    status = obj.get('status')
    return status if isinstance(status, dict) else {}


def _spec(obj: dict) -> dict:
    return obj.get('spec') or {}


def _int(value, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def get_condition(obj: dict, cond_type: str) -> Optional[dict]:
    """Return the status condition of `cond_type`, if present."""
    for cond in _status(obj).get('conditions') or []:
        if isinstance(cond, dict) and cond.get('type') == cond_type:
            return cond
    return None


def _condition_is(obj: dict, cond_type: str, value: str) -> bool:
    cond = get_condition(obj, cond_type)
    return cond is not None and cond.get('status') == value


def _condition_message(obj: dict, cond_type: str) -> str:
    cond = get_condition(obj, cond_type) or {}
    return cond.get('message') or cond.get('reason') or cond_type


def _generation_pending(obj: dict) -> Optional[StatusResult]:
    """InProgress if the controller has not observed the latest generation."""
    generation = (obj.get('metadata') or {}).get('generation')
    observed = _status(obj).get('observedGeneration')
    if generation is None or observed is None:
        return None
    if _int(observed) != _int(generation):
        return _in_progress(
            f"{obj.get('kind', 'Resource')} generation is {generation}, "
            f"but latest observed generation is {observed}")
    return None


def _generic_conditions(obj: dict) -> StatusResult:
    """Condition-based fallback for kinds without a registered rule."""
    if _condition_is(obj, 'Stalled', 'True'):
        return _failed(_condition_message(obj, 'Stalled'))
    if _condition_is(obj, 'Reconciling', 'True'):
        return _in_progress(_condition_message(obj, 'Reconciling'))
    if _condition_is(obj, 'Ready', 'False'):
        return _in_progress(_condition_message(obj, 'Ready'))
    if _condition_is(obj, 'Ready', 'True'):
        return _current(_condition_message(obj, 'Ready'))
    return _current()


def evaluate(obj: Optional[dict]) -> StatusResult:
    """Compute the ConvergenceState of a live object (None = not found)."""
    if obj is None:
        return StatusResult(ConvergenceState.NOT_FOUND, 'Resource not found')

    try:
        return _evaluate(obj)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        kind = obj.get('kind') if isinstance(obj, dict) else type(obj).__name__
        logger.debug(f"Readiness check for {kind} failed on malformed object: {e}")
        return StatusResult(ConvergenceState.UNKNOWN, f"cannot evaluate status: {e}")


def _evaluate(obj: dict) -> StatusResult:
    metadata = obj.get('metadata') or {}
    if metadata.get('deletionTimestamp'):
        return _in_progress('Resource scheduled for deletion')

    if pending := _generation_pending(obj):
        return pending

    api_version = obj.get('apiVersion') or ''
    group = api_version.split('/', 1)[0] if '/' in api_version else ''
    evaluator = get_evaluator(group, obj.get('kind', ''))
    if evaluator is None:
        return _generic_conditions(obj)
    return evaluator(obj)


def aggregate(states: Iterable[ConvergenceState],
              desired: ConvergenceState = ConvergenceState.CURRENT) -> ConvergenceState:
    """Reduce per-resource states to a single aggregate.

    The aggregate equals `desired` only if every state does (an empty set
    trivially does). Otherwise a Failed resource makes the aggregate Failed;
    anything else keeps it Unknown.
    """
    states = list(states)
    if all(state == desired for state in states):
        return desired
    if any(state == ConvergenceState.FAILED for state in states):
        return ConvergenceState.FAILED
    return ConvergenceState.UNKNOWN


# Built-in rules ###############################################################


@register_readiness('apps', 'Deployment')
def _deployment(obj: dict) -> StatusResult:
    spec, status = _spec(obj), _status(obj)
    desired = _int(spec.get('replicas', 1), 1)

    progressing = get_condition(obj, 'Progressing')
    if progressing and progressing.get('reason') == 'ProgressDeadlineExceeded':
        return _failed(f"Progress deadline exceeded: {progressing.get('message', '')}".strip())

    if spec.get('paused'):
        return _in_progress('Deployment is paused')

    updated = _int(status.get('updatedReplicas'))
    total = _int(status.get('replicas'))
    ready = _int(status.get('readyReplicas'))
    available = _int(status.get('availableReplicas'))

    if updated < desired:
        return _in_progress(f"Updated: {updated}/{desired}")
    if total > updated:
        return _in_progress(f"Pending termination: {total - updated}")
    if ready < desired:
        return _in_progress(f"Ready: {ready}/{desired}")
    if available < desired:
        return _in_progress(f"Available: {available}/{desired}")
    if _condition_is(obj, 'Available', 'False'):
        return _in_progress(_condition_message(obj, 'Available'))
    return _current(f"Deployment is available. Replicas: {total}")


@register_readiness('apps', 'StatefulSet')
def _statefulset(obj: dict) -> StatusResult:
    spec, status = _spec(obj), _status(obj)
    desired = _int(spec.get('replicas', 1), 1)
    strategy = spec.get('updateStrategy') or {}

    ready = _int(status.get('readyReplicas'))
    current = _int(status.get('currentReplicas'))
    total = _int(status.get('replicas'))

    if total < desired:
        return _in_progress(f"Replicas: {total}/{desired}")
    if ready < desired:
        return _in_progress(f"Ready: {ready}/{desired}")

    if strategy.get('type', 'RollingUpdate') == 'RollingUpdate':
        partition = _int((strategy.get('rollingUpdate') or {}).get('partition'))
        if partition > 0:
            updated = _int(status.get('updatedReplicas'))
            if updated < desired - partition:
                return _in_progress(f"Partitioned rollout: {updated}/{desired - partition}")
            return _current(f"Partitioned rollout complete. Updated: {updated}")
        if status.get('updateRevision') != status.get('currentRevision'):
            return _in_progress(f"Waiting for revision {status.get('updateRevision')}")
        if current < desired:
            return _in_progress(f"Current: {current}/{desired}")
    return _current(f"All replicas ready. Replicas: {ready}")


@register_readiness('apps', 'ReplicaSet')
def _replicaset(obj: dict) -> StatusResult:
    desired = _int(_spec(obj).get('replicas', 1), 1)
    status = _status(obj)
    for field_name, label in (('fullyLabeledReplicas', 'Labelled'),
                              ('availableReplicas', 'Available'),
                              ('readyReplicas', 'Ready')):
        value = _int(status.get(field_name))
        if value < desired:
            return _in_progress(f"{label}: {value}/{desired}")
    if _int(status.get('replicas')) > desired:
        return _in_progress(f"Pending termination: {_int(status.get('replicas')) - desired}")
    return _current(f"ReplicaSet is available. Replicas: {desired}")


@register_readiness('apps', 'DaemonSet')
def _daemonset(obj: dict) -> StatusResult:
    status = _status(obj)
    if 'desiredNumberScheduled' not in status:
        return _in_progress('Missing .status.desiredNumberScheduled')
    desired = _int(status.get('desiredNumberScheduled'))
    for field_name, label in (('currentNumberScheduled', 'Scheduled'),
                              ('updatedNumberScheduled', 'Updated'),
                              ('numberAvailable', 'Available'),
                              ('numberReady', 'Ready')):
        value = _int(status.get(field_name))
        if value < desired:
            return _in_progress(f"{label}: {value}/{desired}")
    return _current(f"All replicas scheduled as expected. Replicas: {desired}")


@register_readiness('', 'Pod')
def _pod(obj: dict) -> StatusResult:
    status = _status(obj)
    phase = status.get('phase', '')
    if phase == 'Succeeded':
        return _current('Pod has completed successfully')
    if phase == 'Failed':
        return _failed(f"Pod has failed: {status.get('reason') or status.get('message', '')}".strip())

    for container in status.get('containerStatuses') or []:
        waiting = (container.get('state') or {}).get('waiting') or {}
        if waiting.get('reason') in ('CrashLoopBackOff', 'ImagePullBackOff', 'ErrImagePull',
                                     'CreateContainerConfigError', 'InvalidImageName'):
            return _failed(f"Container {container.get('name')}: {waiting['reason']}")

    if phase == 'Running' and _condition_is(obj, 'Ready', 'True'):
        return _current('Pod is Ready')
    return _in_progress(f"Pod phase: {phase or 'Pending'}")


@register_readiness('batch', 'Job')
def _job(obj: dict) -> StatusResult:
    if _condition_is(obj, 'Failed', 'True'):
        return _failed(f"Job failed: {_condition_message(obj, 'Failed')}")
    if _condition_is(obj, 'Complete', 'True'):
        return _current('Job completed')
    if _status(obj).get('startTime'):
        return _current(f"Job in progress. Active: {_int(_status(obj).get('active'))}")
    return _in_progress('Job not started')


@register_readiness('', 'PersistentVolumeClaim')
def _pvc(obj: dict) -> StatusResult:
    phase = _status(obj).get('phase', '')
    if phase == 'Bound':
        return _current('PVC is Bound')
    if phase == 'Lost':
        return _failed('PVC lost its underlying volume')
    return _in_progress(f"PVC is not Bound. Phase: {phase or 'Pending'}")


@register_readiness('', 'Namespace')
def _namespace(obj: dict) -> StatusResult:
    phase = _status(obj).get('phase', 'Active')
    if phase == 'Active':
        return _current('Namespace is Active')
    return _in_progress(f"Namespace is {phase}")


@register_readiness('', 'Service')
def _service(obj: dict) -> StatusResult:
    if _spec(obj).get('type') == 'LoadBalancer':
        ingress = ((_status(obj).get('loadBalancer') or {}).get('ingress')) or []
        if not ingress:
            return _in_progress('Waiting for load balancer ingress')
    return _current('Service is ready')


@register_readiness('apiextensions.k8s.io', 'CustomResourceDefinition')
def _crd(obj: dict) -> StatusResult:
    if _condition_is(obj, 'NamesAccepted', 'False'):
        return _failed(f"CRD names not accepted: {_condition_message(obj, 'NamesAccepted')}")
    if _condition_is(obj, 'Established', 'True'):
        return _current('CRD is established')
    return _in_progress('CRD is not established')
