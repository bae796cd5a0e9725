"""Error taxonomy for atomic apply.

Every error carries a short code so operators can tell at a glance which
stage failed and whether a rollback ran:

- E1xx: manifest reading (nothing touched)
- E2xx: planning (nothing touched)
- E3xx: apply (rolled back before surfacing)
- E4xx: convergence wait (rolled back before surfacing)
- E5xx: rollback (terminal, manual intervention required)
- E6xx: configuration
"""

from typing import Optional


class AtomicApplyError(Exception):
    """Base exception for atomic apply errors."""

    # Errors raised after mutations started are rolled back before surfacing
    triggers_rollback = False

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


class ManifestParseError(AtomicApplyError):
    """Manifest document could not be decoded or is malformed."""

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        if source:
            message = f"{source}: {message}"
        super().__init__("E100", message)


class ResourceMappingError(AtomicApplyError):
    """Kind/version could not be mapped to an endpoint, even after a cache reset."""

    def __init__(self, api_version: str, kind: str, reason: str = ''):
        self.api_version = api_version
        self.kind = kind
        message = f"could not map {kind} ({api_version})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__("E200", message)


class BackupError(AtomicApplyError):
    """Live object could not be serialized into a backup snapshot."""

    def __init__(self, identity, reason: str):
        self.identity = identity
        super().__init__("E201", f"cannot back up {identity}: {reason}")


class ApplyError(AtomicApplyError):
    """Remote rejected a mutation, or the desired object could not be serialized."""

    triggers_rollback = True

    def __init__(self, identity, reason: str):
        self.identity = identity
        super().__init__("E300", f"apply failed for {identity}: {reason}")


class ConvergenceTimeoutError(AtomicApplyError):
    """Deadline elapsed before every tracked resource reached Current.

    Attributes:
        not_ready: Identities still not Current at the deadline, in plan order
        facts: One human-readable "resource not ready" line per identity
    """

    triggers_rollback = True

    def __init__(self, not_ready: list, facts: list[str], deadline_error: str):
        self.not_ready = list(not_ready)
        self.facts = list(facts)
        self.deadline_error = deadline_error
        lines = self.facts + [deadline_error]
        super().__init__("E400", '\n'.join(lines))


class ConvergenceFailureError(AtomicApplyError):
    """Remote reported a terminal failure for a tracked resource."""

    triggers_rollback = True

    def __init__(self, message: str, identity=None):
        self.identity = identity
        super().__init__("E401", message)


class RollbackError(AtomicApplyError):
    """Restoring or deleting a resource during rollback failed.

    Terminal: the cluster is left partially restored and must be
    reconciled manually.

    Attributes:
        identity: Identity of the plan item whose rollback failed
        action: 'restore' or 'delete'
        trigger: The apply/wait error that started the rollback
    """

    def __init__(self, identity, action: str, reason: str, trigger: Optional[Exception] = None):
        self.identity = identity
        self.action = action
        self.trigger = trigger
        message = (f"rollback {action} failed for {identity}: {reason}; "
                   "manual intervention required")
        super().__init__("E500", message)


class ConfigError(AtomicApplyError):
    """Invalid configuration value or settings file."""

    def __init__(self, message: str):
        super().__init__("E600", message)
