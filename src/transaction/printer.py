"""Human-facing progress output for atomic apply.

Observational only: nothing printed here affects control flow. Lines are a
human protocol, not a stable machine format:

    ⏳ waiting for resources:
     - Deployment/web      default
    [watch] waiting: Deployment web -> InProgress (namespace: default, desired: Current)
    ✓ success

and on failure:

    ⟲ rollback ...
    rollback complete
"""

import sys
from typing import Mapping, Optional, TextIO

from manifest import ResourceIdentity
from transaction.readiness import ConvergenceState, StatusResult

CLUSTER_SCOPE = '(cluster)'


def select_representative(
    statuses: Mapping[ResourceIdentity, StatusResult],
    desired: ConvergenceState = ConvergenceState.CURRENT,
) -> Optional[tuple[ResourceIdentity, StatusResult]]:
    """Pick the not-yet-desired resource with the smallest name.

    Ties on name are broken by the full identity so the choice is
    deterministic.
    """
    pending = [(identity, result) for identity, result in statuses.items()
               if result.state != desired]
    if not pending:
        return None
    return min(pending, key=lambda pair: (pair[0].name, pair[0]))


def column_widths(identities: list[ResourceIdentity]) -> tuple[int, int]:
    """Widest 'Kind/name' and namespace among `identities`."""
    kind_name = max((len(f"{i.kind}/{i.name}") for i in identities), default=0)
    namespace = max((len(i.namespace or CLUSTER_SCOPE) for i in identities), default=0)
    return kind_name, namespace


class ProgressPrinter:
    """Prints progress lines to a text stream (default: stdout)."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream

    def _print(self, line: str) -> None:
        print(line, file=self.stream or sys.stdout, flush=True)

    def tracking(self, identities: list[ResourceIdentity]) -> None:
        """List the resources about to be waited on."""
        kind_name_width, _ = column_widths(identities)
        self._print("⏳ waiting for resources:")
        for identity in identities:
            kind_name = f"{identity.kind}/{identity.name}"
            namespace = identity.namespace or CLUSTER_SCOPE
            self._print(f" - {kind_name:<{kind_name_width}}  {namespace}")

    def no_resources(self) -> None:
        self._print("✓ no trackable resources")

    def waiting(self, statuses: Mapping[ResourceIdentity, StatusResult],
                desired: ConvergenceState = ConvergenceState.CURRENT) -> None:
        """Print the representative not-ready resource, if any."""
        picked = select_representative(statuses, desired)
        if picked is None:
            return
        identity, result = picked
        self._print(
            f"[watch] waiting: {identity.kind} {identity.name} -> {result.state} "
            f"(namespace: {identity.namespace or CLUSTER_SCOPE}, desired: {desired})"
        )

    def success(self) -> None:
        self._print("✓ success")

    def rollback_started(self) -> None:
        self._print("⟲ rollback ...")

    def rollback_complete(self) -> None:
        self._print("rollback complete")

    def rollback_failed(self, error: Exception) -> None:
        self._print(f"✗ rollback failed: {error}")
