"""Protocols for the cluster collaborators used by the transaction engine.

The engine only talks to the cluster through these interfaces so it can be
driven by the Kubernetes adapter (cluster.kube) or by in-memory fakes.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable


class ClusterError(Exception):
    """The control plane rejected a request.

    Attributes:
        status: HTTP status code if known (e.g. 409, 422)
    """

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class NotFoundError(ClusterError):
    """The addressed resource does not exist."""

    def __init__(self, message: str):
        super().__init__(message, status=404)


@dataclass(frozen=True)
class Endpoint:
    """Resolved API endpoint for a kind/version.

    Attributes:
        group: API group ('' for core)
        version: API version within the group
        kind: Resource kind (e.g. 'Deployment')
        resource: Plural resource name (e.g. 'deployments')
        namespaced: True if objects of this kind live in a namespace
        native: Adapter-specific handle (e.g. kubernetes dynamic Resource)
    """
    group: str
    version: str
    kind: str
    resource: str
    namespaced: bool = True
    native: Any = field(default=None, compare=False, repr=False)

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version


@runtime_checkable
class ResourceHandle(Protocol):
    """Endpoint bound to a namespace (or cluster scope)."""

    def get(self, name: str) -> Optional[dict]:
        """Return the live object, or None if it does not exist."""

    def patch(self, name: str, payload: str, *, field_manager: str, force: bool) -> dict:
        """Upsert via server-side apply of a JSON payload."""

    def update(self, name: str, obj: dict) -> dict:
        """Overwrite the live object with `obj`."""

    def delete(self, name: str) -> None:
        """Delete the object. Raises NotFoundError if absent."""


@runtime_checkable
class ResourceResolver(Protocol):
    """Maps kind/version to endpoints and binds handles."""

    def resolve(self, api_version: str, kind: str) -> Endpoint:
        """Resolve to an Endpoint. Raises ResourceMappingError on failure."""

    def reset_cache(self) -> None:
        """Drop cached discovery data so the next resolve refetches it."""

    def bind(self, endpoint: Endpoint, namespace: Optional[str]) -> ResourceHandle:
        """Return a handle for `endpoint` scoped to `namespace`."""
