"""Plan construction for atomic apply.

Turns an ordered list of DesiredObjects into a Plan: one PlanItem per
object, in input order, each bound to its endpoint and carrying a backup
of the live object when it already existed.
"""

import copy
import json
import logging
from dataclasses import dataclass
from typing import Iterator, Optional

from cluster.base import Endpoint, ResourceHandle, ResourceResolver
from config import DEFAULT_NAMESPACE
from errors import BackupError, ResourceMappingError
from manifest import DesiredObject, ResourceIdentity

logger = logging.getLogger(__name__)

# Server-populated metadata dropped from backups
VOLATILE_METADATA = ('managedFields', 'resourceVersion', 'uid', 'creationTimestamp')


def strip_volatile(obj: dict) -> dict:
    """Remove status and volatile metadata from an object dict, in place.

    Returns:
        The same dict, for chaining
    """
    obj.pop('status', None)
    metadata = obj.get('metadata')
    if isinstance(metadata, dict):
        for key in VOLATILE_METADATA:
            metadata.pop(key, None)
    return obj


@dataclass(frozen=True)
class PlanItem:
    """A single resource in the plan.

    Attributes:
        desired: Desired object, namespace already resolved
        endpoint: Resolved API endpoint
        handle: Endpoint bound to the object's namespace
        existed: True if the object was live before the run
        backup: JSON snapshot of the live object (existed only)
        prior_version: resourceVersion observed at planning time (existed only)
    """
    desired: DesiredObject
    endpoint: Endpoint
    handle: ResourceHandle
    existed: bool = False
    backup: Optional[str] = None
    prior_version: Optional[str] = None

    @property
    def identity(self) -> ResourceIdentity:
        return self.desired.identity(namespaced=self.endpoint.namespaced)

    @property
    def name(self) -> str:
        return self.desired.name

    def restore_payload(self) -> dict:
        """Decode the backup snapshot for a full-overwrite restore."""
        if self.backup is None:
            raise ValueError(f"{self.identity} has no backup")
        return json.loads(self.backup)


class Plan:
    """Ordered, immutable sequence of PlanItems.

    The same order is used for apply, wait target enumeration, and rollback.
    """

    def __init__(self, items: list[PlanItem]):
        self._items = tuple(items)

    def __iter__(self) -> Iterator[PlanItem]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int) -> PlanItem:
        return self._items[index]

    @property
    def items(self) -> list[PlanItem]:
        return list(self._items)

    def identities(self) -> list[ResourceIdentity]:
        """Identities in plan order."""
        return [item.identity for item in self._items]

    def __repr__(self) -> str:
        existing = sum(1 for item in self._items if item.existed)
        return f"Plan({len(self._items)} items, {existing} existing)"


def resolve_endpoint(resolver: ResourceResolver, obj: DesiredObject) -> Endpoint:
    """Resolve an object's kind/version, retrying once after a cache reset.

    Raises:
        ResourceMappingError: If the second attempt also fails
    """
    try:
        return resolver.resolve(obj.api_version, obj.kind)
    except ResourceMappingError as e:
        logger.debug(f"Mapping {obj.kind} ({obj.api_version}) failed, resetting cache: {e}")
        resolver.reset_cache()
        return resolver.resolve(obj.api_version, obj.kind)


def resolve_namespace(obj: DesiredObject, default_namespace: Optional[str]) -> str:
    """Manifest namespace > caller default > literal default."""
    return obj.namespace or default_namespace or DEFAULT_NAMESPACE


def _snapshot(live: dict, identity: ResourceIdentity) -> tuple[str, Optional[str]]:
    """Serialize a live object for backup. Returns (backup, resourceVersion)."""
    prior_version = (live.get('metadata') or {}).get('resourceVersion')
    try:
        backup = json.dumps(strip_volatile(copy.deepcopy(live)), sort_keys=True)
    except (TypeError, ValueError) as e:
        raise BackupError(identity, str(e)) from e
    return backup, prior_version


def plan_item(obj: DesiredObject, resolver: ResourceResolver,
              default_namespace: Optional[str] = None) -> PlanItem:
    """Build the PlanItem for a single desired object."""
    endpoint = resolve_endpoint(resolver, obj)

    namespace = None
    if endpoint.namespaced:
        namespace = resolve_namespace(obj, default_namespace)
        if obj.namespace != namespace:
            obj = obj.with_namespace(namespace)

    handle = resolver.bind(endpoint, namespace)
    identity = obj.identity(namespaced=endpoint.namespaced)

    try:
        live = handle.get(obj.name)
    except Exception as e:
        # A failed lookup plans the object as new; rollback will delete it
        logger.warning(f"Lookup of {identity} failed, treating as absent: {e}")
        live = None

    if live is None:
        logger.debug(f"Planned {identity} (new)")
        return PlanItem(desired=obj, endpoint=endpoint, handle=handle)

    backup, prior_version = _snapshot(live, identity)
    logger.debug(f"Planned {identity} (existing, resourceVersion={prior_version})")
    return PlanItem(
        desired=obj,
        endpoint=endpoint,
        handle=handle,
        existed=True,
        backup=backup,
        prior_version=prior_version,
    )


def build_plan(objects: list[DesiredObject], resolver: ResourceResolver,
               default_namespace: Optional[str] = None) -> Plan:
    """Build a Plan with the same length and order as `objects`.

    Args:
        objects: Desired objects in manifest order
        resolver: Resolves endpoints and binds handles
        default_namespace: Namespace for namespaced objects that name none

    Returns:
        Plan instance

    Raises:
        ResourceMappingError: If a kind cannot be mapped (no mutation has happened)
        BackupError: If a live object cannot be serialized (no mutation has happened)
    """
    items = [plan_item(obj, resolver, default_namespace) for obj in objects]
    plan = Plan(items)
    logger.info(f"Built plan: {len(plan)} item(s), "
                f"{sum(1 for item in plan if item.existed)} existing")
    return plan
