"""Kubernetes adapter for the cluster collaborators.

Uses the kubernetes dynamic client:
- Discovery-backed resolution of apiVersion/kind to API resources, with
  cache invalidation for stale discovery data
- Server-side apply (forced ownership) for the apply phase
- Replace (full overwrite) and delete for rollback

Connection setup tries in-cluster service account config first and falls
back to kubeconfig, unless a kubeconfig path or context is given explicitly.
"""

import json
import logging
from typing import Optional

import kubernetes
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import (
    DynamicApiError,
    NotFoundError as KubeNotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
)

from cluster.base import ClusterError, Endpoint, NotFoundError
from errors import ResourceMappingError
from manifest import split_api_version

logger = logging.getLogger(__name__)


def _describe(exc: DynamicApiError) -> str:
    """Short one-line description of an API error."""
    try:
        return exc.summary()
    except Exception:  # summary() parses the response body
        return str(exc).splitlines()[0] if str(exc) else type(exc).__name__


def _translate(exc: DynamicApiError) -> ClusterError:
    return ClusterError(_describe(exc), status=getattr(exc, 'status', None))


def connect(kubeconfig: Optional[str] = None, context: Optional[str] = None) -> DynamicClient:
    """Create a DynamicClient for the target cluster.

    Args:
        kubeconfig: Explicit kubeconfig path
        context: Explicit kubeconfig context

    Returns:
        DynamicClient instance
    """
    if kubeconfig or context:
        logger.debug(f"Using kubeconfig {kubeconfig or '(default)'} context {context or '(current)'}")
        return DynamicClient(kubernetes.config.new_client_from_config(
            config_file=kubeconfig, context=context))

    try:
        kube_config = kubernetes.client.Configuration()
        kubernetes.config.load_incluster_config(client_configuration=kube_config)
        logger.debug("Running with in-cluster config")
        return DynamicClient(kubernetes.client.ApiClient(kube_config))
    except kubernetes.config.ConfigException:
        logger.debug("Running with out-of-cluster config")
        return DynamicClient(kubernetes.config.new_client_from_config())


class KubeResourceHandle:
    """ResourceHandle backed by a dynamic client resource."""

    def __init__(self, client: DynamicClient, resource, namespace: Optional[str]):
        self._client = client
        self._resource = resource
        self._namespace = namespace

    def get(self, name: str) -> Optional[dict]:
        try:
            return self._client.get(self._resource, name=name, namespace=self._namespace).to_dict()
        except KubeNotFoundError:
            return None
        except DynamicApiError as e:
            raise _translate(e) from e

    def patch(self, name: str, payload: str, *, field_manager: str, force: bool) -> dict:
        try:
            return self._client.server_side_apply(
                self._resource,
                body=json.loads(payload),
                name=name,
                namespace=self._namespace,
                field_manager=field_manager,
                force_conflicts=force,
            ).to_dict()
        except DynamicApiError as e:
            raise _translate(e) from e

    def update(self, name: str, obj: dict) -> dict:
        try:
            return self._client.replace(
                self._resource, body=obj, name=name, namespace=self._namespace,
            ).to_dict()
        except DynamicApiError as e:
            raise _translate(e) from e

    def delete(self, name: str) -> None:
        try:
            self._client.delete(self._resource, name=name, namespace=self._namespace)
        except KubeNotFoundError as e:
            raise NotFoundError(_describe(e)) from e
        except DynamicApiError as e:
            raise _translate(e) from e

    def __repr__(self) -> str:
        scope = self._namespace or '(cluster)'
        return f"KubeResourceHandle({self._resource.kind}, {scope})"


class KubeResolver:
    """ResourceResolver backed by the API server's discovery documents."""

    def __init__(self, client: DynamicClient):
        self._client = client

    @classmethod
    def from_config(cls, kubeconfig: Optional[str] = None,
                    context: Optional[str] = None) -> 'KubeResolver':
        return cls(connect(kubeconfig=kubeconfig, context=context))

    def resolve(self, api_version: str, kind: str) -> Endpoint:
        try:
            resource = self._client.resources.get(api_version=api_version, kind=kind)
        except (ResourceNotFoundError, ResourceNotUniqueError) as e:
            raise ResourceMappingError(api_version, kind, str(e)) from e
        except ApiException as e:
            # includes DynamicApiError, e.g. an unavailable aggregated API
            raise ResourceMappingError(api_version, kind, f"discovery failed: {_describe(e)}") from e

        group, version = split_api_version(api_version)
        return Endpoint(
            group=group,
            version=version,
            kind=resource.kind,
            resource=resource.name,
            namespaced=bool(resource.namespaced),
            native=resource,
        )

    def reset_cache(self) -> None:
        logger.debug("Invalidating discovery cache")
        self._client.resources.invalidate_cache()

    def bind(self, endpoint: Endpoint, namespace: Optional[str]) -> KubeResourceHandle:
        return KubeResourceHandle(
            self._client,
            endpoint.native,
            namespace if endpoint.namespaced else None,
        )
