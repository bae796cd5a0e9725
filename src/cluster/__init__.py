"""Cluster collaborators: endpoint resolution and per-resource handles."""

from cluster.base import (
    ClusterError,
    Endpoint,
    NotFoundError,
    ResourceHandle,
    ResourceResolver,
)

__all__ = [
    "ClusterError",
    "Endpoint",
    "NotFoundError",
    "ResourceHandle",
    "ResourceResolver",
]
