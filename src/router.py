"""
Ownership Router - Maps subordinate object events to their owning cluster.

Deployments, StatefulSets, ServiceAccounts and Services created for an
ElasticsearchCluster carry a controller owner reference naming the cluster.
Any change to one of them means the owning cluster has to be reconciled
again, so the router resolves the owner through the cluster cache and
enqueues it.
"""

import logging
from typing import Any, Callable, Optional, Type

from cache import DeletedFinalStateUnknown, Lister, NotFoundError, ResourceEventHandler
from models import CLUSTER_KIND, ElasticsearchCluster, KubeObject, OwnerReference

logger = logging.getLogger(__name__)


def managed_owner_ref(obj: KubeObject) -> Optional[OwnerReference]:
    """Return the controller reference if it points at an ElasticsearchCluster."""
    ref = obj.metadata.controller_ref()
    if ref is None or ref.kind != CLUSTER_KIND:
        return None
    return ref


class OwnerRouter:
    """
    Typed event handler for one subordinate kind.

    Args:
        kind: The model class events of this handler must decode to
        cluster_lister: Lister for ElasticsearchClusters
        enqueue: Called with the owning cluster when it must be reconciled
    """

    def __init__(
        self,
        kind: Type[KubeObject],
        cluster_lister: Lister,
        enqueue: Callable[[ElasticsearchCluster], None],
    ):
        self.kind = kind
        self.cluster_lister = cluster_lister
        self.enqueue = enqueue

    @property
    def kind_name(self) -> str:
        return self.kind.kind.lower()

    def event_handler(self) -> ResourceEventHandler:
        return ResourceEventHandler(
            on_add=self.handle,
            on_update=self.handle_update,
            on_delete=self.handle,
        )

    def handle_update(self, old: Any, new: Any) -> None:
        if old == new:
            return
        self.handle(new)

    def handle(self, obj: Any) -> None:
        if isinstance(obj, DeletedFinalStateUnknown):
            obj = obj.obj
        if not isinstance(obj, self.kind):
            logger.error(f"error decoding {self.kind_name}, invalid type")
            return

        owner_ref = managed_owner_ref(obj)
        if owner_ref is None:
            return

        namespace = obj.metadata.namespace
        logger.debug(f"getting elasticsearchcluster '{namespace}/{owner_ref.name}'")
        try:
            cluster = self.cluster_lister.get(namespace, owner_ref.name)
        except NotFoundError:
            logger.info(
                f"ignoring orphaned {self.kind_name} '{obj.metadata.name}' "
                f"of elasticsearchcluster '{owner_ref.name}'"
            )
            return

        self.enqueue(cluster)
