"""
Elasticsearch Controller - Event-driven reconciliation loop.

Similar to Kubernetes controllers, every change to an ElasticsearchCluster or
to a resource it owns queues the cluster for reconciliation. A fixed pool of
workers drains the queue and hands each cluster to the sync dispatcher, which
runs the convergence strategy.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from cache import DeletedFinalStateUnknown, Informer, ResourceEventHandler, wait_for_cache_sync
from config import ControllerConfig
from dispatcher import ByIdentity, BySnapshot, SyncDispatcher
from events import EventRecorder
from models import (
    Deployment,
    ElasticsearchCluster,
    Service,
    ServiceAccount,
    StatefulSet,
)
from plugins.base import ConvergenceStrategy
from router import OwnerRouter
from workqueue import RateLimitingQueue, default_controller_rate_limiter

logger = logging.getLogger(__name__)


@dataclass
class WatchedKind:
    """A subordinate kind, the informer feeding it and its router."""

    kind: type
    informer: Informer
    router: OwnerRouter


class ElasticsearchController:
    """
    Reconciles ElasticsearchClusters.

    Informers are built by the caller and injected; the controller only
    registers its event handlers on them. They must be started separately.
    """

    def __init__(
        self,
        clusters: Informer,
        deployments: Informer,
        statefulsets: Informer,
        service_accounts: Informer,
        services: Informer,
        strategy: ConvergenceStrategy,
        config: Optional[ControllerConfig] = None,
        recorder: Optional[EventRecorder] = None,
        queue: Optional[RateLimitingQueue] = None,
    ):
        self.config = config or ControllerConfig()
        self.recorder = recorder or EventRecorder()
        self.queue = queue or RateLimitingQueue(
            default_controller_rate_limiter(
                base_delay=self.config.backoff_base_delay,
                max_delay=self.config.backoff_max_delay,
                qps=self.config.rate_limit_qps,
                burst=self.config.rate_limit_burst,
            ),
            name="elasticsearchCluster",
        )

        self.clusters = clusters
        self.cluster_lister = clusters.lister
        clusters.add_event_handler(
            ResourceEventHandler(
                on_add=self.enqueue_add,
                on_update=self._on_cluster_update,
                on_delete=self.enqueue_delete,
            )
        )

        subordinates = [
            (Deployment, deployments),
            (StatefulSet, statefulsets),
            (ServiceAccount, service_accounts),
            (Service, services),
        ]
        self.watched: List[WatchedKind] = []
        for kind, informer in subordinates:
            router = OwnerRouter(kind, self.cluster_lister, self.enqueue_add)
            informer.add_event_handler(router.event_handler())
            self.watched.append(WatchedKind(kind, informer, router))

        self.dispatcher = SyncDispatcher(
            cluster_lister=self.cluster_lister,
            strategy=strategy,
            queue=self.queue,
            recorder=self.recorder,
            validate_specs=self.config.validate_specs,
        )
        self.running = False
        self._workers: List[asyncio.Task] = []

    @property
    def informers(self) -> List[Informer]:
        return [self.clusters] + [w.informer for w in self.watched]

    def has_synced(self) -> bool:
        return all(informer.has_synced() for informer in self.informers)

    # Enqueue surface

    def enqueue_add(self, obj: Any) -> None:
        try:
            key = ByIdentity.from_cluster(obj)
        except AttributeError as e:
            logger.info(f"Couldn't get key for object {obj!r}: {e}")
            return
        self.queue.add(key)

    def enqueue_delete(self, obj: Any) -> None:
        if isinstance(obj, DeletedFinalStateUnknown):
            obj = obj.obj
        if not isinstance(obj, ElasticsearchCluster):
            logger.error("error decoding deleted elasticsearchcluster, invalid type")
            return
        self.queue.add(BySnapshot(obj))

    def _on_cluster_update(self, old: Any, new: Any) -> None:
        if old == new:
            return
        self.enqueue_add(new)

    # Run loop

    async def run(self, workers: int, stop_event: asyncio.Event) -> None:
        """
        Run ``workers`` reconciliation workers until ``stop_event`` is set.

        Waits for every cache to sync first; a sync timeout is logged and
        the controller starts anyway. On stop, queued keys are drained and
        in-flight reconciliations finish before this returns.
        """
        logger.info("Starting Elasticsearch controller")
        self.running = True
        try:
            timeout = self.config.cache_sync_timeout or None
            synced = await wait_for_cache_sync(
                stop_event,
                *[informer.has_synced for informer in self.informers],
                timeout=timeout,
            )
            if not synced and not stop_event.is_set():
                logger.error("timed out waiting for caches to sync")

            for i in range(workers):
                self._workers.append(asyncio.create_task(self._worker(i)))

            await stop_event.wait()
            logger.info("Shutting down Elasticsearch controller")
        finally:
            await self.queue.shut_down_with_drain()
            if self._workers:
                await asyncio.gather(*self._workers, return_exceptions=True)
                self._workers.clear()
            self.running = False

    async def _worker(self, worker_id: int) -> None:
        logger.info(f"start worker loop {worker_id}")
        while await self.process_next_work_item():
            logger.debug(f"worker {worker_id} processed work item")
        logger.info(f"exiting worker loop {worker_id}")

    async def process_next_work_item(self) -> bool:
        """Process one key; returns False once the queue has shut down."""
        key, shutdown = await self.queue.get()
        if shutdown:
            return False

        try:
            await self.dispatcher.dispatch(key)
        except Exception as e:
            logger.error(f"Unexpected error processing {key}: {e}", exc_info=True)
            self.queue.add_rate_limited(key)
        finally:
            self.queue.done(key)
        return True

    def status(self) -> Dict[str, Any]:
        """Snapshot of the controller for status reporting."""
        return {
            "running": self.running,
            "workers": len(self._workers),
            "queue": self.queue.snapshot(),
            "caches": [
                {
                    "kind": informer.kind,
                    "synced": informer.has_synced(),
                    "objects": len(informer.indexer),
                }
                for informer in self.informers
            ],
        }
