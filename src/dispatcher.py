"""
Sync Dispatcher - Turns a dequeued reconcile key into a convergence pass.

Keys come in two shapes:

* ``ByIdentity``: the cluster may have changed; fetch its current state from
  the cache and converge it.
* ``BySnapshot``: the cluster was observed being deleted; its final state was
  captured from the delete event and is converged once as a teardown.

The dispatcher also decides what happens to the key afterwards: forget it on
success or terminal failure, requeue it with backoff on a transient one.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Union

from cache import Lister, NotFoundError
from events import EventRecorder, Reason
from models import ElasticsearchCluster
from plugins.base import ConvergenceStrategy, TerminalSyncError
from validation import ClusterSpecError, verify_elasticsearch_cluster
from workqueue import RateLimitingQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ByIdentity:
    """Reconcile whatever the cache currently holds for namespace/name."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name

    @classmethod
    def from_cluster(cls, cluster: ElasticsearchCluster) -> "ByIdentity":
        return cls(cluster.metadata.namespace, cluster.metadata.name)


@dataclass(frozen=True, eq=False)
class BySnapshot:
    """Reconcile a deleted cluster from its captured final state."""

    cluster: ElasticsearchCluster = field(repr=False)

    def __str__(self) -> str:
        meta = self.cluster.metadata
        return f"{meta.namespace}/{meta.name} (deleted)"


ReconcileKey = Union[ByIdentity, BySnapshot]


class SyncDispatcher:
    """
    Loads cluster state and invokes the convergence strategy.

    Args:
        cluster_lister: Lister for ElasticsearchClusters
        strategy: The convergence strategy to invoke
        queue: The controller's work queue; used for forget and requeue
        recorder: Records events for clusters
        validate_specs: Reject invalid specs before converging them
    """

    def __init__(
        self,
        cluster_lister: Lister,
        strategy: ConvergenceStrategy,
        queue: RateLimitingQueue,
        recorder: EventRecorder,
        validate_specs: bool = True,
    ):
        self.cluster_lister = cluster_lister
        self.strategy = strategy
        self.queue = queue
        self.recorder = recorder
        self.validate_specs = validate_specs

    async def dispatch(self, key: ReconcileKey) -> None:
        """Process one key and settle its fate in the queue."""
        if isinstance(key, ByIdentity):
            try:
                await self.sync(key)
            except TerminalSyncError as e:
                logger.warning(f"Giving up on ElasticsearchCluster {key}: {e}")
                self.queue.forget(key)
            except Exception as e:
                logger.info(f"Error syncing ElasticsearchCluster {key}, requeuing: {e}")
                self.queue.add_rate_limited(key)
            else:
                self.queue.forget(key)
        elif isinstance(key, BySnapshot):
            await self.sync_deleted(key.cluster)
            self.queue.forget(key)
        else:
            logger.error(f"Dropping work item of unexpected type {type(key).__name__}")
            self.queue.forget(key)

    async def sync(self, key: ByIdentity) -> None:
        """
        Converge the cluster currently cached under ``key``.

        A cluster that is no longer cached has been deleted and needs no
        further work.

        Raises:
            Exception: Any lookup or convergence failure that should be retried
        """
        start_time = time.monotonic()
        try:
            try:
                cluster = self.cluster_lister.get(key.namespace, key.name)
            except NotFoundError:
                logger.info(f"ElasticsearchCluster has been deleted {key}")
                return
            except Exception as e:
                logger.error(f"unable to retrieve ElasticsearchCluster {key} from store: {e}")
                raise

            if self.validate_specs:
                try:
                    verify_elasticsearch_cluster(cluster)
                except ClusterSpecError as e:
                    # Left for the next update of the cluster to re-enqueue
                    logger.warning(f"Rejecting invalid ElasticsearchCluster {key}: {e}")
                    self.recorder.warning(cluster, Reason.INVALID_SPEC, str(e))
                    return

            try:
                await self.strategy.sync_cluster(cluster)
            except TerminalSyncError as e:
                self.recorder.warning(cluster, Reason.SYNC_ABANDONED, str(e))
                raise
            except Exception as e:
                self.recorder.warning(cluster, Reason.SYNC_FAILED, str(e))
                raise
            self.recorder.normal(cluster, Reason.SYNCED, "ElasticsearchCluster synced successfully")
        finally:
            logger.info(
                f"Finished syncing elasticsearchcluster {str(key)!r} "
                f"({time.monotonic() - start_time:.3f}s)"
            )

    async def sync_deleted(self, cluster: ElasticsearchCluster) -> None:
        """
        Give the strategy one chance to tear down a deleted cluster.

        Failures are logged and not retried.
        """
        cluster.metadata.deletion_timestamp = datetime.now(timezone.utc)
        try:
            await self.strategy.sync_cluster(cluster)
        except Exception as e:
            logger.info(
                f"Error tearing down ElasticsearchCluster {cluster.metadata.name}, "
                f"not retrying: {e}"
            )
            return
        self.recorder.normal(cluster, Reason.DELETED, "ElasticsearchCluster deleted")
