"""
Kubernetes transport - List/watch sources backed by kubernetes_asyncio.

Every kind is listed and watched across all namespaces, or within the single
namespace the operator is configured to watch. Objects are handed to the
informers as plain camelCase dicts, exactly as the API server sent them.
"""

import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Tuple

from kubernetes_asyncio import client, config as kube_config, watch
from kubernetes_asyncio.client import ApiClient, ApiException

from cache import Informer, WatchExpired
from config import KubeConfig
from models import (
    Deployment,
    ElasticsearchCluster,
    Service,
    ServiceAccount,
    StatefulSet,
)

logger = logging.getLogger(__name__)


async def new_api_client(cfg: KubeConfig) -> ApiClient:
    """Load credentials and return an API client."""
    if cfg.in_cluster:
        kube_config.load_incluster_config()
        logger.info("Using in-cluster Kubernetes credentials")
    else:
        await kube_config.load_kube_config(config_file=cfg.kubeconfig, context=cfg.context)
        logger.info(f"Using kubeconfig credentials (context: {cfg.context or 'current'})")
    return ApiClient()


class KubeListWatch:
    """
    List/watch source for one kind.

    Args:
        api_client: Client used to serialize typed responses to dicts
        list_func: A kubernetes_asyncio list function supporting ``watch``
        timeout_seconds: Server-side timeout of a single watch request
        **list_kwargs: Arguments passed to every list and watch call
    """

    def __init__(
        self,
        api_client: ApiClient,
        list_func: Callable[..., Any],
        timeout_seconds: int = 300,
        **list_kwargs: Any,
    ):
        self.api_client = api_client
        self.list_func = list_func
        self.timeout_seconds = timeout_seconds
        self.list_kwargs = list_kwargs

    async def list(self) -> Tuple[List[Dict[str, Any]], str]:
        response = await self.list_func(**self.list_kwargs)
        data = self.api_client.sanitize_for_serialization(response)
        items = data.get("items") or []
        resource_version = (data.get("metadata") or {}).get("resourceVersion", "")
        return items, resource_version

    async def watch(self, resource_version: str) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        w = watch.Watch()
        try:
            async for event in w.stream(
                self.list_func,
                resource_version=resource_version,
                timeout_seconds=self.timeout_seconds,
                **self.list_kwargs,
            ):
                raw = event.get("raw_object")
                if raw is None:
                    raw = self.api_client.sanitize_for_serialization(event["object"])
                yield event["type"], raw
        except ApiException as e:
            if e.status == 410:
                raise WatchExpired(e.reason)
            raise
        finally:
            w.stop()


def build_informers(
    api_client: ApiClient, cfg: KubeConfig, retry_delay: float = 1.0
) -> Dict[str, Informer]:
    """
    Create informers for ElasticsearchClusters and every subordinate kind.

    Returns:
        Informers keyed by ``clusters``, ``deployments``, ``statefulsets``,
        ``service_accounts`` and ``services``
    """
    apps = client.AppsV1Api(api_client)
    core = client.CoreV1Api(api_client)
    custom = client.CustomObjectsApi(api_client)
    namespaced = bool(cfg.namespace)
    ns_kwargs = {"namespace": cfg.namespace} if namespaced else {}

    def source(list_func, **kwargs) -> KubeListWatch:
        return KubeListWatch(
            api_client, list_func, timeout_seconds=cfg.watch_timeout, **ns_kwargs, **kwargs
        )

    crd = {"group": cfg.group, "version": cfg.version, "plural": cfg.plural}
    if namespaced:
        clusters = source(custom.list_namespaced_custom_object, **crd)
        deployments = source(apps.list_namespaced_deployment)
        statefulsets = source(apps.list_namespaced_stateful_set)
        service_accounts = source(core.list_namespaced_service_account)
        services = source(core.list_namespaced_service)
    else:
        clusters = source(custom.list_cluster_custom_object, **crd)
        deployments = source(apps.list_deployment_for_all_namespaces)
        statefulsets = source(apps.list_stateful_set_for_all_namespaces)
        service_accounts = source(core.list_service_account_for_all_namespaces)
        services = source(core.list_service_for_all_namespaces)

    def informer(model, list_watch) -> Informer:
        return Informer(model.kind, list_watch, model.from_dict, retry_delay=retry_delay)

    return {
        "clusters": informer(ElasticsearchCluster, clusters),
        "deployments": informer(Deployment, deployments),
        "statefulsets": informer(StatefulSet, statefulsets),
        "service_accounts": informer(ServiceAccount, service_accounts),
        "services": informer(Service, services),
    }
