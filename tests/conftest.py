"""Pytest configuration and fixtures."""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from cache import Informer
from models import (
    ElasticsearchCluster,
    ElasticsearchClusterSpec,
    NodePool,
    NodePoolPersistence,
    NodePoolState,
    ObjectMeta,
    OwnerReference,
)
from plugins.base import ConvergenceStrategy


class FakeListWatch:
    """List/watch source fed by the test."""

    def __init__(self, items: Optional[List[Dict[str, Any]]] = None, resource_version: str = "1"):
        self.items = items or []
        self.resource_version = resource_version
        self.events: asyncio.Queue = asyncio.Queue()
        self.list_calls = 0
        self.watch_calls: List[str] = []

    async def list(self):
        self.list_calls += 1
        return list(self.items), self.resource_version

    async def watch(self, resource_version: str):
        self.watch_calls.append(resource_version)
        while True:
            event = await self.events.get()
            if isinstance(event, Exception):
                raise event
            yield event


class RecordingStrategy(ConvergenceStrategy):
    """Strategy that records every cluster it is asked to converge."""

    def __init__(self):
        self.calls: List[ElasticsearchCluster] = []
        self.error: Optional[Exception] = None

    @property
    def name(self) -> str:
        return "recording"

    async def sync_cluster(self, cluster: ElasticsearchCluster) -> None:
        self.calls.append(cluster)
        if self.error is not None:
            raise self.error


def make_cluster(
    name: str = "A",
    namespace: str = "ns",
    version: str = "7.1",
    node_pools: Optional[List[NodePool]] = None,
) -> ElasticsearchCluster:
    if node_pools is None:
        node_pools = [make_node_pool()]
    return ElasticsearchCluster(
        metadata=ObjectMeta(name=name, namespace=namespace, uid=f"uid-{name}"),
        spec=ElasticsearchClusterSpec(version=version, node_pools=node_pools),
    )


def make_node_pool(
    name: str = "data",
    roles: Optional[List[str]] = None,
    stateful: Optional[bool] = True,
    persistence: bool = False,
) -> NodePool:
    state = None
    if stateful is not None:
        state = NodePoolState(
            stateful=stateful,
            persistence=NodePoolPersistence(enabled=persistence),
        )
    return NodePool(name=name, replicas=1, roles=roles or ["data"], state=state)


def make_owned(kind_cls, name: str, owner: Optional[str] = "A", namespace: str = "ns",
               controller: bool = True, owner_kind: str = "ElasticsearchCluster",
               spec: Optional[Dict[str, Any]] = None):
    refs = []
    if owner is not None:
        refs.append(
            OwnerReference(
                api_version="marshal.io/v1alpha1",
                kind=owner_kind,
                name=owner,
                uid=f"uid-{owner}",
                controller=controller,
            )
        )
    return kind_cls(
        metadata=ObjectMeta(name=name, namespace=namespace, owner_references=refs),
        spec=spec or {"replicas": 1},
    )


def cluster_manifest(name: str = "A", namespace: str = "ns", version: str = "7.1",
                     resource_version: str = "10") -> Dict[str, Any]:
    return {
        "apiVersion": "marshal.io/v1alpha1",
        "kind": "ElasticsearchCluster",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": f"uid-{name}",
            "resourceVersion": resource_version,
        },
        "spec": {
            "version": version,
            "nodePools": [
                {
                    "name": "data",
                    "replicas": 3,
                    "roles": ["data"],
                    "state": {"stateful": True, "persistence": {"enabled": False}},
                }
            ],
        },
    }


def deployment_manifest(name: str, owner: str = "A", namespace: str = "ns",
                        resource_version: str = "20") -> Dict[str, Any]:
    return {
        "metadata": {
            "name": name,
            "namespace": namespace,
            "resourceVersion": resource_version,
            "ownerReferences": [
                {
                    "apiVersion": "marshal.io/v1alpha1",
                    "kind": "ElasticsearchCluster",
                    "name": owner,
                    "uid": f"uid-{owner}",
                    "controller": True,
                }
            ],
        },
        "spec": {"replicas": 1},
    }


@pytest.fixture
def cluster_factory():
    return make_cluster


@pytest.fixture
def node_pool_factory():
    return make_node_pool


@pytest.fixture
def owned_factory():
    return make_owned


@pytest.fixture
def sample_cluster():
    """Cluster ns/A, version 7.1, one stateful data node pool."""
    return make_cluster()


@pytest.fixture
def sample_manifest():
    return cluster_manifest()


@pytest.fixture
def strategy():
    return RecordingStrategy()


@pytest.fixture
def make_informer():
    """Build an informer over a FakeListWatch for a model class."""

    def _make(model, items=None, resource_version="1"):
        return Informer(model.kind, FakeListWatch(items, resource_version), model.from_dict)

    return _make
