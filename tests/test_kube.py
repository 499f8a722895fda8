"""Unit tests for kube.py - kubernetes_asyncio list/watch sources."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from kubernetes_asyncio.client import ApiException

from cache import WatchExpired
from config import KubeConfig
from conftest import deployment_manifest
from kube import KubeListWatch, build_informers, new_api_client


@pytest.fixture
def api_client():
    api_client = MagicMock()
    api_client.sanitize_for_serialization.side_effect = lambda obj: obj
    return api_client


def fake_watch(*events, error=None):
    """Build a Watch double whose stream yields ``events`` then raises ``error``."""

    async def stream(func, **kwargs):
        for event in events:
            yield event
        if error is not None:
            raise error

    w = MagicMock()
    w.stream.side_effect = stream
    return w


@pytest.mark.asyncio
class TestKubeListWatch:
    """Tests for KubeListWatch."""

    async def test_list(self, api_client):
        list_func = AsyncMock(
            return_value={
                "metadata": {"resourceVersion": "42"},
                "items": [deployment_manifest("a"), deployment_manifest("b")],
            }
        )
        source = KubeListWatch(api_client, list_func, namespace="search")

        items, resource_version = await source.list()

        list_func.assert_awaited_once_with(namespace="search")
        assert resource_version == "42"
        assert [i["metadata"]["name"] for i in items] == ["a", "b"]

    async def test_list_empty(self, api_client):
        source = KubeListWatch(api_client, AsyncMock(return_value={"metadata": {}, "items": None}))
        assert await source.list() == ([], "")

    async def test_watch_yields_raw_objects(self, api_client):
        raw = deployment_manifest("a")
        w = fake_watch({"type": "ADDED", "object": MagicMock(), "raw_object": raw})
        list_func = AsyncMock()
        source = KubeListWatch(api_client, list_func, timeout_seconds=30, namespace="search")

        with patch("kube.watch.Watch", return_value=w):
            events = [event async for event in source.watch("42")]

        assert events == [("ADDED", raw)]
        w.stream.assert_called_once_with(
            list_func, resource_version="42", timeout_seconds=30, namespace="search"
        )
        w.stop.assert_called_once()

    async def test_watch_serializes_typed_objects(self, api_client):
        obj = deployment_manifest("a")
        w = fake_watch({"type": "MODIFIED", "object": obj})
        source = KubeListWatch(api_client, AsyncMock())

        with patch("kube.watch.Watch", return_value=w):
            events = [event async for event in source.watch("1")]

        assert events == [("MODIFIED", obj)]
        api_client.sanitize_for_serialization.assert_called_with(obj)

    async def test_gone_expires_watch(self, api_client):
        w = fake_watch(error=ApiException(status=410, reason="Gone"))
        source = KubeListWatch(api_client, AsyncMock())

        with patch("kube.watch.Watch", return_value=w):
            with pytest.raises(WatchExpired):
                async for _ in source.watch("1"):
                    pass
        w.stop.assert_called_once()

    async def test_other_api_errors_propagate(self, api_client):
        w = fake_watch(error=ApiException(status=500, reason="Internal Server Error"))
        source = KubeListWatch(api_client, AsyncMock())

        with patch("kube.watch.Watch", return_value=w):
            with pytest.raises(ApiException):
                async for _ in source.watch("1"):
                    pass


@pytest.mark.asyncio
class TestNewApiClient:
    """Tests for credential loading."""

    async def test_in_cluster(self):
        with patch("kube.kube_config") as kube_config, patch("kube.ApiClient") as api_client_cls:
            api_client = await new_api_client(KubeConfig(in_cluster=True))
        kube_config.load_incluster_config.assert_called_once()
        assert api_client is api_client_cls.return_value

    async def test_kubeconfig(self):
        with patch("kube.kube_config") as kube_config, patch("kube.ApiClient"):
            kube_config.load_kube_config = AsyncMock()
            await new_api_client(KubeConfig(kubeconfig="/tmp/kubeconfig", context="staging"))
        kube_config.load_kube_config.assert_awaited_once_with(
            config_file="/tmp/kubeconfig", context="staging"
        )


class TestBuildInformers:
    """Tests for informer construction."""

    def test_all_namespaces(self, api_client):
        with patch("kube.client") as kube_client:
            informers = build_informers(api_client, KubeConfig(), retry_delay=2.0)

        assert set(informers) == {
            "clusters",
            "deployments",
            "statefulsets",
            "service_accounts",
            "services",
        }
        clusters = informers["clusters"]
        assert clusters.kind == "ElasticsearchCluster"
        assert clusters.retry_delay == 2.0
        custom = kube_client.CustomObjectsApi.return_value
        assert clusters.list_watch.list_func is custom.list_cluster_custom_object
        assert clusters.list_watch.list_kwargs == {
            "group": "marshal.io",
            "version": "v1alpha1",
            "plural": "elasticsearchclusters",
        }
        apps = kube_client.AppsV1Api.return_value
        assert informers["deployments"].list_watch.list_func is apps.list_deployment_for_all_namespaces
        assert informers["deployments"].kind == "Deployment"

    def test_single_namespace(self, api_client):
        with patch("kube.client") as kube_client:
            informers = build_informers(api_client, KubeConfig(namespace="search", watch_timeout=60))

        core = kube_client.CoreV1Api.return_value
        services = informers["services"].list_watch
        assert services.list_func is core.list_namespaced_service
        assert services.list_kwargs == {"namespace": "search"}
        assert services.timeout_seconds == 60
        custom = kube_client.CustomObjectsApi.return_value
        assert informers["clusters"].list_watch.list_func is custom.list_namespaced_custom_object
        assert informers["clusters"].list_watch.list_kwargs["namespace"] == "search"
