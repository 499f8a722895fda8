"""Unit tests for validation.py - Cluster manifest and spec validation."""

import pytest

from conftest import cluster_manifest, make_cluster, make_node_pool
from validation import (
    ClusterSpecError,
    validate_cluster_manifest,
    validate_spec_against_schema,
    verify_elasticsearch_cluster,
)


class TestValidateSpecAgainstSchema:
    """Tests for validate_spec_against_schema function."""

    def test_valid_document(self):
        schema = {"type": "object", "properties": {"name": {"type": "string"}}}
        is_valid, error = validate_spec_against_schema({"name": "x"}, schema)
        assert is_valid is True
        assert error is None

    def test_errors_include_path(self):
        schema = {
            "type": "object",
            "properties": {"config": {"type": "object", "properties": {"n": {"type": "integer"}}}},
        }
        is_valid, error = validate_spec_against_schema({"config": {"n": "x"}}, schema)
        assert is_valid is False
        assert error.startswith("config.n:")

    def test_root_errors(self):
        is_valid, error = validate_spec_against_schema("nope", {"type": "object"})
        assert is_valid is False
        assert error.startswith("(root):")

    def test_multiple_errors_are_joined(self):
        schema = {
            "type": "object",
            "properties": {"a": {"type": "string"}, "b": {"type": "string"}},
        }
        is_valid, error = validate_spec_against_schema({"a": 1, "b": 2}, schema)
        assert is_valid is False
        assert error.count(";") == 1
        assert "a:" in error and "b:" in error

    def test_invalid_schema(self):
        is_valid, error = validate_spec_against_schema({}, {"type": "invalid_type"})
        assert is_valid is False
        assert "Invalid schema" in error


class TestValidateClusterManifest:
    """Tests for the structural cluster schema."""

    def test_valid_manifest(self):
        is_valid, error = validate_cluster_manifest(cluster_manifest())
        assert is_valid is True
        assert error is None

    def test_missing_metadata(self):
        manifest = cluster_manifest()
        del manifest["metadata"]
        is_valid, error = validate_cluster_manifest(manifest)
        assert is_valid is False
        assert "metadata" in error

    def test_node_pool_without_name(self):
        manifest = cluster_manifest()
        del manifest["spec"]["nodePools"][0]["name"]
        is_valid, error = validate_cluster_manifest(manifest)
        assert is_valid is False
        assert "spec.nodePools.0" in error

    def test_wrong_replica_type(self):
        manifest = cluster_manifest()
        manifest["spec"]["nodePools"][0]["replicas"] = "three"
        is_valid, error = validate_cluster_manifest(manifest)
        assert is_valid is False
        assert "spec.nodePools.0.replicas" in error

    def test_unknown_role_is_structurally_valid(self):
        """Role names are checked semantically, not by the schema."""
        manifest = cluster_manifest()
        manifest["spec"]["nodePools"][0]["roles"] = ["worker"]
        is_valid, _ = validate_cluster_manifest(manifest)
        assert is_valid is True


class TestVerifyElasticsearchCluster:
    """Tests for semantic cluster validation."""

    def test_accepts_valid_cluster(self):
        cluster = make_cluster(
            version="7.1",
            node_pools=[make_node_pool(roles=["data"], stateful=True, persistence=False)],
        )
        verify_elasticsearch_cluster(cluster)

    def test_rejects_empty_version(self):
        with pytest.raises(ClusterSpecError, match="version number must be specified"):
            verify_elasticsearch_cluster(make_cluster(version=""))

    def test_rejects_unknown_role(self):
        cluster = make_cluster(node_pools=[make_node_pool(roles=["data", "worker"])])
        with pytest.raises(ClusterSpecError) as exc_info:
            verify_elasticsearch_cluster(cluster)
        assert "'worker'" in str(exc_info.value)
        assert "must be one of 'data', 'client' or 'master'" in str(exc_info.value)

    @pytest.mark.parametrize("role", ["data", "client", "master"])
    def test_accepts_each_valid_role(self, role):
        verify_elasticsearch_cluster(make_cluster(node_pools=[make_node_pool(roles=[role])]))

    def test_rejects_non_stateful_pool_with_persistence(self):
        cluster = make_cluster(node_pools=[make_node_pool(stateful=False, persistence=True)])
        with pytest.raises(ClusterSpecError, match="non-stateful node pool cannot have persistence"):
            verify_elasticsearch_cluster(cluster)

    def test_accepts_non_stateful_pool_without_persistence(self):
        cluster = make_cluster(node_pools=[make_node_pool(stateful=False, persistence=False)])
        verify_elasticsearch_cluster(cluster)

    def test_accepts_stateful_pool_with_persistence(self):
        cluster = make_cluster(node_pools=[make_node_pool(stateful=True, persistence=True)])
        verify_elasticsearch_cluster(cluster)

    def test_pool_without_state_is_not_checked_for_persistence(self):
        cluster = make_cluster(node_pools=[make_node_pool(stateful=None)])
        verify_elasticsearch_cluster(cluster)

    def test_accepts_cluster_without_node_pools(self):
        verify_elasticsearch_cluster(make_cluster(node_pools=[]))

    def test_reports_first_violation_only(self):
        cluster = make_cluster(
            node_pools=[
                make_node_pool(name="a", roles=["ingest"]),
                make_node_pool(name="b", stateful=False, persistence=True),
            ]
        )
        with pytest.raises(ClusterSpecError, match="invalid role 'ingest'"):
            verify_elasticsearch_cluster(cluster)

    def test_version_checked_before_node_pools(self):
        cluster = make_cluster(version="", node_pools=[make_node_pool(roles=["worker"])])
        with pytest.raises(ClusterSpecError, match="version"):
            verify_elasticsearch_cluster(cluster)

    def test_schema_error_checked_first(self):
        cluster = make_cluster(version="")
        cluster.schema_error = "spec.nodePools.0.replicas: -1 is less than the minimum of 0"
        with pytest.raises(ClusterSpecError, match="spec.nodePools.0.replicas"):
            verify_elasticsearch_cluster(cluster)
