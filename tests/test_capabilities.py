"""Tests for capability implementations, wire conversion and the kind catalog."""

from __future__ import annotations

import os
from unittest import mock

import pytest
from cloud_mock import MockCloudClient, MockCloudState

from provider.capabilities import (
    GENERAL_GROUP,
    ClientCreator,
    ClientUpdater,
    Creatable,
    Deletable,
    Refreshable,
    ResourceBinding,
    Updatable,
    UpdateGroup,
)
from provider.catalog import (
    CLUSTER_TIMEOUTS,
    build_binding,
    service_account_action,
    with_settings_version,
)
from provider.changeset import ChangeSet
from provider.config import (
    CLUSTER_DELETE_TIMEOUT_SECONDS,
    DELETE_CHECK_INTERVAL_SECONDS,
    OperationTimeouts,
    ProviderConfig,
)
from provider.converter import ModelConverter
from provider.errors import TransportError
from provider.operations import OperationHandle
from provider.resources import (
    CLUSTER,
    NETWORK,
    NODE_POOL,
    PREDEFINED_ROLE,
    ClusterConfig,
    NetworkConfig,
    NodePoolConfig,
    ServiceAccountConfig,
)

POOL_ID = "projects/test/node-pools/pool"


@pytest.fixture
def state() -> MockCloudState:
    return MockCloudState()


class TestModelConverter:
    """Tests for ModelConverter."""

    def test_full_request_for_create(self) -> None:
        """Test that create requests carry every populated field."""
        converter = ModelConverter(ClusterConfig)
        config = ClusterConfig(name="prod", location="eu", master_version="1.29")

        assert converter.to_remote_request(config) == {
            "name": "prod",
            "location": "eu",
            "masterVersion": "1.29",
        }

    def test_field_scoped_request(self) -> None:
        """Test that update requests carry only the given fields."""
        converter = ModelConverter(ClusterConfig)
        config = ClusterConfig(name="prod", location="eu", labels={"env": "prod"})

        assert converter.to_remote_request(config, ["labels"]) == {"labels": {"env": "prod"}}

    def test_wrong_node_type(self) -> None:
        """Test that a tree of another type is refused."""
        with pytest.raises(TypeError, match="Expected ClusterConfig"):
            ModelConverter(ClusterConfig).to_remote_request(NetworkConfig(name="vpc"))

    def test_remote_object_becomes_populated_tree(self) -> None:
        """Test that remote keys become populated fields."""
        config = ModelConverter(ClusterConfig).from_remote_object(
            {"name": "prod", "location": "eu", "status": "RUNNING", "id": "x"}
        )

        assert config.status == "RUNNING"
        assert config.model_fields_set == {"name", "location", "status"}

    def test_malformed_remote_object(self) -> None:
        """Test that an unexpected payload is a transport failure."""
        with pytest.raises(TransportError, match="Cannot convert"):
            ModelConverter(ClusterConfig).from_remote_object({"name": "prod"})


class TestClientCreator:
    """Tests for ClientCreator."""

    def test_synchronous_create_without_id(self) -> None:
        """Test that a create result needs an identifier."""

        class NamelessClient:
            def create(self, request: dict) -> dict:
                return {"name": request["name"]}

        creator = ClientCreator(NamelessClient(), ModelConverter(NetworkConfig))

        with pytest.raises(TransportError, match="no remote identifier"):
            creator.submit_create(NetworkConfig(name="vpc"))

    def test_operation_create(self, state: MockCloudState) -> None:
        """Test that the operation target becomes the remote id."""
        creator = ClientCreator(MockCloudClient(state, NETWORK), ModelConverter(NetworkConfig))

        submission = creator.submit_create(NetworkConfig(name="vpc"))

        assert submission.remote_id == "projects/test/networks/vpc"
        assert submission.operation is not None

    def test_operation_without_target(self) -> None:
        """Test that a pending operation may name its target later."""

        class PendingClient:
            def create(self, request: dict) -> OperationHandle:
                return OperationHandle(name="operation-1")

        creator = ClientCreator(PendingClient(), ModelConverter(NetworkConfig))

        submission = creator.submit_create(NetworkConfig(name="vpc"))

        assert submission.remote_id is None
        assert submission.operation == OperationHandle(name="operation-1")


class TestClientUpdater:
    """Tests for update planning."""

    def test_fields_grouped_by_endpoint(self, state: MockCloudState) -> None:
        """Test partitioning into dedicated groups and the general patch."""
        updater = ClientUpdater(
            MockCloudClient(state, "node-pool"),
            ModelConverter(NodePoolConfig),
            [
                UpdateGroup(name="autoscaling", fields=frozenset({"autoscaling"})),
                UpdateGroup(name="size", fields=frozenset({"node_count"}), action="setSize"),
            ],
        )
        config = NodePoolConfig(
            name="pool", cluster="prod", node_count=3, version="1.29", locations=["eu-b"]
        )
        changes = ChangeSet.of(NodePoolConfig, ["node_count", "version", "locations"])

        steps = updater.plan_update(POOL_ID, config, changes)

        assert [(s.group, s.fields) for s in steps] == [
            ("size", ("node_count",)),
            (GENERAL_GROUP, ("version", "locations")),
        ]

    def test_explicit_general_group_position(self, state: MockCloudState) -> None:
        """Test that a listed general group keeps its place and gets the leftovers."""
        updater = ClientUpdater(
            MockCloudClient(state, "node-pool"),
            ModelConverter(NodePoolConfig),
            [
                UpdateGroup(name=GENERAL_GROUP, fields=frozenset()),
                UpdateGroup(name="size", fields=frozenset({"node_count"}), action="setSize"),
            ],
        )
        config = NodePoolConfig(name="pool", cluster="prod", node_count=3, version="1.29")
        changes = ChangeSet.of(NodePoolConfig, ["node_count", "version"])

        steps = updater.plan_update(POOL_ID, config, changes)

        assert [s.group for s in steps] == [GENERAL_GROUP, "size"]

    def test_unset_fields_not_planned(self, state: MockCloudState) -> None:
        """Test that fields without a declared value produce no step."""
        updater = ClientUpdater(MockCloudClient(state, "node-pool"), ModelConverter(NodePoolConfig))
        config = NodePoolConfig(name="pool", cluster="prod")

        assert updater.plan_update(POOL_ID, config, ChangeSet.of(NodePoolConfig, ["version"])) == []

    def test_steps_are_lazy(self, state: MockCloudState) -> None:
        """Test that planning sends nothing."""
        updater = ClientUpdater(MockCloudClient(state, "node-pool"), ModelConverter(NodePoolConfig))
        config = NodePoolConfig(name="pool", cluster="prod", version="1.29")
        state.put(POOL_ID, {"name": "pool", "cluster": "prod"})

        [step] = updater.plan_update(POOL_ID, config, ChangeSet.of(NodePoolConfig, ["version"]))
        assert state.calls == []

        step.submit()
        [call] = state.calls
        assert call.request == {"version": "1.29"}
        assert call.action is None

    def test_overlapping_groups_rejected(self, state: MockCloudState) -> None:
        """Test that a field cannot belong to two groups."""
        with pytest.raises(ValueError, match="more than one update group"):
            ClientUpdater(
                MockCloudClient(state, "node-pool"),
                ModelConverter(NodePoolConfig),
                [
                    UpdateGroup(name="a", fields=frozenset({"node_count"})),
                    UpdateGroup(name="b", fields=frozenset({"node_count", "version"})),
                ],
            )


class TestCatalog:
    """Tests for the built-in bindings."""

    def test_cluster_binding(self, state: MockCloudState) -> None:
        """Test that clusters get slow budgets and every capability."""
        binding = build_binding(CLUSTER, MockCloudClient(state, CLUSTER))

        assert binding.capabilities == ["refresh", "create", "update", "delete"]
        assert binding.timeouts is CLUSTER_TIMEOUTS
        assert binding.delete_check_interval == DELETE_CHECK_INTERVAL_SECONDS
        assert isinstance(binding.refresher, Refreshable)
        assert isinstance(binding.creator, Creatable)
        assert isinstance(binding.updater, Updatable)
        assert isinstance(binding.deleter, Deletable)

    def test_slow_timeout_from_environment(self, state: MockCloudState) -> None:
        """Test that PROVIDER_SLOW_TIMEOUT sets the cluster budgets."""
        with mock.patch.dict(os.environ, {"PROVIDER_SLOW_TIMEOUT": "3600"}, clear=True):
            config = ProviderConfig.from_env()

        binding = build_binding(CLUSTER, MockCloudClient(state, CLUSTER), config)

        assert binding.timeouts == OperationTimeouts(
            create=3600, update=3600, delete=CLUSTER_DELETE_TIMEOUT_SECONDS
        )

    def test_short_slow_timeout_caps_delete(self, state: MockCloudState) -> None:
        """Test that a slow timeout below the delete budget also bounds deletes."""
        config = ProviderConfig(default_timeout_seconds=60, slow_timeout_seconds=120)

        binding = build_binding(NODE_POOL, MockCloudClient(state, NODE_POOL), config)

        assert binding.timeouts == OperationTimeouts(create=120, update=120, delete=120)

    def test_fast_kind_uses_session_default(self, state: MockCloudState) -> None:
        """Test that kinds without catalog budgets keep the session default."""
        binding = build_binding(NETWORK, MockCloudClient(state, NETWORK), ProviderConfig())

        assert binding.timeouts is None

    def test_predefined_role_is_read_only(self, state: MockCloudState) -> None:
        """Test that platform roles can only be refreshed."""
        binding = build_binding(PREDEFINED_ROLE, MockCloudClient(state, PREDEFINED_ROLE))

        assert binding.capabilities == ["refresh"]

    def test_unknown_kind(self, state: MockCloudState) -> None:
        """Test that only catalogued kinds have bindings."""
        with pytest.raises(ValueError, match="Unknown resource kind"):
            build_binding("bucket", MockCloudClient(state, "bucket"))

    def test_for_client_defaults(self, state: MockCloudState) -> None:
        """Test a binding built without catalog settings."""
        binding = ResourceBinding.for_client(NETWORK, NetworkConfig, MockCloudClient(state, NETWORK))

        assert binding.timeouts is None
        assert binding.delete_check_interval is None

    def test_with_settings_version(self) -> None:
        """Test that the current version is copied into the request."""
        request = {"settings": {"tier": "small"}}

        assert with_settings_version(request, {"settingsVersion": 4}) == {
            "settings": {"tier": "small"},
            "settingsVersion": 4,
        }
        assert with_settings_version(request, {}) is request

    def test_service_account_action(self) -> None:
        """Test the enable and disable endpoint choice."""
        assert service_account_action(ServiceAccountConfig(name="deployer", enabled=True)) == "enable"
        assert service_account_action(ServiceAccountConfig(name="deployer", enabled=False)) == "disable"
