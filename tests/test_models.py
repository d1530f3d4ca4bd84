"""Tests for configuration nodes, resource models and operation handles."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from provider.models import ConfigNode, blank
from provider.operations import (
    OperationErrorDetail,
    OperationHandle,
    OperationStatus,
    format_operation_errors,
)
from provider.resources import (
    CLUSTER,
    NETWORK,
    ClusterConfig,
    CustomRoleConfig,
    NodePoolConfig,
    NodeTaint,
    SubnetworkConfig,
    get_config_class,
)


class TestConfigNode:
    """Tests for ConfigNode presence and serialization."""

    def test_presence_tracks_explicit_values(self) -> None:
        """Test that only populated fields are set."""
        cluster = ClusterConfig(name="prod", location="europe-west1", description=None)

        assert cluster.is_set("name")
        assert cluster.is_set("description")
        assert not cluster.is_set("labels")

    def test_is_set_rejects_unknown_field(self) -> None:
        """Test that typos are caught."""
        with pytest.raises(ValueError, match="has no field"):
            ClusterConfig(name="prod", location="eu").is_set("lables")

    def test_populated_uses_aliases_and_skips_outputs(self) -> None:
        """Test that the wire form carries only declared, non-output fields."""
        cluster = ClusterConfig.model_validate(
            {
                "name": "prod",
                "location": "europe-west1",
                "masterVersion": "1.29",
                "selfLink": "https://cloud.test/prod",
                "status": "RUNNING",
            }
        )

        assert cluster.populated() == {
            "name": "prod",
            "location": "europe-west1",
            "masterVersion": "1.29",
        }

    def test_populated_with_include(self) -> None:
        """Test restricting the wire form to some fields."""
        cluster = ClusterConfig(name="prod", location="eu", labels={"env": "prod"})

        assert cluster.populated(include={"labels"}) == {"labels": {"env": "prod"}}

    def test_populated_keeps_explicit_none(self) -> None:
        """Test that an explicit None is sent as null."""
        cluster = ClusterConfig(name="prod", location="eu", description=None)

        assert cluster.populated() == {"name": "prod", "location": "eu", "description": None}

    def test_unknown_remote_keys_ignored(self) -> None:
        """Test that remote payloads may carry extra keys."""
        cluster = ClusterConfig.model_validate(
            {"name": "prod", "location": "eu", "id": "projects/test/clusters/prod"}
        )

        assert cluster.model_fields_set == {"name", "location"}

    def test_field_ids(self) -> None:
        """Test the field identifier enumeration."""
        ids = ClusterConfig.field_ids()

        assert ids.LABELS == "labels"
        assert ids("addons_config") is ids.ADDONS_CONFIG
        assert ClusterConfig.field_ids() is ids

    def test_declared_and_mutable_fields(self) -> None:
        """Test field classification."""
        declared = ClusterConfig.declared_field_names()
        mutable = ClusterConfig.mutable_fields()

        assert "self_link" not in declared
        assert declared[:2] == ["name", "location"]
        assert "labels" in mutable
        assert "name" not in mutable

    def test_references(self) -> None:
        """Test that populated reference fields are listed."""
        subnet = SubnetworkConfig(
            name="subnet", network="vpc", region="europe-west1", ip_cidr_range="10.0.0.0/24"
        )
        cluster = ClusterConfig(name="prod", location="eu", network="")

        assert subnet.references() == [("network", NETWORK, "vpc")]
        assert cluster.references() == []

    def test_primary_key(self) -> None:
        """Test member identity inside unordered sets."""
        taint = NodeTaint(key="gpu", value="true", effect="NO_SCHEDULE")

        assert taint.primary_key() == "gpu=true:NO_SCHEDULE"
        assert NodePoolConfig(name="pool", cluster="prod").primary_key() == "pool"
        assert ConfigNode().primary_key() == ""

    def test_blank_has_no_declared_values(self) -> None:
        """Test that a blank node has nothing set."""
        node = blank(ClusterConfig)

        assert node.model_fields_set == set()
        assert node.populated() == {}


class TestResourceModels:
    """Tests for resource model validation."""

    def test_invalid_cidr(self) -> None:
        """Test that subnet ranges must use CIDR notation."""
        with pytest.raises(ValidationError, match="CIDR"):
            SubnetworkConfig(name="subnet", network="vpc", region="eu", ip_cidr_range="10.0.0.0")

    def test_invalid_release_channel(self) -> None:
        """Test literal validation."""
        with pytest.raises(ValidationError):
            ClusterConfig(name="prod", location="eu", release_channel="NIGHTLY")

    def test_invalid_role_id(self) -> None:
        """Test role id pattern validation."""
        with pytest.raises(ValidationError):
            CustomRoleConfig(role_id="bad role!")

    def test_name_length(self) -> None:
        """Test name length bounds."""
        with pytest.raises(ValidationError):
            ClusterConfig(name="", location="eu")

    def test_get_config_class(self) -> None:
        """Test kind lookup."""
        assert get_config_class(CLUSTER) is ClusterConfig
        with pytest.raises(ValueError, match="Unknown resource kind"):
            get_config_class("bucket")


class TestOperationHandle:
    """Tests for OperationHandle."""

    def test_new_handle_is_pending(self) -> None:
        """Test initial status."""
        handle = OperationHandle(name="op-1")

        assert handle.status is OperationStatus.PENDING
        assert not handle.done

    def test_advance_to_success(self) -> None:
        """Test a successful terminal transition."""
        handle = OperationHandle(name="op-1").advance(OperationStatus.DONE)

        assert handle.succeeded
        assert not handle.failed

    def test_advance_to_failure(self) -> None:
        """Test a failed terminal transition."""
        errors = [OperationErrorDetail(code="INVALID", message="bad")]

        handle = OperationHandle(name="op-1").advance(OperationStatus.DONE, errors)

        assert handle.failed
        assert handle.errors == tuple(errors)

    def test_terminal_handle_cannot_advance(self) -> None:
        """Test that status never moves backwards."""
        handle = OperationHandle(name="op-1").advance(OperationStatus.DONE)

        with pytest.raises(ValueError, match="already finished"):
            handle.advance(OperationStatus.RUNNING)

    def test_running_handle_cannot_carry_errors(self) -> None:
        """Test that only terminal handles have errors."""
        with pytest.raises(ValueError, match="finished operation"):
            OperationHandle(
                name="op-1",
                status=OperationStatus.RUNNING,
                errors=(OperationErrorDetail(code="X", message="y"),),
            )

    def test_empty_name_rejected(self) -> None:
        """Test that handles need a name."""
        with pytest.raises(ValueError):
            OperationHandle(name="")

    def test_format_errors(self) -> None:
        """Test error message formatting."""
        errors = [
            OperationErrorDetail(code="QUOTA_EXCEEDED", message="CPU quota exceeded"),
            OperationErrorDetail(code="", message="retry later"),
        ]

        assert format_operation_errors(errors) == "QUOTA_EXCEEDED: CPU quota exceeded\nretry later"
        assert "without error details" in format_operation_errors([])
