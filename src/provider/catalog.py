"""Resource bindings for the built-in resource kinds.

Each kind gets the capabilities, update groups and wait budgets its
remote API calls for. Clusters and node pools are slow; their budgets
are measured in tens of minutes, and PROVIDER_SLOW_TIMEOUT overrides them
when a ProviderConfig is given. Everything else uses the session default.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from .capabilities import GENERAL_GROUP, RemoteApiClient, ResourceBinding, UpdateGroup
from .config import (
    CLUSTER_DELETE_TIMEOUT_SECONDS,
    CLUSTER_TIMEOUT_SECONDS,
    DELETE_CHECK_INTERVAL_SECONDS,
    NODE_POOL_DELETE_TIMEOUT_SECONDS,
    NODE_POOL_TIMEOUT_SECONDS,
    OperationTimeouts,
    ProviderConfig,
)
from .models import ConfigNode
from .resources import (
    CLUSTER,
    DATABASE_INSTANCE,
    DATABASE_USER,
    NODE_POOL,
    PREDEFINED_ROLE,
    SERVICE_ACCOUNT,
    SUBNETWORK,
    get_config_class,
)

logger = logging.getLogger(__name__)

CLUSTER_TIMEOUTS = OperationTimeouts(
    create=CLUSTER_TIMEOUT_SECONDS,
    update=CLUSTER_TIMEOUT_SECONDS,
    delete=CLUSTER_DELETE_TIMEOUT_SECONDS,
)

NODE_POOL_TIMEOUTS = OperationTimeouts(
    create=NODE_POOL_TIMEOUT_SECONDS,
    update=NODE_POOL_TIMEOUT_SECONDS,
    delete=NODE_POOL_DELETE_TIMEOUT_SECONDS,
)


def with_settings_version(request: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
    """Add the instance's current settings version to an update request.

    The remote API rejects a settings change built against a stale version.
    """
    version = current.get("settingsVersion")
    if version is None:
        return request
    return {**request, "settingsVersion": version}


def service_account_action(config: ConfigNode) -> str:
    return "enable" if getattr(config, "enabled", None) else "disable"


UPDATE_GROUPS: dict[str, list[UpdateGroup]] = {
    CLUSTER: [
        UpdateGroup(name="labels", fields=frozenset({"labels"}), action="setLabels"),
    ],
    NODE_POOL: [
        UpdateGroup(name="autoscaling", fields=frozenset({"autoscaling"}), action="setAutoscaling"),
        UpdateGroup(name="size", fields=frozenset({"node_count"}), action="setSize"),
    ],
    DATABASE_INSTANCE: [
        UpdateGroup(name=GENERAL_GROUP, fields=frozenset(), prepare=with_settings_version),
    ],
    SERVICE_ACCOUNT: [
        UpdateGroup(name="enabled", fields=frozenset({"enabled"}), action=service_account_action),
    ],
}

TIMEOUTS: dict[str, OperationTimeouts] = {
    CLUSTER: CLUSTER_TIMEOUTS,
    NODE_POOL: NODE_POOL_TIMEOUTS,
}

SLOW_DELETE_KINDS = frozenset({CLUSTER, NODE_POOL})

READ_ONLY_KINDS = frozenset({PREDEFINED_ROLE})

# Request field naming the parent of a child resource type
PARENT_FIELDS: dict[str, str] = {
    SUBNETWORK: "network",
    NODE_POOL: "cluster",
    DATABASE_USER: "instance",
}


def timeouts_for(kind: str, config: ProviderConfig | None = None) -> OperationTimeouts | None:
    """Wait budgets of a kind; None means the session default.

    A configured slow timeout replaces the create and update budgets of
    slow kinds and caps their delete budget.
    """
    timeouts = TIMEOUTS.get(kind)
    if timeouts is None or config is None:
        return timeouts
    slow = config.timeouts_for(slow=True)
    return replace(
        timeouts,
        create=slow.create,
        update=slow.update,
        delete=min(timeouts.delete, slow.delete),
    )


def build_binding(
    kind: str,
    client: RemoteApiClient,
    config: ProviderConfig | None = None,
) -> ResourceBinding:
    """Build the binding of a built-in kind over a remote client.

    Args:
        kind: Resource kind.
        client: Remote API client for the kind.
        config: Provider configuration; catalog budgets apply when omitted.

    Raises:
        ValueError: If the kind is unknown.
    """
    node_type = get_config_class(kind)
    binding = ResourceBinding.for_client(
        kind,
        node_type,
        client,
        groups=UPDATE_GROUPS.get(kind),
        timeouts=timeouts_for(kind, config),
        delete_check_interval=DELETE_CHECK_INTERVAL_SECONDS if kind in SLOW_DELETE_KINDS else None,
        read_only=kind in READ_ONLY_KINDS,
    )
    logger.debug(
        f"Built binding for {kind}",
        extra={"kind": kind, "capabilities": binding.capabilities},
    )
    return binding


def build_bindings(
    clients: dict[str, RemoteApiClient],
    config: ProviderConfig | None = None,
) -> list[ResourceBinding]:
    """Build bindings for every kind that has a client."""
    return [build_binding(kind, client, config) for kind, client in clients.items()]
