"""Reconciliation session: one top-level reconciliation run.

A session owns the state shared by every orchestrator in one pass:

- the Waiter (cadence and default budget from ProviderConfig)
- the cancel event that stops every in-flight wait
- the SubresourceResolver cache, scoped to this pass

Distinct resource instances may be reconciled concurrently through one
session; they share nothing mutable except the resolver cache.

build_arm_session() is the composition root for Azure: configuration,
credential, ARM client and one binding per managed kind.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Iterable

from azure.core.credentials import TokenCredential

from .arm_client import ArmResourceClient
from .capabilities import RemoteApiClient, ResourceBinding
from .catalog import PARENT_FIELDS, build_bindings
from .config import ProviderConfig
from .credentials import build_resource_client
from .models import ConfigNode
from .orchestrator import ReconcileResult, ResourceInstance, ResourceOrchestrator
from .resolver import Lookup, ResourceHandle, SubresourceResolver
from .waiter import Waiter

logger = logging.getLogger(__name__)


class ReconciliationSession:
    """Wires bindings, waiter and resolver together for one pass."""

    def __init__(
        self,
        bindings: Iterable[ResourceBinding],
        config: ProviderConfig | None = None,
        *,
        waiter: Waiter | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            bindings: One binding per managed resource kind.
            config: Provider configuration; defaults apply when omitted.
            waiter: Waiter to use instead of one built from the config.
            cancel_event: Event that stops waiting when set.
        """
        self.config = config or ProviderConfig()
        self.cancel_event = cancel_event or asyncio.Event()
        self.waiter = waiter or Waiter(
            poll_interval=self.config.poll_interval_seconds,
            timeout=self.config.default_timeout_seconds,
            cancel_event=self.cancel_event,
        )
        self.resolver = SubresourceResolver()

        self._bindings: dict[str, ResourceBinding] = {}
        self._orchestrators: dict[str, ResourceOrchestrator] = {}
        for binding in bindings:
            if binding.kind in self._bindings:
                raise ValueError(f"Duplicate binding for kind '{binding.kind}'")
            self._bindings[binding.kind] = binding
            if binding.lookup_remote is not None:
                self.resolver.register_lookup(binding.kind, _remote_lookup(binding))

    @property
    def kinds(self) -> list[str]:
        return list(self._bindings)

    def orchestrator(self, kind: str) -> ResourceOrchestrator:
        """Get the orchestrator for a resource kind.

        Raises:
            ValueError: If no binding was registered for the kind.
        """
        orchestrator = self._orchestrators.get(kind)
        if orchestrator is None:
            binding = self._bindings.get(kind)
            if binding is None:
                raise ValueError(f"No binding for kind '{kind}'. Known kinds: {self.kinds}")
            orchestrator = ResourceOrchestrator(binding, self.waiter, self.resolver)
            self._orchestrators[kind] = orchestrator
        return orchestrator

    def declare(self, kind: str, config: ConfigNode) -> ResourceInstance:
        """Declare a resource for this pass.

        The resource becomes resolvable by name at once, so dependents
        declared in the same pass can reference it before it exists.
        """
        self.orchestrator(kind)
        name = getattr(config, "name", None)
        if name:
            self.resolver.declare(kind, name)
        return ResourceInstance(kind, config)

    def adopt(self, kind: str, config: ConfigNode, remote_id: str) -> ResourceInstance:
        """Track an existing remote object created in an earlier pass."""
        self.orchestrator(kind)
        instance = ResourceInstance(kind, config, remote_id=remote_id)
        self.resolver.register(
            ResourceHandle(
                kind=kind, remote_id=remote_id, self_link=getattr(config, "self_link", None)
            )
        )
        return instance

    async def refresh(self, instance: ResourceInstance) -> bool:
        return await self.orchestrator(instance.kind).refresh(instance)

    async def create(self, instance: ResourceInstance) -> ReconcileResult:
        return await self.orchestrator(instance.kind).create(instance)

    async def update(
        self, instance: ResourceInstance, previous: ConfigNode | None, next_: ConfigNode
    ) -> ReconcileResult:
        return await self.orchestrator(instance.kind).update(instance, previous, next_)

    async def delete(self, instance: ResourceInstance) -> ReconcileResult:
        return await self.orchestrator(instance.kind).delete(instance)

    def cancel(self) -> None:
        """Stop every in-flight wait. Remote operations keep running."""
        if not self.cancel_event.is_set():
            logger.info("Cancelling reconciliation session")
        self.cancel_event.set()

    def install_signal_handlers(self) -> None:
        """Cancel the session on SIGTERM or SIGINT."""
        loop = asyncio.get_running_loop()

        def signal_handler(sig: signal.Signals) -> None:
            logger.info("Received signal", extra={"signal": sig.name})
            self.cancel()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))


def _remote_lookup(binding: ResourceBinding) -> Lookup:
    get = binding.lookup_remote

    def lookup(reference: str) -> ResourceHandle | None:
        remote = get(reference)
        if remote is None:
            return None
        return ResourceHandle(
            kind=binding.kind,
            remote_id=remote.get("id") or reference,
            self_link=remote.get("selfLink"),
        )

    return lookup


def build_arm_session(
    config: ProviderConfig,
    resource_group: str,
    resource_types: dict[str, str],
    *,
    credential: TokenCredential | None = None,
    cancel_event: asyncio.Event | None = None,
) -> ReconciliationSession:
    """Build a session whose kinds are managed through Azure Resource Manager.

    Args:
        config: Provider configuration (subscription, API version, budgets).
        resource_group: Resource group holding the managed resources.
        resource_types: ARM resource type per kind, e.g.
            {"cluster": "Microsoft.ContainerService/managedClusters"}.
        credential: Credential to use instead of the managed identity.
        cancel_event: Event that stops waiting when set.

    Raises:
        ConfigurationError: If no subscription is configured.
        CredentialError: If secrets are present in the environment.
        ValueError: If a kind is unknown or a child kind has no child type.
    """
    sdk = build_resource_client(config, credential)
    clients: dict[str, RemoteApiClient] = {
        kind: ArmResourceClient(
            sdk,
            config.subscription_id,
            resource_group,
            resource_type,
            api_version=config.api_version,
            parent_field=PARENT_FIELDS.get(kind),
        )
        for kind, resource_type in resource_types.items()
    }
    logger.info(
        "Connected to Azure Resource Manager",
        extra={
            "subscription_id": config.subscription_id,
            "resource_group": resource_group,
            "kinds": sorted(clients),
            "api_version": config.api_version,
        },
    )
    return ReconciliationSession(build_bindings(clients, config), config, cancel_event=cancel_event)
