"""Resolution of cross-resource references.

A configuration node may point at another resource by bare name, remote
identifier, or full self-link (e.g. a cluster's network). The resolver
turns such a reference into a ResourceHandle.

LOOKUP ORDER:
1. Resources already known to the current reconciliation session
   (created, refreshed, or declared earlier in the same pass), by exact
   identifier or self-link, or by bare name when exactly one matches
2. A remote lookup by identifier, through a per-kind lookup callable

Handles are non-owning: resolving a reference never makes the
referencing resource responsible for the referenced one's lifecycle.
The cache lives for one reconciliation pass and is never invalidated.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from .errors import NotFoundError, UnresolvedReferenceError

logger = logging.getLogger(__name__)


def extract_name(reference: str) -> str:
    """Last path segment of a self-link or identifier.

    Bare names are returned unchanged.
    """
    return reference.rstrip("/").rsplit("/", 1)[-1]


@dataclass(frozen=True)
class ResourceHandle:
    """Non-owning reference to another resource.

    Attributes:
        kind: Resource kind of the referenced resource.
        remote_id: Remote identifier, or None for a resource declared in
                   this pass but not created yet.
        self_link: Full URL of the resource, when known.
    """

    kind: str
    remote_id: str | None
    self_link: str | None = None
    declared_name: str | None = None

    @property
    def name(self) -> str:
        for value in (self.remote_id, self.self_link, self.declared_name):
            if value:
                return extract_name(value)
        return ""

    @property
    def exists(self) -> bool:
        """Check if the referenced resource has a remote identifier."""
        return self.remote_id is not None


Lookup = Callable[[str], ResourceHandle | None]


class SubresourceResolver:
    """Session-scoped reference resolver.

    Safe to share between concurrent reconciliations of distinct
    resources: registrations are visible to every later resolve.
    """

    def __init__(self, lookups: dict[str, Lookup] | None = None) -> None:
        self._lookups: dict[str, Lookup] = dict(lookups or {})
        self._by_key: dict[tuple[str, str], ResourceHandle] = {}
        self._by_name: dict[tuple[str, str], set[ResourceHandle]] = {}
        self._lock = threading.Lock()

    def register_lookup(self, kind: str, lookup: Lookup) -> None:
        """Set the remote fallback for a resource kind."""
        self._lookups[kind] = lookup

    def register(self, handle: ResourceHandle) -> None:
        """Make a resource known to this session."""
        with self._lock:
            self._index(handle)
        logger.debug(
            f"Registered {handle.kind} '{handle.name}'",
            extra={"kind": handle.kind, "remote_id": handle.remote_id},
        )

    def declare(self, kind: str, name: str) -> ResourceHandle:
        """Register a resource that is declared in this pass but not created yet."""
        handle = ResourceHandle(kind=kind, remote_id=None, declared_name=name)
        self.register(handle)
        return handle

    def forget(self, kind: str, reference: str) -> None:
        """Drop a resource from the session, e.g. after it was deleted."""
        with self._lock:
            handle = self._cached(kind, reference)
            if handle is None:
                return
            for key in _keys(handle):
                self._by_key.pop((kind, key), None)
            siblings = self._by_name.get((kind, handle.name))
            if siblings is not None:
                siblings.discard(handle)
                if not siblings:
                    del self._by_name[(kind, handle.name)]

    def known(self, kind: str) -> list[ResourceHandle]:
        """Every resource of a kind known to this session."""
        with self._lock:
            handles = {h for (k, _), h in self._by_key.items() if k == kind}
        return sorted(handles, key=lambda h: h.name)

    def resolve(self, kind: str, reference: str) -> ResourceHandle | None:
        """Resolve a reference, returning None when it cannot be found.

        Raises:
            TransportError: If the remote lookup itself failed.
        """
        if not reference:
            return None

        with self._lock:
            handle = self._cached(kind, reference)
        if handle is not None:
            return handle

        lookup = self._lookups.get(kind)
        if lookup is None:
            logger.debug(f"No remote lookup for {kind}, '{reference}' unresolved")
            return None

        try:
            handle = lookup(reference)
        except NotFoundError:
            handle = None

        if handle is None:
            logger.debug(
                f"Remote lookup found no {kind} '{reference}'",
                extra={"kind": kind, "reference": reference},
            )
            return None

        with self._lock:
            self._index(handle)
        return handle

    def require(self, kind: str, reference: str) -> ResourceHandle:
        """Resolve a reference that must exist.

        Raises:
            UnresolvedReferenceError: If the reference cannot be resolved.
            TransportError: If the remote lookup itself failed.
        """
        handle = self.resolve(kind, reference)
        if handle is None:
            raise UnresolvedReferenceError(kind, reference)
        return handle

    def _index(self, handle: ResourceHandle) -> None:
        siblings = self._by_name.setdefault((handle.kind, handle.name), set())
        if handle.exists:
            # Replaces its declared placeholder and any older record of itself
            stale = [h for h in siblings if not h.exists or h.remote_id == handle.remote_id]
            for old in stale:
                siblings.discard(old)
                for key in _keys(old):
                    self._by_key.pop((handle.kind, key), None)
        for key in _keys(handle):
            self._by_key[(handle.kind, key)] = handle
        siblings.add(handle)

    def _cached(self, kind: str, reference: str) -> ResourceHandle | None:
        handle = self._by_key.get((kind, reference))
        if handle is not None:
            return handle
        # A full id or self-link names one resource; only a bare name may
        # match by its last segment, and only when that is unambiguous
        if extract_name(reference) != reference:
            return None
        candidates = self._by_name.get((kind, reference), set())
        if len(candidates) == 1:
            return next(iter(candidates))
        return None


def _keys(handle: ResourceHandle) -> list[str]:
    return [k for k in (handle.remote_id, handle.self_link, handle.declared_name) if k]
