"""Field-level change detection between two declared configurations.

The change set names the top-level fields whose declared value differs
between a previous and a next configuration tree. It never carries values.

COMPARISON RULES:
- Presence first: a field populated on one side only is changed
- Scalars: equal only when value and type match (True is not 1)
- Nested nodes: structural, recursive, reported at the top-level name
- Ordered sequences: position by position
- Unordered sets: by primary-key membership, then member by member
- Mappings: same keys with equal values
- Output-only fields never participate
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .models import ConfigNode, blank

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeSet:
    """Set of changed top-level field identifiers of one node type.

    Iteration follows field declaration order, so results are stable
    regardless of how the set was built.
    """

    node_type: type[ConfigNode]
    fields: frozenset[StrEnum] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        valid = self.node_type.field_ids()
        unknown = [f for f in self.fields if not isinstance(f, valid)]
        if unknown:
            raise ValueError(f"{self.node_type.__name__} has no fields {unknown}")

    @classmethod
    def of(cls, node_type: type[ConfigNode], names: Iterable[str]) -> ChangeSet:
        """Build a change set from plain field names.

        Raises:
            ValueError: If a name is not a field of the node type.
        """
        ids = node_type.field_ids()
        try:
            return cls(node_type, frozenset(ids(name) for name in names))
        except ValueError as e:
            raise ValueError(f"{node_type.__name__}: {e}") from e

    def has(self, name: str) -> bool:
        """Check membership, rejecting names the node type does not declare.

        Raises:
            ValueError: If the name is not a field of the node type.
        """
        try:
            field_id = self.node_type.field_ids()(name)
        except ValueError as e:
            raise ValueError(f"{self.node_type.__name__} has no field '{name}'") from e
        return field_id in self.fields

    def names(self) -> list[str]:
        """Changed field names in declaration order."""
        return [f.value for f in self]

    def restrict(self, names: Iterable[str]) -> ChangeSet:
        """Keep only the given field names."""
        wanted = set(names)
        return ChangeSet(self.node_type, frozenset(f for f in self.fields if f.value in wanted))

    def without(self, names: Iterable[str]) -> ChangeSet:
        """Drop the given field names."""
        dropped = set(names)
        return ChangeSet(
            self.node_type, frozenset(f for f in self.fields if f.value not in dropped)
        )

    def __contains__(self, name: object) -> bool:
        # Enum members hash by member name, so plain strings need converting
        try:
            return self.node_type.field_ids()(name) in self.fields
        except ValueError:
            return False

    def __iter__(self) -> Iterator[StrEnum]:
        order = self.node_type.field_ids()
        return iter([f for f in order if f in self.fields])

    def __len__(self) -> int:
        return len(self.fields)

    def __bool__(self) -> bool:
        return bool(self.fields)

    def __repr__(self) -> str:
        return f"ChangeSet({self.node_type.__name__}, {self.names()})"


def compute_changes(previous: ConfigNode | None, next_: ConfigNode) -> ChangeSet:
    """Compute the top-level fields that differ between two trees.

    Args:
        previous: Prior declared state, or None for a brand-new resource.
        next_: New declared state.

    Returns:
        ChangeSet of every field whose declared value differs.

    Raises:
        TypeError: If the trees are of different node types.
    """
    node_type = type(next_)
    if previous is None:
        previous = blank(node_type)
    elif type(previous) is not node_type:
        raise TypeError(
            f"Cannot compare {type(previous).__name__} with {node_type.__name__}"
        )

    ids = node_type.field_ids()
    changed = frozenset(
        ids(name)
        for name in node_type.declared_field_names()
        if _field_differs(node_type, name, previous, next_)
    )

    result = ChangeSet(node_type, changed)
    logger.debug(
        "Change set computed",
        extra={"node_type": node_type.__name__, "changed_fields": result.names()},
    )
    return result


def nodes_equal(a: ConfigNode, b: ConfigNode) -> bool:
    """Structural equality of two nodes over their declared fields."""
    if type(a) is not type(b):
        return False
    node_type = type(a)
    return not any(
        _field_differs(node_type, name, a, b) for name in node_type.declared_field_names()
    )


def _field_differs(
    node_type: type[ConfigNode], name: str, a: ConfigNode, b: ConfigNode
) -> bool:
    a_set = name in a.model_fields_set
    b_set = name in b.model_fields_set
    if a_set != b_set:
        return True
    if not a_set:
        return False
    unordered = name in node_type.unordered_fields
    return not _values_equal(getattr(a, name), getattr(b, name), unordered=unordered)


def _values_equal(a: Any, b: Any, *, unordered: bool = False) -> bool:
    if isinstance(a, ConfigNode) or isinstance(b, ConfigNode):
        return isinstance(a, ConfigNode) and isinstance(b, ConfigNode) and nodes_equal(a, b)

    if isinstance(a, list | tuple) and isinstance(b, list | tuple):
        if unordered:
            return _members_equal(a, b)
        return len(a) == len(b) and all(_values_equal(x, y) for x, y in zip(a, b, strict=True))

    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(_values_equal(a[k], b[k]) for k in a)

    return type(a) is type(b) and a == b


def _member_key(member: Any) -> str:
    if isinstance(member, ConfigNode):
        return member.primary_key()
    return repr(member)


def _members_equal(a: list[Any] | tuple[Any, ...], b: list[Any] | tuple[Any, ...]) -> bool:
    if len(a) != len(b):
        return False

    a_groups: dict[str, list[Any]] = {}
    b_groups: dict[str, list[Any]] = {}
    for member in a:
        a_groups.setdefault(_member_key(member), []).append(member)
    for member in b:
        b_groups.setdefault(_member_key(member), []).append(member)

    if a_groups.keys() != b_groups.keys():
        return False

    # Members sharing a key are compared in order of appearance
    return all(
        len(a_groups[key]) == len(b_groups[key])
        and all(_values_equal(x, y) for x, y in zip(a_groups[key], b_groups[key], strict=True))
        for key in a_groups
    )
