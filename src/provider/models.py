"""Declared configuration nodes.

A declared configuration is a tree of pydantic models. Each node type
declares, at class level:

1. Which fields are create-only (changing them means replacing the resource)
2. Which sequence fields are unordered sets (compared by primary key)
3. Which fields are cross-resource references (hold an id or self-link)
4. Which fields are output-only (server-managed, never declared or diffed)

PRESENCE:
Pydantic records which fields were explicitly populated (`model_fields_set`).
A field that was never populated is "no declared value", distinct from a
field explicitly set to a default, None, or an empty collection.
"""

from __future__ import annotations

from enum import StrEnum
from functools import cache
from typing import Any, ClassVar

from pydantic import BaseModel


class ConfigNode(BaseModel):
    """Base class for every declared configuration node."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    # Fields that can only be set when the resource is created
    create_only_fields: ClassVar[frozenset[str]] = frozenset()

    # Sequence fields compared by primary-key membership instead of position
    unordered_fields: ClassVar[frozenset[str]] = frozenset()

    # Field name -> kind of the referenced resource
    reference_fields: ClassVar[dict[str, str]] = {}

    # Server-managed fields: refreshed from remote, never sent or diffed
    output_fields: ClassVar[frozenset[str]] = frozenset()

    def primary_key(self) -> str:
        """Identify this node among its siblings in a sequence.

        Singleton nodes (at most one per parent) return an empty string.
        """
        return ""

    @classmethod
    def field_ids(cls) -> type[StrEnum]:
        """Enumeration of this node type's field identifiers.

        Members compare equal to the plain field name, so
        `cls.field_ids().LABELS == "labels"`.
        """
        return _field_enum(cls)

    @classmethod
    def declared_field_names(cls) -> list[str]:
        """Field names in declaration order, excluding output-only fields."""
        return [name for name in cls.model_fields if name not in cls.output_fields]

    @classmethod
    def mutable_fields(cls) -> frozenset[str]:
        """Fields that can be updated in place."""
        return frozenset(cls.declared_field_names()) - cls.create_only_fields

    def is_set(self, name: str) -> bool:
        """Check whether a field carries a declared value."""
        if name not in type(self).model_fields:
            raise ValueError(f"{type(self).__name__} has no field '{name}'")
        return name in self.model_fields_set

    def populated(self, *, include: set[str] | frozenset[str] | None = None) -> dict[str, Any]:
        """Serialize the populated fields using their wire aliases."""
        return self.model_dump(
            by_alias=True,
            exclude_unset=True,
            include=set(include) if include is not None else None,
            exclude=set(type(self).output_fields) or None,
            mode="json",
        )

    def references(self) -> list[tuple[str, str, str]]:
        """Cross-resource references carried by this node.

        Returns:
            List of (field_name, referenced_kind, reference) for every
            populated, non-empty reference field.
        """
        refs = []
        for name, kind in type(self).reference_fields.items():
            if not self.is_set(name):
                continue
            value = getattr(self, name)
            if value:
                refs.append((name, kind, value))
        return refs


@cache
def _field_enum(node_type: type[ConfigNode]) -> type[StrEnum]:
    members = {name.upper(): name for name in node_type.model_fields}
    return StrEnum(f"{node_type.__name__}Field", members)


def blank(node_type: type[ConfigNode]) -> ConfigNode:
    """Build a node of the given type with no declared values."""
    return node_type.model_construct()
