"""Wire model conversion between declared trees and remote payloads.

Conversion is total and local: every populated field is carried over
under its wire alias, unset fields are left out, and no network I/O
happens here.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .errors import TransportError
from .models import ConfigNode

logger = logging.getLogger(__name__)


class ModelConverter:
    """Pydantic-backed converter for one configuration node type."""

    def __init__(self, node_type: type[ConfigNode]) -> None:
        self.node_type = node_type

    def to_remote_request(
        self, config: ConfigNode, fields: Iterable[str] | None = None
    ) -> dict[str, Any]:
        """Build a request body from a declared tree.

        Args:
            config: Declared configuration.
            fields: Restrict the body to these top-level fields (update
                    requests). None means the full declared tree (create).

        Raises:
            TypeError: If the tree is not of this converter's node type.
        """
        if not isinstance(config, self.node_type):
            raise TypeError(
                f"Expected {self.node_type.__name__}, got {type(config).__name__}"
            )
        include = frozenset(fields) if fields is not None else None
        return config.populated(include=include)

    def from_remote_object(self, remote: dict[str, Any]) -> ConfigNode:
        """Build a declared tree from a remote object.

        Keys present in the remote payload become populated fields;
        keys the node type does not declare are ignored.

        Raises:
            TransportError: If the remote payload does not fit the node type.
        """
        try:
            return self.node_type.model_validate(remote)
        except PydanticValidationError as e:
            logger.error(
                f"Remote object does not match {self.node_type.__name__}",
                extra={"errors": e.error_count()},
            )
            raise TransportError(
                f"Cannot convert remote object to {self.node_type.__name__}: {e}", e
            ) from e
