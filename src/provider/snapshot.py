"""YAML snapshots of declared configuration trees.

A snapshot is either a flat mapping of one resource's fields, or a
Kubernetes-style document whose `spec` section holds them:

    apiVersion: provider/v1
    kind: cluster
    spec:
      name: prod
      location: europe-west1

Only populated fields are written, so a field that was never declared
stays absent after a save/load cycle. File size is checked before reading.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_SNAPSHOT_FILE_SIZE_BYTES
from .models import ConfigNode
from .resources import get_config_class

logger = logging.getLogger(__name__)

SNAPSHOT_API_VERSION = "provider/v1"


class SnapshotError(Exception):
    """Raised when a snapshot cannot be loaded, validated or written."""

    pass


def load_snapshot(path: Path, kind: str) -> ConfigNode:
    """Load and validate a snapshot of one resource kind.

    Args:
        path: YAML file.
        kind: Resource kind the snapshot describes.

    Returns:
        Validated configuration node.

    Raises:
        SnapshotError: If the file cannot be read or fails validation.
    """
    if not path.exists():
        raise SnapshotError(f"Snapshot file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SnapshotError(f"Failed to stat snapshot file {path}: {e}") from e

    if file_size > MAX_SNAPSHOT_FILE_SIZE_BYTES:
        raise SnapshotError(
            f"Snapshot file exceeds maximum size of {MAX_SNAPSHOT_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SnapshotError(f"Failed to read snapshot file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SnapshotError(f"Invalid YAML in {path}: {e}") from e

    if raw_data is None:
        raw_data = {}
    if not isinstance(raw_data, dict):
        raise SnapshotError(f"Snapshot file must contain a YAML mapping: {path}")

    if "apiVersion" in raw_data and "spec" in raw_data:
        declared_kind = raw_data.get("kind")
        if declared_kind and declared_kind != kind:
            raise SnapshotError(f"Snapshot {path} describes a {declared_kind}, not a {kind}")
        data = raw_data.get("spec") or {}
        if not isinstance(data, dict):
            raise SnapshotError(f"Spec section must be a mapping: {path}")
    else:
        data = raw_data

    try:
        node_type = get_config_class(kind)
    except ValueError as e:
        raise SnapshotError(str(e)) from e

    try:
        config = node_type.model_validate(data)
    except ValidationError as e:
        raise SnapshotError(f"Validation failed for {path}:\n{format_validation_errors(e)}") from e

    logger.info("Loaded %s snapshot from %s", kind, path)
    return config


def save_snapshot(path: Path, kind: str, config: ConfigNode) -> None:
    """Write a snapshot as a Kubernetes-style YAML document.

    Raises:
        SnapshotError: If the file cannot be written.
    """
    document: dict[str, Any] = {
        "apiVersion": SNAPSHOT_API_VERSION,
        "kind": kind,
        "spec": config.model_dump(by_alias=True, exclude_unset=True, mode="json"),
    }
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(document, sort_keys=False), encoding="utf-8")
    except OSError as e:
        raise SnapshotError(f"Failed to write snapshot file {path}: {e}") from e

    logger.info("Saved %s snapshot to %s", kind, path)


def format_validation_errors(error: ValidationError) -> str:
    """Format pydantic validation errors, one per line."""
    errors = []
    for item in error.errors():
        loc = ".".join(str(x) for x in item["loc"])
        errors.append(f"  - {loc}: {item['msg']}")
    return "\n".join(errors)
