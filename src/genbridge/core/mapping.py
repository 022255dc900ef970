"""
Mapping Configs - Graph + bindings, their JSON form, and the editing session.

This module provides:
- MappingConfig: one graph with its ordered bindings
- export_mapping / import_mapping: JSON file round-trip
- MappingSession: dirty-tracked editing of the current config
- MappingStore: JSON catalog of saved workflow records
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from genbridge.core.bindings import BindingStore, CanonicalTarget, ParameterBinding
from genbridge.core.graph import WorkflowGraph
from genbridge.errors import MappingFormatError


logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now().isoformat()


# Record fields modelled by MappingConfig; anything else is carried in record_extra
_RECORD_KEYS = {"viewComfyJSON", "workflowApiJSON"}
_VIEW_KEYS = {"id", "title", "description", "viewcomfyEndpoint", "mappingConfig"}


def _record_extra(record: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``record`` without the fields MappingConfig models itself."""
    extra = {k: copy.deepcopy(v) for k, v in record.items() if k not in _RECORD_KEYS}
    view = record.get("viewComfyJSON") or {}
    view_extra = {k: copy.deepcopy(v) for k, v in view.items() if k not in _VIEW_KEYS}
    mapping = view.get("mappingConfig") or {}
    mapping_extra = {k: copy.deepcopy(v) for k, v in mapping.items() if k != "components"}
    if mapping_extra:
        view_extra["mappingConfig"] = mapping_extra
    if view_extra:
        extra["viewComfyJSON"] = view_extra
    return extra


@dataclass
class MappingConfig:
    """
    A graph plus the bindings that expose it to the UI.

    ``record_extra`` holds the parts of a saved-workflow record that are not
    edited here (the view's ``inputs``, ``advancedInputs``, ``previewImages``
    ...), so that saving a selected record keeps them.
    """
    id: str
    title: str
    graph: WorkflowGraph
    bindings: list[ParameterBinding] = field(default_factory=list)
    description: str = ""
    endpoint: str | None = None  # execution engine URL for this graph
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)
    record_extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, title: str, graph: WorkflowGraph, description: str = "") -> MappingConfig:
        return cls(id=uuid4().hex, title=title, graph=graph, description=description)

    def binding_store(self) -> BindingStore:
        """Store view that mutates this config's binding list in place."""
        return BindingStore(self.graph, self.bindings)

    def touch(self) -> None:
        self.updated_at = _now()

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "endpoint": self.endpoint,
            "workflowApiJSON": self.graph.to_dict(),
            "uiConfig": {
                "components": [b.to_dict() for b in self.bindings],
            },
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.record_extra:
            data["recordExtra"] = copy.deepcopy(self.record_extra)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> MappingConfig:
        """
        Parse the exported JSON shape.

        Raises:
            MappingFormatError: If required sections are missing or malformed
        """
        if not isinstance(data, dict):
            raise MappingFormatError("Mapping must be a JSON object")
        if "workflowApiJSON" not in data:
            raise MappingFormatError("Mapping has no workflowApiJSON")
        components = (data.get("uiConfig") or {}).get("components", [])
        if not isinstance(components, list):
            raise MappingFormatError("uiConfig.components must be a list")
        record_extra = data.get("recordExtra") or {}
        if not isinstance(record_extra, dict):
            raise MappingFormatError("recordExtra must be an object")

        now = _now()
        return cls(
            id=str(data.get("id") or uuid4().hex),
            title=str(data.get("title", "")),
            graph=WorkflowGraph.from_dict(data["workflowApiJSON"]),
            bindings=[ParameterBinding.from_dict(c) for c in components],
            description=str(data.get("description", "")),
            endpoint=data.get("endpoint") or None,
            created_at=str(data.get("createdAt") or now),
            updated_at=str(data.get("updatedAt") or now),
            record_extra=record_extra,
        )

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> MappingConfig:
        """Build a config from a saved-workflow catalog record."""
        if not isinstance(record, dict):
            raise MappingFormatError("Workflow record must be an object")
        view = record.get("viewComfyJSON") or {}
        mapping = view.get("mappingConfig") or {}
        return cls.from_dict({
            "id": view.get("id"),
            "title": view.get("title", ""),
            "description": view.get("description", ""),
            "endpoint": view.get("viewcomfyEndpoint"),
            "workflowApiJSON": record.get("workflowApiJSON"),
            "uiConfig": {"components": mapping.get("components", [])},
            "recordExtra": _record_extra(record),
        })

    def to_record(self) -> dict[str, Any]:
        """Catalog record shape, the inverse of from_record()."""
        record = copy.deepcopy(self.record_extra)
        view = record.get("viewComfyJSON") or {}
        mapping = view.get("mappingConfig") or {}
        mapping["components"] = [b.to_dict() for b in self.bindings]
        view.update({
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "viewcomfyEndpoint": self.endpoint,
            "mappingConfig": mapping,
        })
        record["viewComfyJSON"] = view
        record["workflowApiJSON"] = self.graph.to_dict()
        return record


def export_mapping(config: MappingConfig, path: str | Path) -> Path:
    """Write ``config`` to ``path`` as JSON and return the path."""
    path = Path(path)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2, ensure_ascii=False)
    return path


def import_mapping(path: str | Path) -> MappingConfig:
    """
    Load a mapping exported by export_mapping().

    A plain API-format graph (no mapping wrapper) is accepted as well and
    yields a config with no bindings, titled after the file.

    Raises:
        MappingFormatError: If the file is not valid JSON or not a mapping
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise MappingFormatError(f"Failed to parse {path}: {e}") from e

    if isinstance(data, dict) and "workflowApiJSON" in data:
        return MappingConfig.from_dict(data)
    return MappingConfig.create(path.stem, WorkflowGraph.from_dict(data))


class MappingStore:
    """
    JSON-file catalog of saved workflow records, keyed by title.

    The file holds ``{"workflows": [record, ...]}``.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _read(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise MappingFormatError(f"Failed to parse catalog {self.path}: {e}") from e
        workflows = data.get("workflows", []) if isinstance(data, dict) else data
        return workflows if isinstance(workflows, list) else []

    def _write(self, records: list[dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({"workflows": records}, f, indent=2, ensure_ascii=False)

    def list_records(self) -> list[dict[str, Any]]:
        return self._read()

    def titles(self) -> list[str]:
        return [
            (r.get("viewComfyJSON") or {}).get("title", "")
            for r in self._read()
        ]

    def get(self, title: str) -> MappingConfig | None:
        for record in self._read():
            if (record.get("viewComfyJSON") or {}).get("title") == title:
                return MappingConfig.from_record(record)
        return None

    def upsert(self, config: MappingConfig) -> None:
        """Insert ``config`` or replace the record with the same title."""
        records = self._read()
        record = config.to_record()
        for i, existing in enumerate(records):
            if (existing.get("viewComfyJSON") or {}).get("title") == config.title:
                records[i] = record
                break
        else:
            records.append(record)
        self._write(records)
        logger.info("Saved workflow mapping '%s' to %s", config.title, self.path)


class MappingSession:
    """
    Editing session over the current MappingConfig.

    Every binding mutation marks the session dirty and bumps
    ``updated_at``; saving or closing clears it.
    """

    def __init__(self):
        self.current: MappingConfig | None = None
        self.is_dirty = False

    def _require(self) -> MappingConfig:
        if self.current is None:
            raise MappingFormatError("No workflow loaded")
        return self.current

    def _mark_dirty(self) -> None:
        self._require().touch()
        self.is_dirty = True

    @property
    def display_name(self) -> str:
        if self.current is None:
            return ""
        modified = "* " if self.is_dirty else ""
        return f"{modified}{self.current.title}"

    # --- Loading ---

    def import_graph_file(self, path: str | Path, title: str | None = None) -> MappingConfig:
        """Start a new config from an uploaded graph (or exported mapping) file."""
        config = import_mapping(path)
        if title:
            config.title = title
        self.current = config
        self.is_dirty = True
        return config

    def select_saved(self, record: dict[str, Any]) -> MappingConfig:
        """Start editing a record picked from the saved-workflow catalog."""
        self.current = MappingConfig.from_record(record)
        self.is_dirty = False
        return self.current

    # --- Binding edits ---

    def quick_bind(self, node_id: str, key: str, target: CanonicalTarget | str) -> ParameterBinding:
        config = self._require()
        value = config.graph.get_input(node_id, key)
        binding = config.binding_store().quick_bind(node_id, key, value, target)
        self._mark_dirty()
        return binding

    def create_custom_binding(
        self,
        node_id: str,
        key: str,
        label: str | None = None,
        default_value: Any = None,
    ) -> ParameterBinding:
        binding = self._require().binding_store().create_custom_binding(
            node_id, key, label=label, default_value=default_value
        )
        self._mark_dirty()
        return binding

    def update_binding(self, index: int, patch: dict[str, Any]) -> ParameterBinding:
        binding = self._require().binding_store().update_binding(index, patch)
        self._mark_dirty()
        return binding

    def delete_binding(self, index: int) -> ParameterBinding:
        binding = self._require().binding_store().delete_binding(index)
        self._mark_dirty()
        return binding

    # --- Lifecycle ---

    def save(self, store: MappingStore) -> MappingConfig:
        config = self._require()
        store.upsert(config)
        self.is_dirty = False
        return config

    def close(self) -> None:
        """Discard the current config (unsaved edits are dropped)."""
        if self.is_dirty:
            logger.info("Discarding unsaved mapping changes")
        self.current = None
        self.is_dirty = False
