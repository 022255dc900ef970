"""
Parameter Bindings - Map canonical UI parameters onto graph inputs.

A binding ties one literal graph input to a UI-facing parameter. Bindings
created through "quick bind" also name a canonical target (prompt, width,
...) that the orchestrator fills from the live GenerationConfig; manual
bindings only carry a default value.

This module provides:
- CanonicalTarget / CANONICAL_TARGETS: the fixed target table
- ParameterBinding: one binding, serialized as a UI component
- BindingStore: ordered, index-addressed create/update/delete
- resolve_for_submission: turn bindings + config into graph overrides
- KEYWORD_RULES: zero-configuration fallback for graphs with no bindings
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Iterable
from uuid import uuid4

from genbridge.core.generation import GenerationConfig, LoraSelection
from genbridge.core.graph import (
    GraphPath,
    ScalarType,
    WorkflowGraph,
    is_connection,
    scalar_type,
)
from genbridge.errors import (
    BindingIndexError,
    IncompatibleType,
    MappingFormatError,
    NotMappable,
)


logger = logging.getLogger(__name__)

MAX_LORA_SLOTS = 3


class UIType(Enum):
    """UI control used to render a bound parameter."""
    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    SLIDER = "slider"
    SELECT = "select"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    IMAGE = "image"
    FILE = "file"
    COLOR = "color"
    DATE = "date"
    TIME = "time"
    SWITCH = "switch"

    @property
    def is_numeric(self) -> bool:
        return self in (UIType.NUMBER, UIType.SLIDER)

    @classmethod
    def for_scalar(cls, kind: ScalarType | None) -> UIType:
        if kind is ScalarType.NUMBER:
            return cls.NUMBER
        if kind is ScalarType.BOOLEAN:
            return cls.SWITCH
        return cls.TEXT


class CanonicalTarget(Enum):
    """Well-known parameters the orchestrator can fill automatically."""
    PROMPT = "prompt"
    WIDTH = "width"
    HEIGHT = "height"
    BATCH_SIZE = "batch_size"
    BASE_MODEL = "base_model"
    LORA1 = "lora1"
    LORA2 = "lora2"
    LORA3 = "lora3"
    LORA1_STRENGTH = "lora1_strength"
    LORA2_STRENGTH = "lora2_strength"
    LORA3_STRENGTH = "lora3_strength"

    @classmethod
    def parse(cls, value: Any) -> CanonicalTarget | None:
        """Parse a persisted target name; accepts camelCase spellings too."""
        if value is None or value == "":
            return None
        if isinstance(value, CanonicalTarget):
            return value
        text = str(value)
        snake = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", text).lower()
        try:
            return cls(snake)
        except ValueError:
            return None

    @property
    def lora_slot(self) -> int | None:
        """Zero-based LoRA list position for lora targets."""
        match = re.fullmatch(r"lora(\d)(_strength)?", self.value)
        return int(match.group(1)) - 1 if match else None

    @property
    def is_lora_strength(self) -> bool:
        return self.value.endswith("_strength")


@dataclass(frozen=True)
class TargetSpec:
    """Declared shape of one canonical target."""
    target: CanonicalTarget
    label: str
    ui_type: UIType
    accepts: frozenset[ScalarType]

    def accepts_value(self, value: Any) -> bool:
        return scalar_type(value) in self.accepts


_STRING = frozenset({ScalarType.STRING})
_NUMBER = frozenset({ScalarType.NUMBER})

CANONICAL_TARGETS: dict[CanonicalTarget, TargetSpec] = {
    spec.target: spec
    for spec in (
        TargetSpec(CanonicalTarget.PROMPT, "Prompt", UIType.TEXT, _STRING),
        TargetSpec(CanonicalTarget.WIDTH, "Width", UIType.NUMBER, _NUMBER),
        TargetSpec(CanonicalTarget.HEIGHT, "Height", UIType.NUMBER, _NUMBER),
        TargetSpec(CanonicalTarget.BATCH_SIZE, "Batch Size", UIType.NUMBER, _NUMBER),
        TargetSpec(CanonicalTarget.BASE_MODEL, "Base Model", UIType.TEXT, _STRING),
        TargetSpec(CanonicalTarget.LORA1, "LoRA 1", UIType.TEXT, _STRING),
        TargetSpec(CanonicalTarget.LORA2, "LoRA 2", UIType.TEXT, _STRING),
        TargetSpec(CanonicalTarget.LORA3, "LoRA 3", UIType.TEXT, _STRING),
        TargetSpec(CanonicalTarget.LORA1_STRENGTH, "LoRA 1 Strength", UIType.NUMBER, _NUMBER),
        TargetSpec(CanonicalTarget.LORA2_STRENGTH, "LoRA 2 Strength", UIType.NUMBER, _NUMBER),
        TargetSpec(CanonicalTarget.LORA3_STRENGTH, "LoRA 3 Strength", UIType.NUMBER, _NUMBER),
    )
}


def compatible_targets(value: Any) -> list[CanonicalTarget]:
    """Canonical targets that accept ``value``'s runtime type."""
    return [t for t, spec in CANONICAL_TARGETS.items() if spec.accepts_value(value)]


def _new_binding_id() -> str:
    return f"pg_map_{int(time.time() * 1000)}_{uuid4().hex[:6]}"


# Component, properties and mapping keys modelled by ParameterBinding
_COMPONENT_KEYS = {"id", "type", "label", "properties", "validation", "mapping", "orderIndex"}
_PROPERTY_KEYS = {"defaultValue", "paramName", "placeholder"}
_MAPPING_KEYS = {"workflowPath", "parameterKey", "defaultValue"}


@dataclass
class ParameterBinding:
    """
    Association between a UI parameter and one literal graph input.

    Serialized in the UI-component shape used by saved workflow records:
    ``{id, type, label, properties: {defaultValue, paramName, placeholder},
    validation, mapping: {workflowPath, parameterKey, defaultValue}, orderIndex}``.
    Component keys and properties this class does not model (``min``,
    ``options``, ``helpText``, ``groupId``...) are kept in ``extra`` and
    ``extra_properties`` and written back unchanged.
    """
    id: str
    ui_type: UIType
    label: str
    graph_path: GraphPath
    canonical_target: CanonicalTarget | None = None
    default_value: Any = None
    order_index: int = 0
    placeholder: str = ""
    validation: dict[str, Any] = field(default_factory=dict)
    extra_properties: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_quick_bound(self) -> bool:
        return self.canonical_target is not None

    def to_dict(self) -> dict[str, Any]:
        properties: dict[str, Any] = dict(self.extra_properties)
        properties["defaultValue"] = self.default_value
        if self.canonical_target is not None:
            properties["paramName"] = self.canonical_target.value
        if self.placeholder:
            properties["placeholder"] = self.placeholder
        data = dict(self.extra)
        data.update({
            "id": self.id,
            "type": self.ui_type.value,
            "label": self.label,
            "properties": properties,
            "validation": dict(self.validation),
            "mapping": {
                **(data.get("mapping") or {}),
                "workflowPath": self.graph_path.as_list(),
                "parameterKey": self.graph_path.key,
                "defaultValue": self.default_value,
            },
            "orderIndex": self.order_index,
        })
        return data

    @classmethod
    def from_dict(cls, data: Any) -> ParameterBinding:
        if not isinstance(data, dict):
            raise MappingFormatError("Binding must be an object")
        mapping = data.get("mapping") or {}
        properties = data.get("properties") or {}
        if "workflowPath" not in mapping:
            raise MappingFormatError(f"Binding {data.get('id')!r} has no workflowPath")
        try:
            ui_type = UIType(data.get("type", "text"))
        except ValueError:
            ui_type = UIType.TEXT
        default = properties.get("defaultValue", mapping.get("defaultValue"))
        validation = data.get("validation")
        extra = {k: v for k, v in data.items() if k not in _COMPONENT_KEYS}
        # Mapping fields beyond the path (transformFunction...) ride along in extra
        mapping_extra = {k: v for k, v in mapping.items() if k not in _MAPPING_KEYS}
        if mapping_extra:
            extra["mapping"] = mapping_extra
        return cls(
            id=str(data.get("id") or _new_binding_id()),
            ui_type=ui_type,
            label=str(data.get("label", "")),
            graph_path=GraphPath.from_list(mapping["workflowPath"]),
            canonical_target=CanonicalTarget.parse(properties.get("paramName")),
            default_value=default,
            order_index=int(data.get("orderIndex", 0)),
            placeholder=str(properties.get("placeholder", "")),
            validation=dict(validation) if isinstance(validation, dict) else {},
            extra_properties={k: v for k, v in properties.items() if k not in _PROPERTY_KEYS},
            extra=extra,
        )


class ProposalStatus(Enum):
    MAPPABLE = "mappable"
    NOT_MAPPABLE = "not_mappable"
    MISSING = "missing"


@dataclass
class BindingProposal:
    """What the editor may offer for one selected graph input."""
    status: ProposalStatus
    path: GraphPath
    value: Any = None
    scalar_type: ScalarType | None = None
    compatible_targets: list[CanonicalTarget] = field(default_factory=list)

    @property
    def is_mappable(self) -> bool:
        return self.status is ProposalStatus.MAPPABLE


# Fields that update_binding() may patch
_PATCHABLE_FIELDS = {"label", "default_value", "ui_type", "canonical_target", "placeholder", "order_index"}


class BindingStore:
    """
    Ordered binding list for one graph.

    Operations are index-addressed. List position, not ``order_index``,
    is authoritative for iteration; deleting never renumbers siblings.
    """

    def __init__(self, graph: WorkflowGraph, bindings: list[ParameterBinding] | None = None):
        self.graph = graph
        self.bindings: list[ParameterBinding] = bindings if bindings is not None else []

    def propose_binding(self, node_id: str, key: str) -> BindingProposal:
        """Inspect one input and report whether and how it can be bound."""
        path = GraphPath(node_id, key)
        value = self.graph.get_input(node_id, key)
        if value is None:
            return BindingProposal(ProposalStatus.MISSING, path)
        if is_connection(value):
            return BindingProposal(ProposalStatus.NOT_MAPPABLE, path, value=value)
        return BindingProposal(
            ProposalStatus.MAPPABLE,
            path,
            value=value,
            scalar_type=scalar_type(value),
            compatible_targets=compatible_targets(value),
        )

    def quick_bind(
        self,
        node_id: str,
        key: str,
        current_value: Any,
        target: CanonicalTarget | str,
    ) -> ParameterBinding:
        """
        Bind an input to a canonical target and append the binding.

        Raises:
            NotMappable: The input is a connection or does not exist
            IncompatibleType: The target does not accept the value's type
        """
        canonical = CanonicalTarget.parse(target)
        if canonical is None:
            raise IncompatibleType(f"Unknown canonical target: {target!r}")
        graph_value = self.graph.get_input(node_id, key)
        if graph_value is None:
            raise NotMappable(f"Input {node_id}.{key} does not exist in the graph")
        if is_connection(current_value) or is_connection(graph_value):
            raise NotMappable(f"Input {node_id}.{key} is driven by another node")

        spec = CANONICAL_TARGETS[canonical]
        if not spec.accepts_value(current_value):
            kind = scalar_type(current_value)
            raise IncompatibleType(
                f"{spec.label} requires "
                f"{'/'.join(sorted(t.value for t in spec.accepts))}, "
                f"got {kind.value if kind else type(current_value).__name__}"
            )

        binding = ParameterBinding(
            id=_new_binding_id(),
            ui_type=spec.ui_type,
            label=spec.label,
            graph_path=GraphPath(node_id, key),
            canonical_target=canonical,
            default_value=current_value,
            order_index=len(self.bindings),
            placeholder=f"Mapped to {spec.label}",
        )
        self.bindings.append(binding)
        return binding

    def create_custom_binding(
        self,
        node_id: str,
        key: str,
        label: str | None = None,
        default_value: Any = None,
    ) -> ParameterBinding:
        """
        Append a manual binding (no canonical target).

        Raises:
            NotMappable: The input is a connection or does not exist
        """
        proposal = self.propose_binding(node_id, key)
        if not proposal.is_mappable:
            raise NotMappable(f"Input {node_id}.{key} cannot be mapped ({proposal.status.value})")
        binding = ParameterBinding(
            id=_new_binding_id(),
            ui_type=UIType.for_scalar(proposal.scalar_type),
            label=label or key,
            graph_path=proposal.path,
            default_value=proposal.value if default_value is None else default_value,
            order_index=len(self.bindings),
        )
        self.bindings.append(binding)
        return binding

    def update_binding(self, index: int, patch: dict[str, Any]) -> ParameterBinding:
        """
        Apply ``patch`` (field name -> value) to the binding at ``index``.

        Raises:
            ValueError: The patch names a field that cannot be edited
            IncompatibleType: The target is unknown or rejects the default value
        """
        current = self._at(index)
        unknown = set(patch) - _PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot patch binding fields: {', '.join(sorted(unknown))}")
        changes = dict(patch)
        if "ui_type" in changes:
            changes["ui_type"] = UIType(changes["ui_type"])
        if "canonical_target" in changes:
            name = changes["canonical_target"]
            changes["canonical_target"] = CanonicalTarget.parse(name)
            if changes["canonical_target"] is None and name not in (None, ""):
                raise IncompatibleType(f"Unknown canonical target: {name!r}")
        updated = replace(current, **changes)
        if updated.canonical_target is not None and updated.default_value is not None:
            if not _target_accepts(updated, updated.default_value):
                spec = CANONICAL_TARGETS[updated.canonical_target]
                kind = scalar_type(updated.default_value)
                raise IncompatibleType(
                    f"{spec.label} requires "
                    f"{'/'.join(sorted(t.value for t in spec.accepts))}, "
                    f"got {kind.value if kind else type(updated.default_value).__name__}"
                )
        self.bindings[index] = updated
        return updated

    def delete_binding(self, index: int) -> ParameterBinding:
        """Remove the binding at ``index``; siblings keep their order_index."""
        self._at(index)
        return self.bindings.pop(index)

    def find_binding(self, node_id: str, key: str) -> int:
        """List index of the binding for ``node_id.key``, or -1."""
        for i, binding in enumerate(self.bindings):
            if binding.graph_path.node_id == node_id and binding.graph_path.key == key:
                return i
        return -1

    def mapped_input_count(self, node_id: str) -> int:
        node = self.graph.get_node(node_id)
        if node is None:
            return 0
        return sum(1 for key in node.inputs if self.find_binding(node_id, key) >= 0)

    def resolve(self, config: GenerationConfig) -> list[tuple[GraphPath, Any]]:
        return resolve_for_submission(self.graph, self.bindings, config)

    def _at(self, index: int) -> ParameterBinding:
        if not 0 <= index < len(self.bindings):
            raise BindingIndexError(f"No binding at index {index}")
        return self.bindings[index]

    def __len__(self) -> int:
        return len(self.bindings)


# ============================================================================
# Resolution
# ============================================================================

def _lora_at(config: GenerationConfig, slot: int) -> LoraSelection | None:
    if 0 <= slot < len(config.lora_selections):
        return config.lora_selections[slot]
    return None


def _is_strength_key(key: str) -> bool:
    lowered = key.lower()
    return "strength" in lowered or "weight" in lowered


def _target_accepts(binding: ParameterBinding, value: Any) -> bool:
    """Whether the binding's canonical target can carry ``value``."""
    target = binding.canonical_target
    if CANONICAL_TARGETS[target].accepts_value(value):
        return True
    # A LoRA name target on a strength input resolves to the strength
    return (
        target.lora_slot is not None
        and (_is_strength_key(binding.graph_path.key) or binding.ui_type.is_numeric)
        and scalar_type(value) is ScalarType.NUMBER
    )


def _value_for_target(binding: ParameterBinding, config: GenerationConfig) -> Any:
    target = binding.canonical_target
    if target is CanonicalTarget.PROMPT:
        return config.prompt or None
    if target is CanonicalTarget.WIDTH:
        return config.width
    if target is CanonicalTarget.HEIGHT:
        return config.height
    if target is CanonicalTarget.BATCH_SIZE:
        return config.batch_size
    if target is CanonicalTarget.BASE_MODEL:
        return config.base_model

    slot = target.lora_slot if target else None
    if slot is None:
        return None
    lora = _lora_at(config, slot)
    if lora is None:
        return None
    wants_strength = (
        target.is_lora_strength
        or _is_strength_key(binding.graph_path.key)
        or binding.ui_type.is_numeric
    )
    return lora.strength if wants_strength else lora.model_name


def resolve_for_submission(
    graph: WorkflowGraph,
    bindings: Iterable[ParameterBinding],
    config: GenerationConfig,
) -> list[tuple[GraphPath, Any]]:
    """
    Compute the ``(graph_path, value)`` overrides for one submission.

    Quick-bound bindings take their value from ``config`` (skipped when the
    config has nothing for that target); manual bindings contribute their
    default value verbatim. With no bindings at all the keyword fallback
    is used instead.
    """
    bindings = list(bindings)
    if not bindings:
        return resolve_by_keywords(graph, config)

    resolved: list[tuple[GraphPath, Any]] = []
    for binding in bindings:
        if binding.graph_path.node_id not in graph:
            logger.warning("Skipping binding %s: node %s not in graph",
                           binding.id, binding.graph_path.node_id)
            continue
        if binding.canonical_target is None:
            if binding.default_value is not None:
                resolved.append((binding.graph_path, binding.default_value))
            continue
        value = _value_for_target(binding, config)
        if value is not None:
            resolved.append((binding.graph_path, value))
    return resolved


# ============================================================================
# Keyword fallback
# ============================================================================
# Used only when a graph has no bindings. Strictly weaker than explicit
# bindings: it guesses from free-text node titles.

class FallbackTarget(Enum):
    SKIP = "skip"
    PROMPT = "prompt"
    WIDTH = "width"
    HEIGHT = "height"
    BATCH_SIZE = "batch_size"
    LORA_STRENGTH = "lora_strength"
    LORA_NAME = "lora_name"
    BASE_MODEL = "base_model"


@dataclass(frozen=True)
class KeywordRule:
    """Maps titles matching ``pattern`` (and keys matching ``key_pattern``) to a target."""
    pattern: re.Pattern[str]
    target: FallbackTarget
    accepts: ScalarType | None = None
    key_pattern: re.Pattern[str] | None = None

    def matches(self, title: str, key: str, value: Any) -> bool:
        if not self.pattern.search(title):
            return False
        if self.key_pattern is not None and not self.key_pattern.search(key):
            return False
        return self.accepts is None or scalar_type(value) is self.accepts


def _rx(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


# Ordered: first matching rule wins
KEYWORD_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(_rx(r"negative|负面|反向"), FallbackTarget.SKIP),
    KeywordRule(_rx(r"prompt|文本|提示"), FallbackTarget.PROMPT, ScalarType.STRING),
    KeywordRule(_rx(r"width"), FallbackTarget.WIDTH, ScalarType.NUMBER),
    KeywordRule(_rx(r"height"), FallbackTarget.HEIGHT, ScalarType.NUMBER),
    KeywordRule(_rx(r"batch|数量"), FallbackTarget.BATCH_SIZE, ScalarType.NUMBER),
    KeywordRule(_rx(r"lora"), FallbackTarget.LORA_STRENGTH, ScalarType.NUMBER,
                key_pattern=_rx(r"strength|weight")),
    KeywordRule(_rx(r"lora"), FallbackTarget.LORA_NAME, ScalarType.STRING),
    KeywordRule(_rx(r"model|模型|path|ckpt|checkpoint"), FallbackTarget.BASE_MODEL, ScalarType.STRING),
)


def match_keyword_rule(title: str, key: str, value: Any) -> FallbackTarget | None:
    for rule in KEYWORD_RULES:
        if rule.matches(title, key, value):
            return rule.target
    return None


def resolve_by_keywords(
    graph: WorkflowGraph,
    config: GenerationConfig,
) -> list[tuple[GraphPath, Any]]:
    """
    Guess overrides for an unmapped graph from node titles and input keys.

    LoRA slots are handed out in the order LoRA-matching nodes appear.
    """
    resolved: list[tuple[GraphPath, Any]] = []
    lora_slots: dict[str, int] = {}

    for node_id, key, value in graph.iter_literal_inputs():
        title = f"{graph.node_title(node_id)} {key}"
        target = match_keyword_rule(title, key, value)
        if target is None or target is FallbackTarget.SKIP:
            continue

        new_value: Any = None
        if target is FallbackTarget.PROMPT:
            new_value = config.prompt or None
        elif target is FallbackTarget.WIDTH:
            new_value = config.width
        elif target is FallbackTarget.HEIGHT:
            new_value = config.height
        elif target is FallbackTarget.BATCH_SIZE:
            new_value = config.batch_size
        elif target is FallbackTarget.BASE_MODEL:
            new_value = config.base_model
        elif target in (FallbackTarget.LORA_NAME, FallbackTarget.LORA_STRENGTH):
            slot = lora_slots.setdefault(node_id, len(lora_slots))
            lora = _lora_at(config, slot) if slot < MAX_LORA_SLOTS else None
            if lora is not None:
                new_value = lora.strength if target is FallbackTarget.LORA_STRENGTH else lora.model_name

        if new_value is not None:
            resolved.append((GraphPath(node_id, key), new_value))
    return resolved
