"""
Workflow Graph Model - Typed view over a node-graph API document.

A graph maps node ids to ``{class_type, inputs, _meta}``. Every input is
either a literal (string, number, boolean) or a connection, which is a
two element ``[source_node_id, output_index]`` sequence.

This module provides:
- WorkflowGraph: read accessors plus copy-on-write overrides
- GraphPath: address of one input, ``(node_id, "inputs", key)``
- is_connection / scalar_type: value classification helpers
"""

from __future__ import annotations

import copy
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Iterator, TypeAlias

from genbridge.errors import MappingFormatError


LiteralValue: TypeAlias = str | int | float | bool
InputValue: TypeAlias = LiteralValue | list | tuple

INPUTS_SECTION = "inputs"

# Inputs that ComfyUI-style engines treat as random seeds
SEED_LIKE_INPUTS = ("seed", "noise_seed", "rand_seed")

MAX_SEED = 2147483647


class ScalarType(Enum):
    """Runtime type of a literal input value."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"


def is_connection(value: Any) -> bool:
    """True iff ``value`` is an ordered pair rather than a scalar."""
    return isinstance(value, (list, tuple)) and len(value) == 2


def scalar_type(value: Any) -> ScalarType | None:
    """Classify a literal value; None for connections and other shapes."""
    # bool is a subclass of int, check it first
    if isinstance(value, bool):
        return ScalarType.BOOLEAN
    if isinstance(value, (int, float)):
        return ScalarType.NUMBER
    if isinstance(value, str):
        return ScalarType.STRING
    return None


def _node_sort_key(node_id: str) -> tuple[int, int, str]:
    if node_id.isdigit():
        return (0, int(node_id), node_id)
    return (1, 0, node_id)


@dataclass(frozen=True)
class GraphPath:
    """Address of one node input inside a graph."""
    node_id: str
    key: str
    section: str = INPUTS_SECTION

    def as_list(self) -> list[str]:
        return [self.node_id, self.section, self.key]

    @classmethod
    def from_list(cls, parts: Iterable[Any]) -> GraphPath:
        items = [str(p) for p in parts]
        if len(items) != 3 or items[1] != INPUTS_SECTION:
            raise MappingFormatError(f"Invalid graph path: {items!r}")
        return cls(node_id=items[0], key=items[2])

    def __str__(self) -> str:
        return "-".join(self.as_list())


@dataclass
class GraphNode:
    """One node of the graph."""
    class_type: str
    inputs: dict[str, Any] = field(default_factory=dict)
    title: str | None = None

    @property
    def display_title(self) -> str:
        return self.title or self.class_type

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "inputs": copy.deepcopy(self.inputs),
            "class_type": self.class_type,
        }
        if self.title is not None:
            data["_meta"] = {"title": self.title}
        return data

    @classmethod
    def from_dict(cls, node_id: str, data: Any) -> GraphNode:
        if not isinstance(data, dict):
            raise MappingFormatError(f"Node {node_id} is not an object")
        inputs = data.get("inputs") or {}
        if not isinstance(inputs, dict):
            raise MappingFormatError(f"Node {node_id} has invalid inputs")
        meta = data.get("_meta") or {}
        return cls(
            class_type=str(data.get("class_type", "")),
            inputs=copy.deepcopy(inputs),
            title=meta.get("title") if isinstance(meta, dict) else None,
        )


class WorkflowGraph:
    """
    The complete node graph submitted to the external execution engine.

    Instances are treated as values: every override returns a new graph and
    leaves the receiver untouched, so concurrent submissions never share
    mutable graph state.
    """

    def __init__(self, nodes: dict[str, GraphNode] | None = None):
        self._nodes: dict[str, GraphNode] = dict(nodes or {})

    # --- Construction / serialization ---

    @classmethod
    def from_dict(cls, data: Any) -> WorkflowGraph:
        """Build a graph from the node-id keyed API JSON document."""
        if not isinstance(data, dict):
            raise MappingFormatError("Workflow graph must be a JSON object")
        return cls({
            str(node_id): GraphNode.from_dict(str(node_id), node)
            for node_id, node in data.items()
        })

    def to_dict(self) -> dict[str, Any]:
        return {node_id: node.to_dict() for node_id, node in self._nodes.items()}

    def copy(self) -> WorkflowGraph:
        """Return a structural (deep) copy."""
        return WorkflowGraph({
            node_id: GraphNode(
                class_type=node.class_type,
                inputs=copy.deepcopy(node.inputs),
                title=node.title,
            )
            for node_id, node in self._nodes.items()
        })

    # --- Accessors ---

    @property
    def nodes(self) -> dict[str, GraphNode]:
        """Get all nodes (read-only copy of the mapping)."""
        return self._nodes.copy()

    def node_ids(self) -> list[str]:
        """Node ids in display order: numeric ids ascending, then the rest."""
        return sorted(self._nodes, key=_node_sort_key)

    def get_node(self, node_id: str) -> GraphNode | None:
        return self._nodes.get(node_id)

    def get_input(self, node_id: str, key: str) -> InputValue | None:
        """Current value of one input, or None if node or key is absent."""
        node = self._nodes.get(node_id)
        if node is None:
            return None
        return node.inputs.get(key)

    def get_path(self, path: GraphPath) -> InputValue | None:
        return self.get_input(path.node_id, path.key)

    def node_title(self, node_id: str) -> str:
        node = self._nodes.get(node_id)
        return node.display_title if node else node_id

    def iter_literal_inputs(self) -> Iterator[tuple[str, str, LiteralValue]]:
        """Yield ``(node_id, key, value)`` for every non-connection input."""
        for node_id in self.node_ids():
            for key, value in self._nodes[node_id].inputs.items():
                if not is_connection(value) and scalar_type(value) is not None:
                    yield node_id, key, value

    def literal_input_count(self, node_id: str) -> int:
        node = self._nodes.get(node_id)
        if node is None:
            return 0
        return sum(1 for v in node.inputs.values() if not is_connection(v))

    def dangling_connections(self) -> list[tuple[GraphPath, str]]:
        """
        Connections whose source node does not exist.

        Returned for reporting only; the execution engine is the one that
        ultimately rejects such graphs.
        """
        dangling = []
        for node_id in self.node_ids():
            for key, value in self._nodes[node_id].inputs.items():
                if is_connection(value) and str(value[0]) not in self._nodes:
                    dangling.append((GraphPath(node_id, key), str(value[0])))
        return dangling

    # --- Copy-on-write overrides ---

    def with_override(self, node_id: str, key: str, value: Any) -> WorkflowGraph:
        """Return a copy with one input replaced."""
        return self.with_overrides([(GraphPath(node_id, key), value)])

    def with_overrides(self, overrides: Iterable[tuple[GraphPath, Any]]) -> WorkflowGraph:
        """
        Return a copy with every ``(path, value)`` applied in order.

        Raises:
            KeyError: If a path names a node that is not in the graph
        """
        result = self.copy()
        for path, value in overrides:
            node = result._nodes.get(path.node_id)
            if node is None:
                raise KeyError(f"Node {path.node_id} not found in graph")
            node.inputs[path.key] = copy.deepcopy(value)
        return result

    def with_random_seeds(
        self,
        rng: random.Random | None = None,
        exclude: Iterable[GraphPath] = (),
    ) -> WorkflowGraph:
        """Return a copy with every literal seed-like input re-rolled."""
        rng = rng or random.Random()
        skip = set(exclude)
        overrides = [
            (GraphPath(node_id, key), rng.randint(0, MAX_SEED - 1))
            for node_id, key, value in self.iter_literal_inputs()
            if key in SEED_LIKE_INPUTS
            and scalar_type(value) is ScalarType.NUMBER
            and GraphPath(node_id, key) not in skip
        ]
        return self.with_overrides(overrides)

    # --- Utility ---

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WorkflowGraph):
            return NotImplemented
        return self.to_dict() == other.to_dict()
