"""
Core module - Graph model, bindings, mappings, and task tracking.

This module provides the fundamental building blocks for genbridge:
- Graph: node-graph documents and copy-on-write overrides
- Bindings: UI parameter bindings and their resolution
- Mapping: persisted graph + binding configs
- Generation: request config, tasks, and the visible task list
"""

from genbridge.core.graph import (
    GraphNode,
    GraphPath,
    ScalarType,
    WorkflowGraph,
    is_connection,
    scalar_type,
)

from genbridge.core.bindings import (
    CANONICAL_TARGETS,
    KEYWORD_RULES,
    BindingProposal,
    BindingStore,
    CanonicalTarget,
    ParameterBinding,
    ProposalStatus,
    UIType,
    resolve_by_keywords,
    resolve_for_submission,
)

from genbridge.core.generation import (
    GenerationConfig,
    GenerationTask,
    LoraSelection,
    TaskList,
    TaskStatus,
)

from genbridge.core.mapping import (
    MappingConfig,
    MappingSession,
    MappingStore,
    export_mapping,
    import_mapping,
)

from genbridge.core.execution import (
    BatchResult,
    CancellationToken,
    guarded,
    run_batch,
)


__all__ = [
    # graph.py
    "GraphNode",
    "GraphPath",
    "ScalarType",
    "WorkflowGraph",
    "is_connection",
    "scalar_type",
    # bindings.py
    "CANONICAL_TARGETS",
    "KEYWORD_RULES",
    "BindingProposal",
    "BindingStore",
    "CanonicalTarget",
    "ParameterBinding",
    "ProposalStatus",
    "UIType",
    "resolve_by_keywords",
    "resolve_for_submission",
    # generation.py
    "GenerationConfig",
    "GenerationTask",
    "LoraSelection",
    "TaskList",
    "TaskStatus",
    # mapping.py
    "MappingConfig",
    "MappingSession",
    "MappingStore",
    "export_mapping",
    "import_mapping",
    # execution.py
    "BatchResult",
    "CancellationToken",
    "guarded",
    "run_batch",
]
