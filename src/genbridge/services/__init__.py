"""
Generation Services.

This package wires the core model to the outside world:
- GenerationOrchestrator: submission, routing and task lifecycle
- GraphExecutionClient: the external graph-execution endpoint
- ImageStoreClient / HistoryClient: best-effort persistence collaborators
- AIService: text, vision and image calls plus batch loops
"""

from genbridge.services.graph_execution import (
    GraphExecutionClient,
    OutputBlob,
    split_output_stream,
)

from genbridge.services.persistence import (
    HistoryClient,
    ImageStoreClient,
)

from genbridge.services.ai import (
    SYSTEM_PROMPT_PROFILES,
    AIService,
    get_system_prompt,
)

from genbridge.services.orchestrator import (
    BackendRoute,
    GenerationOrchestrator,
    route_for,
)


__all__ = [
    # graph_execution.py
    "GraphExecutionClient",
    "OutputBlob",
    "split_output_stream",
    # persistence.py
    "HistoryClient",
    "ImageStoreClient",
    # ai.py
    "SYSTEM_PROMPT_PROFILES",
    "AIService",
    "get_system_prompt",
    # orchestrator.py
    "BackendRoute",
    "GenerationOrchestrator",
    "route_for",
]
