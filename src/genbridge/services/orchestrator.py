"""
Generation Orchestrator - One submission, one tracked task.

Turns a GenerationConfig plus a backend selection into exactly one
GenerationTask, dispatches it to the matching route handler, and
reconciles the result into the shared TaskList.

Task lifecycle:
    pending (inserted) -> running -> succeeded (replaced in place by id)
                                  -> failed    (removed; error reported)

Routes:
- MULTIMODAL_IMAGE: native multimodal model; edits when references are given
- HOSTED_ALGORITHM: signed hosted algorithm with a fixed request shape
- GRAPH_EXECUTION: bound values merged into a copy of the mapped graph
- DEFAULT: same as the hosted route, against the default algorithm
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections import OrderedDict
from enum import Enum
from typing import Any, Awaitable, Callable

from genbridge.config import StudioConfig
from genbridge.core.bindings import resolve_for_submission
from genbridge.core.generation import (
    GenerationConfig,
    GenerationTask,
    TaskList,
    TaskStatus,
    new_task_id,
)
from genbridge.core.graph import MAX_SEED
from genbridge.core.mapping import MappingConfig
from genbridge.errors import (
    BackendExecutionFailed,
    EmptyResult,
    GenBridgeError,
    InvalidGenerationConfig,
    describe_error,
)
from genbridge.providers.base import (
    Capability,
    GenerationOptions,
    ImageGenerationInput,
    ImageResult,
)
from genbridge.providers.registry import ProviderRegistry
from genbridge.services.graph_execution import GraphExecutionClient
from genbridge.services.persistence import HistoryClient, ImageStoreClient


logger = logging.getLogger(__name__)

MULTIMODAL_MODEL_ID = "gemini-3-pro-image-preview"
HOSTED_MODEL_ID = "seed4_lemo1230"
DEFAULT_MODEL_ID = "lemo_2dillustator"


class BackendRoute(Enum):
    """Closed set of generation routes, resolved once per submission."""
    MULTIMODAL_IMAGE = "multimodal_image"
    HOSTED_ALGORITHM = "hosted_algorithm"
    GRAPH_EXECUTION = "graph_execution"
    DEFAULT = "default"


# UI backend names -> route
ROUTE_ALIASES: dict[str, BackendRoute] = {
    "Nano banana": BackendRoute.MULTIMODAL_IMAGE,
    "Seed 4.0": BackendRoute.HOSTED_ALGORITHM,
    "Workflow": BackendRoute.GRAPH_EXECUTION,
}


def route_for(selection: str | BackendRoute | None) -> BackendRoute:
    """Map a backend selection to its route; unknown or empty means DEFAULT."""
    if isinstance(selection, BackendRoute):
        return selection
    if not selection:
        return BackendRoute.DEFAULT
    if selection in ROUTE_ALIASES:
        return ROUTE_ALIASES[selection]
    try:
        return BackendRoute(selection)
    except ValueError:
        return BackendRoute.DEFAULT


ErrorCallback = Callable[[GenerationTask, GenBridgeError], None]


class GenerationOrchestrator:
    """
    Dispatches generation requests and owns the visible task list.

    ``submit`` must be called from a running event loop: it schedules the
    work with ``asyncio.create_task`` and returns the pending task at once.
    Every task works on its own config snapshot and graph copy.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        execution: GraphExecutionClient | None = None,
        image_store: ImageStoreClient | None = None,
        history: HistoryClient | None = None,
        config: StudioConfig | None = None,
        tasks: TaskList | None = None,
        rng: random.Random | None = None,
    ):
        self.registry = registry
        self.config = config or registry.config
        self.execution = execution or GraphExecutionClient.from_config(self.config)
        self.image_store = image_store
        self.history = history
        self._tasks = tasks or TaskList()
        self._rng = rng or random.Random()
        self._running: dict[str, asyncio.Task[None]] = {}
        # Bounded like the failures log; oldest errors are dropped first
        self._errors: OrderedDict[str, GenBridgeError] = OrderedDict()
        self._error_listeners: list[ErrorCallback] = []

        self._handlers: dict[BackendRoute, Callable[..., Awaitable[str]]] = {
            BackendRoute.MULTIMODAL_IMAGE: self._run_multimodal,
            BackendRoute.HOSTED_ALGORITHM: self._run_hosted,
            BackendRoute.GRAPH_EXECUTION: self._run_graph,
            BackendRoute.DEFAULT: self._run_default,
        }

    @classmethod
    def from_config(cls, config: StudioConfig) -> GenerationOrchestrator:
        return cls(
            registry=ProviderRegistry(config),
            execution=GraphExecutionClient.from_config(config),
            image_store=ImageStoreClient.from_config(config),
            history=HistoryClient.from_config(config),
            config=config,
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def tasks(self) -> TaskList:
        return self._tasks

    def on_update(self, callback: Callable[[list[GenerationTask]], None]) -> None:
        """Call ``callback`` with the visible list after every change."""
        self._tasks.subscribe(callback)

    def on_error(self, callback: ErrorCallback) -> None:
        """Call ``callback`` with the failed task and its categorized error."""
        self._error_listeners.append(callback)

    def submit(
        self,
        config: GenerationConfig,
        backend: str | BackendRoute | None = None,
        mapping: MappingConfig | None = None,
    ) -> GenerationTask:
        """
        Validate, create and schedule one task.

        Raises:
            InvalidGenerationConfig: Blank prompt, or graph route without a mapping
        """
        if not config.prompt or not config.prompt.strip():
            raise InvalidGenerationConfig("Please enter a prompt")
        route = route_for(backend)
        if route is BackendRoute.GRAPH_EXECUTION and mapping is None:
            raise InvalidGenerationConfig("No workflow selected")

        snapshot = config.snapshot()
        if mapping is not None:
            mapping = MappingConfig(
                id=mapping.id,
                title=mapping.title,
                graph=mapping.graph.copy(),
                bindings=list(mapping.bindings),
                description=mapping.description,
                endpoint=mapping.endpoint,
            )

        task = GenerationTask(id=new_task_id(), config=snapshot, backend=route.value)
        self._tasks.insert(task)
        logger.info("Task %s created (%s)", task.id, route.value)

        running = asyncio.create_task(self._execute(task, route, mapping))
        self._running[task.id] = running
        # Dropped only once persistence and history are done
        running.add_done_callback(lambda _: self._running.pop(task.id, None))
        return task

    async def wait(self, task_id: str) -> GenerationTask | None:
        """
        Wait for ``task_id`` to finish.

        Returns the final visible task, or the failure record for a task
        that was removed.
        """
        running = self._running.get(task_id)
        if running is not None:
            await asyncio.shield(running)
        task = self._tasks.get(task_id)
        if task is not None:
            return task
        for failed in reversed(self._tasks.failures):
            if failed.id == task_id:
                return failed
        return None

    async def generate(
        self,
        config: GenerationConfig,
        backend: str | BackendRoute | None = None,
        mapping: MappingConfig | None = None,
    ) -> GenerationTask:
        """Submit and wait; re-raises the task's error when it failed."""
        task = self.submit(config, backend, mapping)
        final = await self.wait(task.id)
        error = self._errors.pop(task.id, None)
        if error is not None:
            raise error
        return final or task

    def error_for(self, task_id: str) -> GenBridgeError | None:
        return self._errors.get(task_id)

    # -------------------------------------------------------------------------
    # Task execution
    # -------------------------------------------------------------------------

    async def _execute(
        self,
        task: GenerationTask,
        route: BackendRoute,
        mapping: MappingConfig | None,
    ) -> None:
        running = task.transition(TaskStatus.RUNNING)
        self._tasks.replace(task.id, running)
        try:
            image_ref = await self._handlers[route](running.config, mapping)
        except asyncio.CancelledError:
            self._fail(running, BackendExecutionFailed("Generation cancelled"))
            raise
        except GenBridgeError as e:
            self._fail(running, e)
            return
        except Exception as e:
            logger.exception("Unexpected error in task %s", task.id)
            error = BackendExecutionFailed(str(e) or type(e).__name__)
            error.__cause__ = e
            self._fail(running, error)
            return

        metadata = {**running.config.to_dict(), "base_model": running.config.base_model or route.value}
        saved_path = await self._persist(image_ref, metadata)

        done = running.transition(TaskStatus.SUCCEEDED, result=(image_ref,), saved_path=saved_path)
        if not self._tasks.replace(task.id, done):
            logger.warning("Task %s left the list before completing", task.id)
        logger.info("Task %s succeeded", task.id)
        await self._record_history(done)

    def _fail(self, task: GenerationTask, error: GenBridgeError) -> None:
        title, description = describe_error(error)
        failed = task.transition(TaskStatus.FAILED, error=f"{title}: {description}")
        self._tasks.remove(task.id)
        self._tasks.record_failure(failed)
        self._errors[task.id] = error
        while len(self._errors) > self._tasks.max_failures:
            self._errors.popitem(last=False)
        logger.warning("Task %s failed: %s: %s", task.id, title, description)
        for callback in self._error_listeners:
            try:
                callback(failed, error)
            except Exception:
                logger.exception("Error listener failed")

    async def _persist(self, image_ref: str, metadata: dict[str, Any]) -> str:
        """Durable reference for ``image_ref``; falls back to the ref itself."""
        if self.image_store is None:
            return image_ref
        try:
            return await self.image_store.save(image_ref, metadata)
        except Exception as e:
            logger.warning("Failed to save image: %s", e)
            return image_ref

    async def _record_history(self, task: GenerationTask) -> None:
        if self.history is None:
            return
        try:
            await self.history.append(
                task.saved_path or task.image_url or "",
                task.config.prompt,
            )
        except Exception as e:
            logger.warning("Failed to save history: %s", e)

    # -------------------------------------------------------------------------
    # Route handlers
    # -------------------------------------------------------------------------

    @staticmethod
    def _first_image(result: ImageResult, source: str) -> str:
        if not result.images:
            raise EmptyResult(f"{source} returned empty result")
        return result.images[0]

    async def _run_multimodal(self, config: GenerationConfig, mapping: MappingConfig | None) -> str:
        provider = self.registry.resolve(MULTIMODAL_MODEL_ID)
        provider.require(Capability.IMAGE)
        if config.reference_images:
            original, *references = config.reference_images
            result = await provider.edit_image(
                config.prompt,
                original,
                references,
                aspect_ratio=config.aspect_ratio,
                image_size=config.image_size,
            )
        else:
            result = await provider.generate_image(ImageGenerationInput(
                prompt=config.prompt,
                aspect_ratio=config.aspect_ratio,
                image_size=config.image_size,
            ))
        return self._first_image(result, MULTIMODAL_MODEL_ID)

    async def _run_algorithm(self, model_id: str, config: GenerationConfig) -> str:
        provider = self.registry.resolve(model_id)
        provider.require(Capability.IMAGE)
        result = await provider.generate_image(ImageGenerationInput(
            prompt=config.prompt,
            width=config.width,
            height=config.height,
            batch_size=config.batch_size,
            options=GenerationOptions(seed=self._rng.randint(0, MAX_SEED - 1)),
        ))
        return self._first_image(result, model_id)

    async def _run_hosted(self, config: GenerationConfig, mapping: MappingConfig | None) -> str:
        return await self._run_algorithm(HOSTED_MODEL_ID, config)

    async def _run_default(self, config: GenerationConfig, mapping: MappingConfig | None) -> str:
        return await self._run_algorithm(DEFAULT_MODEL_ID, config)

    async def _run_graph(self, config: GenerationConfig, mapping: MappingConfig | None) -> str:
        if mapping is None:
            raise InvalidGenerationConfig("No workflow selected")

        overrides = resolve_for_submission(mapping.graph, mapping.bindings, config)
        graph = mapping.graph.with_overrides(overrides)
        if self.config.randomize_seeds:
            bound = [p for p, _ in overrides] + [b.graph_path for b in mapping.bindings]
            graph = graph.with_random_seeds(self._rng, exclude=bound)

        inputs = [{"key": str(path), "value": value} for path, value in overrides]
        blobs = await self.execution.run(graph, inputs=inputs, endpoint=mapping.endpoint)
        for blob in blobs:
            if blob.is_image:
                return blob.to_data_url()
        raise EmptyResult("Workflow produced no image output")
