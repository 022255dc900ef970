"""
Tests for the generation orchestrator.

Providers and the execution client are replaced by in-memory fakes so
the task lifecycle can be driven step by step.
"""

import asyncio
import random
from unittest.mock import AsyncMock, Mock

import pytest

from genbridge.config import StudioConfig
from genbridge.core.generation import GenerationConfig, TaskStatus
from genbridge.core.graph import WorkflowGraph
from genbridge.core.mapping import MappingConfig
from genbridge.errors import BackendExecutionFailed, EmptyResult, InvalidGenerationConfig
from genbridge.providers.base import ImageResult
from genbridge.services.graph_execution import OutputBlob
from genbridge.services.orchestrator import (
    DEFAULT_MODEL_ID,
    HOSTED_MODEL_ID,
    MULTIMODAL_MODEL_ID,
    BackendRoute,
    GenerationOrchestrator,
    route_for,
)


PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-png-body"


class FakeProvider:
    """Image provider that can be held at a gate until released."""

    def __init__(self, images, gate=None, error=None):
        self.images = images
        self.gate = gate
        self.error = error
        self.generate_calls = []
        self.edit_calls = []

    def require(self, capability):
        pass

    async def _finish(self):
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return ImageResult(images=list(self.images))

    async def generate_image(self, params, token=None):
        self.generate_calls.append(params)
        return await self._finish()

    async def edit_image(self, instruction, original, references=(), **kwargs):
        self.edit_calls.append((instruction, original, list(references)))
        return await self._finish()


class FakeRegistry:
    def __init__(self, providers):
        self.providers = providers
        self.config = StudioConfig()

    def resolve(self, model_id):
        return self.providers[model_id]


def _orchestrator(providers=None, **kwargs):
    kwargs.setdefault("execution", Mock())
    kwargs.setdefault("config", StudioConfig())
    return GenerationOrchestrator(FakeRegistry(providers or {}), rng=random.Random(0), **kwargs)


class TestRouting:
    """Tests for route_for."""

    def test_aliases(self):
        assert route_for("Nano banana") is BackendRoute.MULTIMODAL_IMAGE
        assert route_for("Seed 4.0") is BackendRoute.HOSTED_ALGORITHM
        assert route_for("Workflow") is BackendRoute.GRAPH_EXECUTION

    def test_route_values_and_default(self):
        assert route_for("graph_execution") is BackendRoute.GRAPH_EXECUTION
        assert route_for(None) is BackendRoute.DEFAULT
        assert route_for("something else") is BackendRoute.DEFAULT


class TestValidation:
    """Requests rejected before a task exists."""

    def test_blank_prompt(self):
        orchestrator = _orchestrator()
        with pytest.raises(InvalidGenerationConfig):
            orchestrator.submit(GenerationConfig(prompt="   "))
        assert len(orchestrator.tasks) == 0

    def test_graph_route_requires_mapping(self):
        orchestrator = _orchestrator()
        with pytest.raises(InvalidGenerationConfig):
            orchestrator.submit(GenerationConfig(prompt="a cat"), "Workflow")
        assert len(orchestrator.tasks) == 0


class TestGraphRoute:
    """End-to-end graph submission with the execution endpoint mocked."""

    def test_prompt_binding_reaches_submitted_graph(self, sample_graph_dict):
        graph = WorkflowGraph.from_dict(sample_graph_dict)
        mapping = MappingConfig.create("txt2img", graph)
        mapping.binding_store().quick_bind("6", "text", "beautiful scenery", "prompt")

        execution = Mock()
        execution.run = AsyncMock(return_value=[
            OutputBlob("text/plain", b"log"),
            OutputBlob("image/png", PNG_BYTES),
        ])
        orchestrator = _orchestrator(execution=execution)

        task = asyncio.run(orchestrator.generate(GenerationConfig(prompt="sunset"), "Workflow", mapping))

        submitted = execution.run.call_args.args[0]
        assert submitted == graph.with_override("6", "text", "sunset")
        assert execution.run.call_args.kwargs["inputs"] == [{"key": "6-inputs-text", "value": "sunset"}]
        # The stored mapping is never mutated
        assert mapping.graph.get_input("6", "text") == "beautiful scenery"

        assert task.status is TaskStatus.SUCCEEDED
        assert task.image_url.startswith("data:image/png;base64,")
        assert orchestrator.tasks.get(task.id) == task

    def test_unbound_graph_uses_keyword_fallback(self, sample_graph_dict):
        mapping = MappingConfig.create("txt2img", WorkflowGraph.from_dict(sample_graph_dict))
        execution = Mock()
        execution.run = AsyncMock(return_value=[OutputBlob("image/png", PNG_BYTES)])
        orchestrator = _orchestrator(execution=execution)

        asyncio.run(orchestrator.generate(GenerationConfig(prompt="sunset", width=768), "Workflow", mapping))

        submitted = execution.run.call_args.args[0]
        assert submitted.get_input("6", "text") == "sunset"
        assert submitted.get_input("7", "text") == "text, watermark"
        assert submitted.get_input("5", "width") == 768

    def test_no_image_output(self, sample_graph_dict):
        mapping = MappingConfig.create("txt2img", WorkflowGraph.from_dict(sample_graph_dict))
        execution = Mock()
        execution.run = AsyncMock(return_value=[OutputBlob("text/plain", b"done")])
        orchestrator = _orchestrator(execution=execution)

        with pytest.raises(EmptyResult):
            asyncio.run(orchestrator.generate(GenerationConfig(prompt="x"), "Workflow", mapping))
        assert len(orchestrator.tasks) == 0


class TestProviderRoutes:
    """Tests for the multimodal and hosted routes."""

    def test_multimodal_edits_with_references(self):
        provider = FakeProvider(["data:image/png;base64,EDIT"])
        orchestrator = _orchestrator({MULTIMODAL_MODEL_ID: provider})
        config = GenerationConfig(prompt="make it night", reference_images=("orig", "ref"))

        task = asyncio.run(orchestrator.generate(config, "Nano banana"))

        assert provider.edit_calls == [("make it night", "orig", ["ref"])]
        assert provider.generate_calls == []
        assert task.image_url == "data:image/png;base64,EDIT"

    def test_multimodal_generates_without_references(self):
        provider = FakeProvider(["https://cdn/img.png"])
        orchestrator = _orchestrator({MULTIMODAL_MODEL_ID: provider})

        asyncio.run(orchestrator.generate(GenerationConfig(prompt="a fox", aspect_ratio="16:9"), "Nano banana"))

        params = provider.generate_calls[0]
        assert params.prompt == "a fox"
        assert params.aspect_ratio == "16:9"

    def test_hosted_route_sends_size_and_seed(self):
        provider = FakeProvider(["https://cdn/img.png"])
        orchestrator = _orchestrator({HOSTED_MODEL_ID: provider})

        asyncio.run(orchestrator.generate(GenerationConfig(prompt="a fox", width=768, height=512), "Seed 4.0"))

        params = provider.generate_calls[0]
        assert (params.width, params.height, params.batch_size) == (768, 512, 1)
        assert params.options.seed is not None

    def test_default_route(self):
        provider = FakeProvider(["https://cdn/img.png"])
        orchestrator = _orchestrator({DEFAULT_MODEL_ID: provider})
        task = asyncio.run(orchestrator.generate(GenerationConfig(prompt="a fox")))
        assert task.backend == BackendRoute.DEFAULT.value


class TestConcurrency:
    """Out-of-order completion of concurrent tasks."""

    def test_results_attach_to_their_own_tasks(self):
        async def scenario():
            hosted_gate = asyncio.Event()
            multimodal_gate = asyncio.Event()
            orchestrator = _orchestrator({
                HOSTED_MODEL_ID: FakeProvider(["https://cdn/hosted.png"], gate=hosted_gate),
                MULTIMODAL_MODEL_ID: FakeProvider(["https://cdn/multimodal.png"], gate=multimodal_gate),
            })

            first = orchestrator.submit(GenerationConfig(prompt="one"), "Seed 4.0")
            second = orchestrator.submit(GenerationConfig(prompt="two"), "Nano banana")
            await asyncio.sleep(0)
            statuses = {t.id: t.status for t in orchestrator.tasks.snapshot()}

            multimodal_gate.set()
            await orchestrator.wait(second.id)
            hosted_gate.set()
            await orchestrator.wait(first.id)
            return orchestrator, first, second, statuses

        orchestrator, first, second, statuses = asyncio.run(scenario())

        assert statuses == {first.id: TaskStatus.RUNNING, second.id: TaskStatus.RUNNING}
        tasks = orchestrator.tasks.snapshot()
        assert [t.id for t in tasks] == [second.id, first.id]
        by_id = {t.id: t for t in tasks}
        assert by_id[first.id].image_url == "https://cdn/hosted.png"
        assert by_id[first.id].config.prompt == "one"
        assert by_id[second.id].image_url == "https://cdn/multimodal.png"
        assert all(t.status is TaskStatus.SUCCEEDED for t in tasks)


class TestFailureAndPersistence:
    """Failure reporting and best-effort persistence."""

    def test_failure_removes_task_and_reports(self):
        provider = FakeProvider([], error=BackendExecutionFailed("engine down"))
        orchestrator = _orchestrator({HOSTED_MODEL_ID: provider})
        reported = []
        orchestrator.on_error(lambda task, error: reported.append((task, error)))

        with pytest.raises(BackendExecutionFailed):
            asyncio.run(orchestrator.generate(GenerationConfig(prompt="x"), "Seed 4.0"))

        assert len(orchestrator.tasks) == 0
        failures = orchestrator.tasks.failures
        assert len(failures) == 1
        assert failures[0].status is TaskStatus.FAILED
        assert "engine down" in failures[0].error
        assert len(reported) == 1
        assert reported[0][0].id == failures[0].id
        assert isinstance(reported[0][1], BackendExecutionFailed)

    def test_unexpected_error_is_wrapped(self):
        provider = FakeProvider([], error=RuntimeError("boom"))
        orchestrator = _orchestrator({HOSTED_MODEL_ID: provider})

        with pytest.raises(BackendExecutionFailed, match="boom"):
            asyncio.run(orchestrator.generate(GenerationConfig(prompt="x"), "Seed 4.0"))

    def test_empty_provider_result(self):
        orchestrator = _orchestrator({HOSTED_MODEL_ID: FakeProvider([])})
        with pytest.raises(EmptyResult):
            asyncio.run(orchestrator.generate(GenerationConfig(prompt="x"), "Seed 4.0"))

    def test_persistence_and_history(self):
        image_store = Mock()
        image_store.save = AsyncMock(return_value="/outputs/img.png")
        history = Mock()
        history.append = AsyncMock()
        orchestrator = _orchestrator(
            {HOSTED_MODEL_ID: FakeProvider(["data:image/png;base64,AAAA"])},
            image_store=image_store,
            history=history,
        )

        task = asyncio.run(orchestrator.generate(GenerationConfig(prompt="a cat"), "Seed 4.0"))

        assert task.saved_path == "/outputs/img.png"
        assert task.image_url == "data:image/png;base64,AAAA"
        assert image_store.save.call_args.args[0] == "data:image/png;base64,AAAA"
        history.append.assert_awaited_once_with("/outputs/img.png", "a cat")

    def test_persistence_failure_is_swallowed(self):
        image_store = Mock()
        image_store.save = AsyncMock(side_effect=BackendExecutionFailed("store down"))
        history = Mock()
        history.append = AsyncMock(side_effect=BackendExecutionFailed("history down"))
        orchestrator = _orchestrator(
            {HOSTED_MODEL_ID: FakeProvider(["data:image/png;base64,AAAA"])},
            image_store=image_store,
            history=history,
        )

        task = asyncio.run(orchestrator.generate(GenerationConfig(prompt="a cat"), "Seed 4.0"))

        assert task.status is TaskStatus.SUCCEEDED
        assert task.saved_path == "data:image/png;base64,AAAA"

    def test_update_listener_sees_lifecycle(self):
        orchestrator = _orchestrator({HOSTED_MODEL_ID: FakeProvider(["https://cdn/x.png"])})
        seen = []
        orchestrator.on_update(lambda tasks: seen.append([t.status for t in tasks]))

        asyncio.run(orchestrator.generate(GenerationConfig(prompt="x"), "Seed 4.0"))

        assert seen == [
            [TaskStatus.PENDING],
            [TaskStatus.RUNNING],
            [TaskStatus.SUCCEEDED],
        ]

    def test_wait_returns_after_persistence(self):
        async def scenario():
            saving = asyncio.Event()
            release = asyncio.Event()

            async def slow_save(image_ref, metadata):
                saving.set()
                await release.wait()
                return "/outputs/img.png"

            image_store = Mock()
            image_store.save = slow_save
            orchestrator = _orchestrator(
                {HOSTED_MODEL_ID: FakeProvider(["https://cdn/x.png"])},
                image_store=image_store,
            )
            task = orchestrator.submit(GenerationConfig(prompt="a cat"), "Seed 4.0")
            waiter = asyncio.create_task(orchestrator.wait(task.id))

            await saving.wait()
            await asyncio.sleep(0)
            blocked = not waiter.done()
            status_while_saving = orchestrator.tasks.get(task.id).status

            release.set()
            final = await waiter
            return orchestrator, task, blocked, status_while_saving, final

        orchestrator, task, blocked, status_while_saving, final = asyncio.run(scenario())

        assert blocked
        assert status_while_saving is TaskStatus.RUNNING
        assert final.status is TaskStatus.SUCCEEDED
        assert final.saved_path == "/outputs/img.png"
        assert task.id not in orchestrator._running

    def test_submitted_failures_keep_bounded_errors(self):
        async def scenario():
            provider = FakeProvider([], error=BackendExecutionFailed("engine down"))
            orchestrator = _orchestrator({HOSTED_MODEL_ID: provider})
            tasks = [
                orchestrator.submit(GenerationConfig(prompt=f"prompt {i}"), "Seed 4.0")
                for i in range(60)
            ]
            for task in tasks:
                await orchestrator.wait(task.id)
            return orchestrator, tasks

        orchestrator, tasks = asyncio.run(scenario())

        assert len(orchestrator.tasks.failures) == 50
        kept = [t.id for t in tasks if orchestrator.error_for(t.id) is not None]
        assert len(kept) == 50
        assert orchestrator.error_for(tasks[0].id) is None
        assert isinstance(orchestrator.error_for(tasks[-1].id), BackendExecutionFailed)
