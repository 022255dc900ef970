"""
Generation Model - Canonical request shape and tracked tasks.

- GenerationConfig: backend-agnostic request, snapshotted per submission
- GenerationTask: one tracked generation attempt and its lifecycle
- TaskList: the visible, shared list of tasks (newest first)
"""

from __future__ import annotations

import logging
import random
import string
import time
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable


logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


@dataclass(frozen=True)
class LoraSelection:
    """A LoRA model picked in the UI together with its strength."""
    model_name: str
    strength: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        return {"model_name": self.model_name, "strength": self.strength}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoraSelection:
        return cls(
            model_name=str(data.get("model_name", "")),
            strength=float(data.get("strength", 1.0)),
        )


@dataclass(frozen=True)
class GenerationConfig:
    """
    Canonical generation request.

    Frozen with tuple collections so a submitted snapshot can be shared
    with a running task without any chance of later edits leaking in.

    Attributes:
        prompt: Text prompt (required, non-blank)
        width, height: Output size in pixels
        batch_size: Number of images requested
        aspect_ratio: e.g. "16:9" (multimodal backends)
        image_size: e.g. "1K", "2K" (multimodal backends)
        base_model: Checkpoint name for graph backends
        lora_selections: Up to three LoRA picks, positional
        reference_images: Data URLs or URLs; the first one is the original
    """
    prompt: str
    width: int = 1024
    height: int = 1024
    batch_size: int = 1
    aspect_ratio: str | None = None
    image_size: str | None = None
    base_model: str | None = None
    lora_selections: tuple[LoraSelection, ...] = ()
    reference_images: tuple[str, ...] = ()

    def snapshot(self) -> GenerationConfig:
        """Return an independent copy for one submission."""
        return replace(
            self,
            lora_selections=tuple(self.lora_selections),
            reference_images=tuple(self.reference_images),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "prompt": self.prompt,
            "width": self.width,
            "height": self.height,
            "batch_size": self.batch_size,
            "aspect_ratio": self.aspect_ratio,
            "image_size": self.image_size,
            "base_model": self.base_model,
            "loras": [lora.to_dict() for lora in self.lora_selections],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GenerationConfig:
        return cls(
            prompt=str(data.get("prompt", "")),
            width=int(data.get("width", 1024)),
            height=int(data.get("height", 1024)),
            batch_size=int(data.get("batch_size", 1)),
            aspect_ratio=data.get("aspect_ratio"),
            image_size=data.get("image_size"),
            base_model=data.get("base_model"),
            lora_selections=tuple(
                LoraSelection.from_dict(item) for item in data.get("loras", [])
            ),
            reference_images=tuple(data.get("reference_images", [])),
        )


class TaskStatus(Enum):
    """Status of a generation task."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED)


_ALLOWED_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.RUNNING},
    TaskStatus.RUNNING: {TaskStatus.SUCCEEDED, TaskStatus.FAILED},
    TaskStatus.SUCCEEDED: set(),
    TaskStatus.FAILED: set(),
}


def new_task_id() -> str:
    """Millisecond timestamp followed by a short random base-36 suffix."""
    suffix = "".join(random.choice(_BASE36) for _ in range(5))
    return f"{int(time.time() * 1000)}{suffix}"


@dataclass(frozen=True)
class GenerationTask:
    """One tracked generation attempt."""
    id: str
    config: GenerationConfig
    backend: str = ""
    status: TaskStatus = TaskStatus.PENDING
    result: tuple[str, ...] = ()
    saved_path: str | None = None
    error: str | None = None
    created_at: float = field(default_factory=time.time)

    @property
    def image_url(self) -> str | None:
        return self.result[0] if self.result else None

    def transition(self, status: TaskStatus, **changes: Any) -> GenerationTask:
        """
        Return a copy moved to ``status``.

        Raises:
            ValueError: If the lifecycle does not allow the transition
        """
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise ValueError(
                f"Task {self.id}: cannot go from {self.status.value} to {status.value}"
            )
        return replace(self, status=status, **changes)


class TaskList:
    """
    Visible task list shared by concurrent submissions.

    Mutations are keyed by task id ("replace the entry with this id",
    "remove the entry with this id"), so tasks finishing out of order can
    neither lose nor duplicate entries.

    Failed tasks leave the visible list but are kept in a bounded
    ``failures`` log for inspection.
    """

    def __init__(self, max_failures: int = 50):
        self.max_failures = max_failures
        self._items: list[GenerationTask] = []
        self._failures: deque[GenerationTask] = deque(maxlen=max_failures)
        self._listeners: list[Callable[[list[GenerationTask]], None]] = []

    def subscribe(self, callback: Callable[[list[GenerationTask]], None]) -> None:
        """Call ``callback`` with a snapshot after every change."""
        self._listeners.append(callback)

    def insert(self, task: GenerationTask) -> None:
        """Add a task at the front (newest first)."""
        self._items.insert(0, task)
        self._notify()

    def replace(self, task_id: str, task: GenerationTask) -> bool:
        """Replace the entry with ``task_id``; False if it is gone."""
        for i, item in enumerate(self._items):
            if item.id == task_id:
                self._items[i] = task
                self._notify()
                return True
        return False

    def remove(self, task_id: str) -> GenerationTask | None:
        """Remove the entry with ``task_id`` and return it."""
        for i, item in enumerate(self._items):
            if item.id == task_id:
                removed = self._items.pop(i)
                self._notify()
                return removed
        return None

    def record_failure(self, task: GenerationTask) -> None:
        self._failures.append(task)

    def get(self, task_id: str) -> GenerationTask | None:
        for item in self._items:
            if item.id == task_id:
                return item
        return None

    def snapshot(self) -> list[GenerationTask]:
        return list(self._items)

    @property
    def failures(self) -> list[GenerationTask]:
        return list(self._failures)

    def clear(self) -> None:
        self._items.clear()
        self._notify()

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for callback in self._listeners:
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Task list listener failed")

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, task_id: object) -> bool:
        return any(item.id == task_id for item in self._items)
