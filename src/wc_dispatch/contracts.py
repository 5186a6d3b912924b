from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from wc_dispatch.logger import JsonlLogger
from wc_dispatch.run_context import RunContext, write_json


class StepStatus(str, Enum):
    RUNNING = "RUNNING"
    OK = "OK"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


@dataclass(frozen=True)
class StepResult:
    ok: bool
    outputs: dict[str, Any] | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if not self.ok and not self.error:
            raise ValueError("error is required when ok is False")

    @classmethod
    def success(cls, **outputs: Any) -> StepResult:
        return cls(ok=True, outputs=outputs or None)

    @classmethod
    def failure(cls, error: str) -> StepResult:
        return cls(ok=False, error=error)


StepFn = Callable[[RunContext, "RunState", JsonlLogger], StepResult]


@dataclass(frozen=True)
class Step:
    name: str
    fn: StepFn

    def run(self, ctx: RunContext, state: RunState, log: JsonlLogger) -> StepResult:
        return self.fn(ctx, state, log.child(f"step.{self.name}"))


@dataclass(frozen=True)
class Workflow:
    name: str
    steps: list[Step]


@dataclass
class RunState:
    """Data handed from step to step; persisted as ``context.json`` after each step."""

    data: dict[str, Any] = field(default_factory=dict)
    step_outputs: dict[str, Any] = field(default_factory=dict)

    def to_jsonable(self) -> dict[str, Any]:
        return {"data": self.data, "step_outputs": self.step_outputs}

    def persist(self, path: Path) -> None:
        write_json(path, self.to_jsonable())
