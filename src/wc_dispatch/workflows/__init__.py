from __future__ import annotations

from collections.abc import Callable
from typing import Any

from wc_dispatch.contracts import Workflow

WorkflowFactory = Callable[..., Workflow]

_REGISTRY: dict[str, WorkflowFactory] = {}


def register(name: str, factory: WorkflowFactory) -> None:
    _REGISTRY[name] = factory


def get(name: str) -> WorkflowFactory | None:
    return _REGISTRY.get(name)


def names() -> list[str]:
    return sorted(_REGISTRY)


def build(name: str, options: dict[str, Any], **deps: Any) -> Workflow:
    factory = get(name)
    if factory is None:
        raise KeyError(f"Unknown workflow: {name} (known: {', '.join(names()) or 'none'})")
    return factory(options, **deps)


def _register_builtin_workflows() -> None:
    # Side-effect imports populate _REGISTRY via register().
    from wc_dispatch.workflows import email_intake  # noqa: F401


_register_builtin_workflows()
