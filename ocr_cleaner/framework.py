from __future__ import annotations

import inspect
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Awaitable, Dict, List, Mapping, Protocol, Union, runtime_checkable

from ocr_cleaner.steps import CleaningStep


@dataclass(frozen=True)
class Artifact:
    """Immutable carrier of document text + run metadata between passes."""

    payload: str
    meta: Dict[str, Any] = field(default_factory=dict)

    def with_text(self, text: str, **meta: Any) -> Artifact:
        return replace(self, payload=text, meta={**self.meta, **meta})

    def option(self, key: str, default: Any = None) -> Any:
        return self.meta.get(key, default)


PassResult = Union[Artifact, Awaitable[Artifact]]


@runtime_checkable
class Pass(Protocol):
    name: str
    step: CleaningStep

    def __call__(self, a: Artifact) -> PassResult:
        """Execute the pass; AI-assisted passes return an awaitable."""
        ...


_REGISTRY: Mapping[str, Pass] = MappingProxyType({})


def register(p: Pass) -> Pass:
    """Register a pass by name; idempotent for same object."""
    global _REGISTRY
    _REGISTRY = MappingProxyType({**dict(_REGISTRY), p.name: p})
    return p


def pass_for(step: CleaningStep) -> Pass | None:
    return _REGISTRY.get(step.pass_name)


async def run_step(name: str, a: Artifact) -> Artifact:
    """Run a single registered step, awaiting it when it is asynchronous."""
    result = _REGISTRY[name](a)
    return await result if inspect.isawaitable(result) else result


async def run_pipeline(steps: List[str], a: Artifact) -> Artifact:
    """Apply registered steps in order."""
    for s in steps:
        a = await run_step(s, a)
    return a


def registry() -> Dict[str, Pass]:
    """Shallow copy of the registry for inspection/testing."""
    return dict(_REGISTRY)


def with_metrics(meta: Mapping[str, Any], name: str, **values: Any) -> Dict[str, Any]:
    """Return ``meta`` with ``values`` merged into ``meta['metrics'][name]``."""
    metrics = dict(meta.get("metrics") or {})
    metrics[name] = {**metrics.get(name, {}), **values}
    return {**meta, "metrics": metrics}
