"""Backend and tool registry built on Pydantic v2 models."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field

from tool_gateway.types import ToolEntry


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[BaseModel], str]
    tags: list[str] = Field(default_factory=list)

    def invoke(self, payload: dict[str, Any]) -> str:
        data = self.args_schema.model_validate(payload)
        return self.handler(data)


class BackendSpec(BaseModel):
    """A tool-serving backend and the tools it exposes."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    backend_id: str = Field(min_length=1)
    name: str
    tools: list[ToolSpec] = Field(default_factory=list)
    health_check: Callable[[], Awaitable[bool]] | None = None

    def get_tool(self, tool_name: str) -> ToolSpec | None:
        for spec in self.tools:
            if spec.name == tool_name:
                return spec
        return None


class ToolRegistry:
    """Stores backends, publishes the tool catalogue, exports LangChain tools.

    Listeners registered with `on_change` receive the full catalogue after
    every registration change; the search index relies on this to rebuild.
    """

    def __init__(self) -> None:
        self._backends: dict[str, BackendSpec] = {}
        self._listeners: list[Callable[[list[ToolEntry]], None]] = []

    def register_backend(self, backend: BackendSpec) -> None:
        if backend.backend_id in self._backends:
            raise ValueError(f"Backend already registered: {backend.backend_id}")
        names = [spec.name for spec in backend.tools]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate tool names on backend: {backend.backend_id}")
        self._backends[backend.backend_id] = backend
        self._notify()

    def unregister_backend(self, backend_id: str) -> bool:
        if self._backends.pop(backend_id, None) is None:
            return False
        self._notify()
        return True

    def get_backend(self, backend_id: str) -> BackendSpec | None:
        return self._backends.get(backend_id)

    def backend_ids(self) -> list[str]:
        return list(self._backends)

    def on_change(self, listener: Callable[[list[ToolEntry]], None]) -> None:
        """Subscribe to catalogue changes; the listener is called immediately."""
        self._listeners.append(listener)
        listener(self.catalogue())

    def catalogue(self) -> list[ToolEntry]:
        return [
            ToolEntry(
                backend_id=backend.backend_id,
                backend_name=backend.name,
                tool_name=spec.name,
                description=spec.description,
            )
            for backend in self._backends.values()
            for spec in backend.tools
        ]

    def as_langchain_tools(
        self,
        executor: Callable[[str, str, dict[str, Any]], str],
    ) -> list[StructuredTool]:
        """Export every tool, routing invocations through `executor`.

        `executor(backend_id, tool_name, payload)` is normally
        `ToolDispatcher.dispatch`, so exported tools stay breaker-gated.
        """
        tools: list[StructuredTool] = []
        for backend in self._backends.values():
            for spec in backend.tools:
                tools.append(
                    StructuredTool.from_function(
                        name=_langchain_name(backend.backend_id, spec.name),
                        description=spec.description,
                        args_schema=spec.args_schema,
                        func=_build_function(executor, backend.backend_id, spec.name),
                    )
                )
        return tools

    def _notify(self) -> None:
        catalogue = self.catalogue()
        for listener in self._listeners:
            listener(catalogue)


def _langchain_name(backend_id: str, tool_name: str) -> str:
    safe_backend = "".join(ch if ch.isalnum() or ch in "_-" else "_" for ch in backend_id)
    return f"{safe_backend}__{tool_name}"


def _build_function(
    executor: Callable[[str, str, dict[str, Any]], str],
    backend_id: str,
    tool_name: str,
) -> Callable[..., str]:
    def _callable(**kwargs: Any) -> str:
        return executor(backend_id, tool_name, kwargs)

    return _callable
