"""Tool registry shared by the research handler and the sub-agent spawner.

Tools are host-supplied. Every failure mode (unknown tool, tool outside the
allow-list, bad parameters, exception inside the tool) comes back as a
ToolResult with success=False so the calling loop can show it to the model.
"""

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Any

logger = logging.getLogger(__name__)

_PARAM_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "array": (list, tuple),
    "object": (dict,),
}


@dataclass(frozen=True)
class ToolParameter:
    name: str
    type: str                # string | number | integer | boolean | array | object
    description: str
    required: bool = True


@dataclass(frozen=True)
class ToolResult:
    success: bool
    data: Any = None
    error: str | None = None
    duration_sec: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)


class Tool(ABC):
    """A callable capability exposed to research agents."""

    name: str = ""
    description: str = ""
    parameters: tuple[ToolParameter, ...] = ()

    @abstractmethod
    async def execute(self, params: dict[str, Any]) -> ToolResult:
        ...

    def validate_params(self, params: dict[str, Any]) -> str | None:
        """Return an error message, or None when the params are acceptable."""
        for param in self.parameters:
            if param.name not in params:
                if param.required:
                    return f"Missing required parameter: {param.name}"
                continue
            expected = _PARAM_TYPES.get(param.type)
            value = params[param.name]
            # bool is an int subclass
            if expected and (not isinstance(value, expected) or (isinstance(value, bool) and param.type != "boolean")):
                return f"Parameter '{param.name}' must be {param.type}"
        return None

    def describe(self) -> str:
        args = ", ".join(
            f"{p.name}: {p.type}{'' if p.required else '?'}" for p in self.parameters
        )
        return f"- {self.name}({args}): {self.description}"


class ToolRegistry:
    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if not tool.name:
            raise ValueError("Tool must have a name")
        if tool.name in self._tools:
            logger.warning("Tool '%s' registered twice, replacing", tool.name)
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return sorted(self._tools)

    def available(self, allowed: Iterable[str] | None = None) -> list[Tool]:
        if allowed is None:
            return [self._tools[n] for n in self.names()]
        allowed_set = set(allowed)
        return [self._tools[n] for n in self.names() if n in allowed_set]

    def prompt_description(self, allowed: Iterable[str] | None = None) -> str:
        tools = self.available(allowed)
        if not tools:
            return "(no tools available, answer from your own knowledge)"
        return "\n".join(t.describe() for t in tools)

    async def execute(
        self,
        name: str,
        params: dict[str, Any],
        allowed: Iterable[str] | None = None,
    ) -> ToolResult:
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult(success=False, error=f"Unknown tool: {name}")
        if allowed is not None and name not in set(allowed):
            return ToolResult(success=False, error=f"Tool not available at this depth: {name}")

        problem = tool.validate_params(params)
        if problem:
            return ToolResult(success=False, error=problem)

        start = time.monotonic()
        try:
            result = await tool.execute(params)
        except Exception as exc:
            logger.warning("Tool %s failed: %s", name, exc)
            return ToolResult(success=False, error=str(exc), duration_sec=time.monotonic() - start)
        if not result.duration_sec:
            result = replace(result, duration_sec=time.monotonic() - start)
        logger.debug("Tool %s: success=%s in %.2fs", name, result.success, result.duration_sec)
        return result
