from __future__ import annotations

import inspect
import logging
from importlib.metadata import entry_points

from stepwise.errors import ToolExecutionError
from stepwise.tools.base import Tool
from stepwise.tools.validation import ToolValidator
from stepwise.types import ErrorCode, ToolResult

logger = logging.getLogger(__name__)


class ToolRegistry:
    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool, *, overwrite: bool = False) -> None:
        if tool.name in self._tools and not overwrite:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def require(self, name: str) -> Tool:
        t = self.get(name)
        if not t:
            raise KeyError(name)
        return t

    def list(self) -> list[Tool]:
        return sorted(self._tools.values(), key=lambda t: t.name)

    def list_tools(self) -> dict[str, dict]:
        """Map of tool name to ``{"description", "parameters"}``."""
        return {t.name: t.describe() for t in self.list()}

    def to_openai_schema(self) -> list[dict]:
        return [t.to_openai_schema() for t in self.list()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    async def execute_tool(self, name: str, arguments: dict) -> ToolResult:
        """Validate *arguments* against the tool schema and run the tool.

        Raises ``ToolExecutionError`` for an unknown tool or invalid
        arguments.  Exceptions raised by the tool itself propagate.
        """
        tool = self.get(name)
        if tool is None:
            raise ToolExecutionError(name, f"Unknown tool: {name}", ErrorCode.UNKNOWN_TOOL)

        valid, error_msg = ToolValidator.validate(tool, arguments)
        if not valid:
            raise ToolExecutionError(
                name, f"Validation error: {error_msg}", ErrorCode.VALIDATION_ERROR
            )

        return await tool.execute(**arguments)

    def load_plugins(
        self,
        *,
        enabled: bool,
        group: str = "stepwise.tools",
        allow_distributions: set[str] | None = None,
        allow_tools: set[str] | None = None,
        **dependencies: object,
    ) -> int:
        """Load tools from entry points, injecting matching dependencies.

        Each keyword in *dependencies* is passed to a tool class whose
        ``__init__`` declares a parameter of that name.  Tools that declare
        none are constructed with no arguments.
        """
        if not enabled:
            return 0
        loaded = 0
        for ep in entry_points(group=group):
            dist = getattr(ep, "dist", None)
            dist_name = getattr(dist, "name", None)
            if allow_distributions and dist_name and dist_name not in allow_distributions:
                continue
            if allow_tools and ep.name not in allow_tools:
                continue
            tool_cls = ep.load()
            params = inspect.signature(tool_cls).parameters
            kwargs = {k: v for k, v in dependencies.items() if k in params}
            self.register(tool_cls(**kwargs))
            logger.info("Loaded tool plugin %s from %s", ep.name, dist_name or "?")
            loaded += 1
        return loaded
