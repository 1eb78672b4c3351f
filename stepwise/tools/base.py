from abc import ABC, abstractmethod

from stepwise.types import ToolResult


def normalize_schema(schema: dict) -> dict:
    s = dict(schema or {})
    s.setdefault("type", "object")
    s.setdefault("properties", {})
    s.setdefault("additionalProperties", False)
    return s


class Tool(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters(self) -> dict: ...

    @abstractmethod
    async def execute(self, **kwargs) -> ToolResult: ...

    def describe(self) -> dict:
        return {
            "description": self.description,
            "parameters": normalize_schema(self.parameters),
        }

    def to_openai_schema(self) -> dict:
        return {
            "type": "function",
            "function": {"name": self.name, **self.describe()},
        }
