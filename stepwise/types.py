import json
from dataclasses import dataclass, field


@dataclass
class ToolResult:
    success: bool
    content: str
    data: dict | list | None = None
    error: str | None = None
    error_code: str | None = None
    metadata: dict = field(default_factory=dict)

    def render(self) -> str:
        """Text the model sees for this result on the next attempt."""
        if not self.success and self.error:
            return f"[Error: {self.error_code}] {self.error}"
        return self.content

    @classmethod
    def failure(cls, error_code: str, error: str) -> "ToolResult":
        return cls(success=False, content=error, error=error, error_code=error_code)

    @classmethod
    def from_value(cls, value: object) -> "ToolResult":
        """Wrap a plain return value from a tool that does not build its own result."""
        if isinstance(value, ToolResult):
            return value
        if isinstance(value, str):
            return cls(success=True, content=value)
        data = value if isinstance(value, (dict, list)) else None
        return cls(success=True, content=json.dumps(value, default=str), data=data)


class ErrorCode:
    VALIDATION_ERROR = "validation_error"
    TIMEOUT = "timeout"
    TOOL_EXCEPTION = "tool_exception"
    UNKNOWN_TOOL = "unknown_tool"


@dataclass
class ContextPackReport:
    max_context_tokens: int
    max_output_tokens: int
    reserve_tokens: int
    tool_schema_tokens: int
    system_prompt_tokens: int
    message_tokens: int
    kept_messages: int
    dropped_messages: int
    forced_user_turn: bool = False
