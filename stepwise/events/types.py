"""
Agent event model.

Everything the orchestrator reports to front ends is an :class:`AgentEvent`.
Events are immutable; their ``seq`` gives emission order within one
publisher.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping


# ---------------------------------------------------------------------------
# Event kinds
# ---------------------------------------------------------------------------

EVENT_THINKING = "thinking"
EVENT_CHUNK = "chunk"
EVENT_TOOL_CALL = "tool_call"
EVENT_TOOL_RESULT = "tool_result"
EVENT_RESPONSE = "response"
EVENT_ERROR = "error"
EVENT_CONVERSATION_RESET = "conversation_reset"
EVENT_RESET_ACCUMULATION = "reset_accumulation"

EVENT_KINDS = frozenset(
    {
        EVENT_THINKING,
        EVENT_CHUNK,
        EVENT_TOOL_CALL,
        EVENT_TOOL_RESULT,
        EVENT_RESPONSE,
        EVENT_ERROR,
        EVENT_CONVERSATION_RESET,
        EVENT_RESET_ACCUMULATION,
    }
)


# ---------------------------------------------------------------------------
# Event
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AgentEvent:
    """
    A single orchestrator notification.

    Attributes
    ----------
    kind:
        One of the ``EVENT_*`` constants.
    payload:
        Read-only mapping of kind-specific data (``text``, ``tool_name``,
        ``arguments``, ``result``, ``error``, ``message``).
    seq:
        Emission number, strictly increasing per publisher.
    run_id:
        Identifies the task the event belongs to; empty for events emitted
        outside a task (``conversation_reset``).
    timestamp:
        UTC time of emission.
    """

    kind: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    seq: int = 0
    run_id: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)

    @property
    def text(self) -> str:
        return self.payload.get("text", "")

    def to_dict(self) -> dict[str, Any]:
        """Plain dict for logging or JSON transports."""
        payload = dict(self.payload)
        if isinstance(payload.get("error"), BaseException):
            payload["error"] = repr(payload["error"])
        return {
            "kind": self.kind,
            "payload": payload,
            "seq": self.seq,
            "run_id": self.run_id,
            "timestamp": self.timestamp.isoformat(),
        }
