"""
Assembles streaming tool-call deltas into complete ToolCall objects.

Fragments are accumulated per ``call_index``.  A call is finalized when a
delta arrives with ``done=True`` or when ``flush()`` runs at stream end; the
accumulated argument string is JSON-parsed at that point.  A call whose
arguments do not parse is dropped and described in ``errors`` so the router
can fail the attempt instead of executing a tool with guessed arguments.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from stepwise.llm.types import RawToolDelta, ToolCall


@dataclass
class _PendingCall:
    id: str | None = None
    name: str = ""
    args: str = ""


class ToolCallAssembler:
    """Buffers raw tool-call deltas and emits finished ``ToolCall`` objects."""

    def __init__(self) -> None:
        self._buf: dict[int, _PendingCall] = {}
        self.errors: list[str] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, delta: RawToolDelta) -> list[ToolCall]:
        """
        Feed a single ``RawToolDelta`` into the assembler.

        Returns the completed call (as a one-element list) when the delta
        carries ``done=True``, otherwise an empty list.
        """
        pending = self._buf.setdefault(delta.call_index, _PendingCall())

        if delta.id and not pending.id:
            pending.id = delta.id
        pending.name += delta.name_delta
        pending.args += delta.args_delta

        if delta.done:
            return self._finalize(delta.call_index)
        return []

    def flush(self) -> list[ToolCall]:
        """Finalize every open buffer in ``call_index`` order."""
        calls: list[ToolCall] = []
        for idx in sorted(self._buf):
            calls.extend(self._finalize(idx))
        return calls

    @property
    def pending(self) -> int:
        """Number of calls still being assembled."""
        return len(self._buf)

    def reset(self) -> None:
        """Discard all accumulated state."""
        self._buf.clear()
        self.errors.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _finalize(self, idx: int) -> list[ToolCall]:
        pending = self._buf.pop(idx, None)
        if pending is None:
            return []

        try:
            args = json.loads(pending.args or "{}")
        except ValueError as exc:
            self.errors.append(f"tool_call_json_parse_failed idx={idx} err={exc}")
            return []

        if not isinstance(args, dict):
            self.errors.append(
                f"tool_call_args_not_object idx={idx} type={type(args).__name__}"
            )
            return []

        return [
            ToolCall(
                id=pending.id or f"call_{idx}",
                name=pending.name.strip(),
                arguments=args,
            )
        ]
