"""
System prompt builder.

The prompt is assembled from contributors, each a section of text.  Static
contributors carry their text; dynamic ones name a source that renders
fresh text for every generation attempt.  Enabled contributors are joined
in ascending ``priority`` order (ties keep their configured order).

Config form::

    orchestrator:
      prompt_contributors:
        - id: primary
          type: static
          priority: 0
          content: You are a careful assistant.
        - id: dateTime
          type: dynamic
          priority: 10
          source: dateTime
          enabled: true
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from stepwise.errors import ConfigurationError

STATIC = "static"
DYNAMIC = "dynamic"


def _date_time(now: datetime) -> str:
    return f"Current date and time: {now.isoformat(timespec='seconds')}"


DYNAMIC_SOURCES: dict[str, Callable[[datetime], str]] = {
    "dateTime": _date_time,
}


@dataclass(frozen=True)
class PromptContributor:
    id: str
    type: str = STATIC
    priority: int = 0
    content: str = ""
    source: str | None = None
    enabled: bool = True

    def render(self, now: datetime) -> str:
        if self.type == DYNAMIC:
            return DYNAMIC_SOURCES[self.source](now)
        return self.content.strip()


def parse_contributors(raw: list[dict[str, Any]] | None) -> list[PromptContributor]:
    """
    Build contributors from config entries.

    Raises
    ------
    ConfigurationError
        For a missing id, an unknown type, a non-integer priority, a static
        contributor without content, or a dynamic one with an unknown
        source.
    """
    contributors: list[PromptContributor] = []
    for i, entry in enumerate(raw or []):
        if not isinstance(entry, dict):
            raise ConfigurationError(f"prompt_contributors[{i}] must be a mapping")
        cid = entry.get("id")
        if not cid:
            raise ConfigurationError(f"prompt_contributors[{i}] needs an id")
        ctype = entry.get("type", STATIC)
        if ctype not in (STATIC, DYNAMIC):
            raise ConfigurationError(f"Prompt contributor {cid}: unknown type {ctype!r}")
        priority = entry.get("priority", 0)
        if not isinstance(priority, int) or isinstance(priority, bool):
            raise ConfigurationError(f"Prompt contributor {cid}: priority must be an integer")
        source = entry.get("source")
        if ctype == DYNAMIC and source not in DYNAMIC_SOURCES:
            known = ", ".join(sorted(DYNAMIC_SOURCES))
            raise ConfigurationError(
                f"Prompt contributor {cid}: unknown source {source!r} (known: {known})"
            )
        content = entry.get("content") or ""
        if ctype == STATIC and not str(content).strip():
            raise ConfigurationError(f"Prompt contributor {cid}: static content is empty")
        contributors.append(
            PromptContributor(
                id=str(cid),
                type=ctype,
                priority=priority,
                content=str(content),
                source=source,
                enabled=bool(entry.get("enabled", True)),
            )
        )
    return contributors


def build_system_prompt(
    contributors: list[PromptContributor],
    now: datetime | None = None,
) -> str:
    """Render enabled contributors in priority order, blank-line separated."""
    now = now or datetime.now().astimezone()
    ordered = sorted((c for c in contributors if c.enabled), key=lambda c: c.priority)
    sections: list[str] = []
    for contributor in ordered:
        text = contributor.render(now)
        if text:
            sections.append(text)
    return "\n\n".join(sections)
