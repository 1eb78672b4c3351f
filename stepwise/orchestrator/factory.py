"""Wire an Orchestrator from a StepwiseConfig."""

from __future__ import annotations

import logging

from stepwise.config import StepwiseConfig
from stepwise.conversation.store import ConversationStore
from stepwise.errors import ConfigurationError
from stepwise.events.publisher import EventPublisher
from stepwise.llm.providers.openai_compat import OpenAICompatProvider
from stepwise.llm.router import LLMRouter
from stepwise.llm.token_counter import TokenCounter
from stepwise.orchestrator.core import Orchestrator
from stepwise.prompts.system import parse_contributors
from stepwise.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


def build_router(config: StepwiseConfig) -> LLMRouter:
    """Create a router with the configured provider registered and active."""
    llm = config.llm
    if not llm.api_base:
        raise ConfigurationError("llm.api_base is required")

    api_key = llm.api_key
    if api_key is None and llm.api_key_env:
        logger.warning(
            "%s is not set; sending requests to %s without a key",
            llm.api_key_env,
            llm.api_base,
        )

    provider = OpenAICompatProvider(
        url=llm.api_base,
        model=llm.model,
        api_key=api_key or "",
        timeout=llm.timeout_seconds,
        max_retries=llm.max_retries,
        max_context=llm.max_context_tokens,
        max_output=llm.max_output_tokens,
        temperature=llm.temperature,
    )
    router = LLMRouter(timeout=llm.timeout_seconds)
    router.register_provider(llm.name, provider)
    router.set_active(llm.name)
    return router


def build_orchestrator(
    config: StepwiseConfig,
    *,
    registry: ToolRegistry | None = None,
    publisher: EventPublisher | None = None,
    router: LLMRouter | None = None,
) -> Orchestrator:
    """
    Build the full object graph for one conversation.

    config -> provider -> router -> registry (plugins) -> store -> publisher
    -> orchestrator.  A supplied *router* replaces the configured provider.

    Raises
    ------
    ConfigurationError
        When no provider can be set up or the token budget is unusable.
    """
    router = router or build_router(config)
    registry = registry if registry is not None else ToolRegistry()
    publisher = publisher or EventPublisher()

    loaded = registry.load_plugins(
        enabled=config.plugins.enabled,
        allow_distributions=set(config.plugins.allow_distributions) or None,
        allow_tools=set(config.plugins.allow_tools) or None,
        publisher=publisher,
    )
    if loaded:
        logger.info("Loaded %d tool plugin(s)", loaded)

    provider = router.active_provider
    store = ConversationStore(
        TokenCounter(config.llm.model),
        max_context_tokens=provider.max_context_tokens,
        max_output_tokens=provider.max_output_tokens,
        reserve_tokens=config.conversation.reserve_tokens,
    )

    return Orchestrator(
        store=store,
        registry=registry,
        router=router,
        publisher=publisher,
        system_prompt=config.orchestrator.system_prompt,
        max_iterations=config.orchestrator.max_iterations,
        tool_timeout=config.orchestrator.tool_timeout_seconds,
        prompt_contributors=parse_contributors(config.orchestrator.prompt_contributors),
    )
