"""
Orchestrator core -- the multi-step tool-calling loop.

For each task the orchestrator:
1. Emits ``thinking`` and records the user message
2. Builds a token-budgeted history and the tool schemas
3. Runs one generation attempt through the router
4. Feeds the attempt's signals to a StepReconciler, which persists text
   segments and emits events
5. Executes any requested tool calls concurrently and feeds the results
   back before the next attempt
6. Stops on an attempt without tool calls, on the iteration bound, or on
   a provider error
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from stepwise.conversation.store import ConversationStore
from stepwise.errors import ConfigurationError, ToolExecutionError
from stepwise.events.publisher import EventPublisher
from stepwise.llm.router import LLMRouter
from stepwise.llm.types import (
    ImageData,
    Message,
    StepFinish,
    StreamFinish,
    ToolCall,
    ToolOutcome,
)
from stepwise.orchestrator.reconciler import StepReconciler, ToolCallBatch
from stepwise.prompts.system import PromptContributor, build_system_prompt
from stepwise.tools.registry import ToolRegistry
from stepwise.types import ErrorCode, ToolResult

logger = logging.getLogger(__name__)

MAX_ITERATIONS_MESSAGE = (
    "Reached maximum number of tool call iterations without a final response."
)


@dataclass
class RunContext:
    """State for one task; discarded when the task returns."""

    run_id: str
    max_iterations: int
    streaming: bool
    reconciler: StepReconciler
    iteration: int = 0
    final_text: str = ""
    started: float = field(default_factory=time.monotonic)

    @property
    def exhausted(self) -> bool:
        return self.iteration >= self.max_iterations


class Orchestrator:
    """
    Main orchestrator loop.

    Parameters
    ----------
    store : ConversationStore
        Conversation history.  At most one task may run per store at a time.
    registry : ToolRegistry
        Tools the model may call.
    router : LLMRouter
        Provider binding; must have an active provider.
    publisher : EventPublisher
        Event channel.  A private one is created when omitted.
    system_prompt : str
        Base instructions, placed ahead of other prompt contributors.
    prompt_contributors : list of PromptContributor
        Further prompt sections, rendered fresh for every attempt.  The
        assembled prompt is prepended to each request, never stored.
    max_iterations : int
        Max generation attempts per task.
    tool_timeout : float
        Max seconds for a single tool execution.
    """

    def __init__(
        self,
        store: ConversationStore,
        registry: ToolRegistry,
        router: LLMRouter,
        publisher: EventPublisher | None = None,
        system_prompt: str = "",
        max_iterations: int = 20,
        tool_timeout: float = 30.0,
        prompt_contributors: list[PromptContributor] | None = None,
    ) -> None:
        if max_iterations < 1:
            raise ConfigurationError(f"max_iterations must be >= 1, got {max_iterations}")
        # Raises ConfigurationError when no provider is registered.
        provider = router.active_provider

        self.store = store
        self.registry = registry
        self.router = router
        self.publisher = publisher or EventPublisher()
        self.system_prompt = system_prompt
        self.prompt_contributors = list(prompt_contributors or [])
        self.max_iterations = max_iterations
        self.tool_timeout = tool_timeout
        logger.debug(
            "Orchestrator ready: provider=%s max_iterations=%d tools=%d",
            provider.name,
            max_iterations,
            len(registry),
        )

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def run(
        self,
        user_input: str,
        image: ImageData | None = None,
        streaming: bool = False,
    ) -> str | None:
        """Run one task, streamed or not."""
        preview = user_input[:50] + ("..." if len(user_input) > 50 else "")
        logger.info("Running task: %r (streaming=%s)", preview, streaming)
        if streaming:
            await self.complete_task_streaming(user_input, image)
            return None
        return await self.complete_task(user_input, image)

    async def complete_task(self, user_input: str, image: ImageData | None = None) -> str:
        """
        Run the loop to completion and return the last attempt's text.

        Failures are reported through an ``error`` event and returned as a
        readable string; this method does not raise for provider or tool
        failures.
        """
        return await self._guarded(user_input, image, streaming=False)

    async def complete_task_streaming(
        self, user_input: str, image: ImageData | None = None
    ) -> None:
        """Run the loop on the streaming interface; output goes only to events."""
        await self._guarded(user_input, image, streaming=True)

    def reset_conversation(self) -> None:
        self.store.reset()
        logger.info("Conversation reset")
        self.publisher.conversation_reset()

    def list_tools(self) -> dict[str, dict]:
        return self.registry.list_tools()

    def build_system_prompt(self) -> str:
        """The system prompt for the next attempt."""
        contributors = list(self.prompt_contributors)
        if self.system_prompt:
            base = PromptContributor(id="system_prompt", content=self.system_prompt)
            contributors.insert(0, base)
        return build_system_prompt(contributors)

    def get_config(self) -> dict[str, Any]:
        """
        Describe the active model binding.

        ``configured_max_tokens`` is the history budget the store packs to;
        ``model_max_tokens`` is the context window the provider reports.
        """
        provider = self.router.active_provider
        return {
            "provider": self.router.active_name,
            "provider_type": provider.name,
            "model": provider.model,
            "configured_max_tokens": self.store.max_context_tokens,
            "model_max_tokens": provider.max_context_tokens,
            "max_output_tokens": provider.max_output_tokens,
        }

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _guarded(
        self,
        user_input: str,
        image: ImageData | None,
        streaming: bool,
    ) -> str:
        try:
            return await self._run_task(user_input, image, streaming)
        except Exception as exc:
            return self._fail(exc)
        finally:
            # Events emitted between tasks carry no run id.
            self.publisher.run_id = ""

    async def _run_task(
        self,
        user_input: str,
        image: ImageData | None,
        streaming: bool,
    ) -> str:
        run = RunContext(
            run_id=uuid.uuid4().hex,
            max_iterations=self.max_iterations,
            streaming=streaming,
            reconciler=StepReconciler(self.store, self.publisher),
        )
        self.publisher.run_id = run.run_id

        self.publisher.thinking()
        self.store.append_user(user_input, image)

        tools_schema = self.registry.to_openai_schema() or None

        while not run.exhausted:
            run.iteration += 1
            calls = await self._generate(run, tools_schema)

            if not calls:
                logger.info(
                    "Task %s finished after %d iteration(s) in %.1fs",
                    run.run_id[:8],
                    run.iteration,
                    time.monotonic() - run.started,
                )
                if not run.final_text:
                    logger.warning("Final attempt produced no text")
                return run.final_text

            outcomes = await self._dispatch(calls)
            run.reconciler.feed(StepFinish(tool_results=tuple(outcomes)))

        logger.warning(
            "Task %s hit the iteration limit (%d)", run.run_id[:8], run.max_iterations
        )
        self.store.append_assistant(MAX_ITERATIONS_MESSAGE)
        self.publisher.response(MAX_ITERATIONS_MESSAGE)
        return MAX_ITERATIONS_MESSAGE

    async def _generate(
        self, run: RunContext, tools_schema: list[dict] | None
    ) -> list[ToolCall]:
        """One generation attempt.  Returns the tool calls it requested."""
        system_prompt = self.build_system_prompt()
        messages, _report = self.store.formatted_history(
            tools=tools_schema, system_prompt=system_prompt
        )
        if system_prompt:
            messages = [Message(role="system", content=system_prompt)] + messages

        logger.debug(
            "Iteration %d/%d: sending %d messages (history ~%d tokens)",
            run.iteration,
            run.max_iterations,
            len(messages),
            self.store.token_estimate(),
        )

        if run.streaming:
            signals = self.router.generate_streaming(messages, tools_schema)
        else:
            signals = self.router.generate(messages, tools_schema)

        calls: list[ToolCall] = []
        step: StepFinish | None = None
        async for signal in signals:
            for segment in run.reconciler.feed(signal):
                if isinstance(segment, ToolCallBatch):
                    calls.extend(segment.calls)
            if isinstance(signal, StepFinish):
                step = signal

        if step is None:
            # The binding ended without a step boundary.
            run.final_text = run.reconciler.buffer
            run.reconciler.feed(StreamFinish())
            return []

        run.final_text = step.text
        if not calls:
            run.reconciler.feed(StreamFinish(step.finish_reason))
        return calls

    # ------------------------------------------------------------------
    # Tool dispatch
    # ------------------------------------------------------------------

    async def _dispatch(self, calls: list[ToolCall]) -> list[ToolOutcome]:
        """Run every call of a batch concurrently and wait for all of them."""
        results = await asyncio.gather(*(self._execute_tool_call(c) for c in calls))
        return [
            ToolOutcome(call_id=call.id, name=call.name, result=result)
            for call, result in zip(calls, results)
        ]

    async def _execute_tool_call(self, call: ToolCall) -> ToolResult:
        """Execute one call; failures become failed results, never exceptions."""
        start = time.monotonic()
        try:
            value = await asyncio.wait_for(
                self.registry.execute_tool(call.name, call.arguments),
                timeout=self.tool_timeout,
            )
        except ToolExecutionError as exc:
            logger.warning("Tool call %s rejected: %s", call.name, exc)
            return ToolResult.failure(exc.error_code, str(exc))
        except asyncio.TimeoutError:
            logger.warning("Tool %s timed out after %ss", call.name, self.tool_timeout)
            return ToolResult.failure(
                ErrorCode.TIMEOUT, f"Timeout after {self.tool_timeout}s"
            )
        except Exception as exc:
            logger.exception("Tool %s raised", call.name)
            return ToolResult.failure(
                ErrorCode.TOOL_EXCEPTION, f"{type(exc).__name__}: {exc}"
            )

        result = ToolResult.from_value(value)
        logger.info(
            "Tool %s finished in %dms success=%s",
            call.name,
            int((time.monotonic() - start) * 1000),
            result.success,
        )
        return result

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def _fail(self, exc: Exception) -> str:
        message = str(exc) or type(exc).__name__
        logger.error("Task failed: %s", message, exc_info=exc)
        self.publisher.error(exc)
        return f"Error processing request: {message}"
