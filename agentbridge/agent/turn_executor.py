"""
Turn Executor

Runs one model turn for a conversation: resolve context, compose tools and
prompt, then loop over the Anthropic Messages API until the model stops
asking for tools or the round limit is hit.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import anthropic

from agentbridge.agent.composer import ComposedTurn, ToolSetComposer
from agentbridge.agent.context_resolver import SessionContextResolver
from agentbridge.core.config import Settings
from agentbridge.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

MAX_TOOL_RESULT_CHARS = 50000


@dataclass
class TurnResult:
    conversation_key: str
    messages: List[Dict[str, Any]] = field(default_factory=list)
    text: str = ""
    stop_reason: Optional[str] = None
    tool_calls: List[str] = field(default_factory=list)
    rounds: int = 0
    context_source: str = "none"


def _block_to_dict(block: Any) -> Dict[str, Any]:
    kind = getattr(block, "type", None)
    if kind == "text":
        return {"type": "text", "text": block.text}
    if kind == "tool_use":
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    return block.model_dump(exclude_none=True)


def _render_result(result: Any) -> str:
    text = result if isinstance(result, str) else json.dumps(result, default=str)
    if len(text) > MAX_TOOL_RESULT_CHARS:
        text = text[:MAX_TOOL_RESULT_CHARS] + "... [truncated]"
    return text


class TurnExecutor:
    def __init__(
        self,
        settings: Settings,
        resolver: SessionContextResolver,
        composer: ToolSetComposer,
        client: Optional[anthropic.AsyncAnthropic] = None,
        on_text: Optional[Callable[[str, str], None]] = None,
    ):
        self.settings = settings
        self.resolver = resolver
        self.composer = composer
        self._client = client
        self.on_text = on_text

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            if not self.settings.anthropic_api_key:
                raise ConfigurationError("ANTHROPIC_API_KEY is required to run the agent")
            self._client = anthropic.AsyncAnthropic(api_key=self.settings.anthropic_api_key)
        return self._client

    async def _call_model(
        self, conversation_key: str, turn: ComposedTurn, messages: List[Dict[str, Any]]
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        async with self.client.messages.stream(
            model=self.settings.model,
            max_tokens=self.settings.max_tokens,
            system=turn.system_prompt,
            tools=[t.schema() for t in turn.tools],
            messages=messages,
        ) as stream:
            async for text in stream.text_stream:
                if self.on_text:
                    self.on_text(conversation_key, text)
            final = await stream.get_final_message()
        return [_block_to_dict(b) for b in final.content], final.stop_reason

    async def _run_tools(
        self, conversation_key: str, turn: ComposedTurn, calls: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        results: List[Dict[str, Any]] = []
        for call in calls:
            result: Dict[str, Any] = {"type": "tool_result", "tool_use_id": call["id"]}
            tool = turn.find(call["name"])
            if tool is None:
                result.update(content=f"Unknown tool: {call['name']}", is_error=True)
                results.append(result)
                continue
            try:
                output = await tool.invoke(call.get("input"))
                result["content"] = _render_result(output)
            except Exception as exc:
                logger.warning(
                    "turn.tool_failed",
                    extra={"conversation_key": conversation_key, "tool": call["name"], "error": str(exc)},
                )
                result.update(content=str(exc) or type(exc).__name__, is_error=True)
            results.append(result)
        return results

    async def run(self, conversation_key: str, messages: List[Dict[str, Any]]) -> TurnResult:
        resolved = await self.resolver.resolve(conversation_key, messages)
        workspaces = self.composer.workspaces
        initialized = bool(workspaces) and await workspaces.is_initialized(conversation_key)
        turn = self.composer.compose(conversation_key, resolved.record, initialized)

        working = list(messages)
        outcome = TurnResult(conversation_key=conversation_key, context_source=resolved.source)
        logger.info(
            "turn.started",
            extra={
                "conversation_key": conversation_key,
                "reason": resolved.source,
                "status": f"{len(turn.tools)} tools",
            },
        )

        while True:
            content, stop_reason = await self._call_model(conversation_key, turn, working)
            calls = [b for b in content if b.get("type") == "tool_use"]
            if calls and stop_reason != "tool_use":
                # tool_use ids must be answered by tool_result blocks; unanswered ones are dropped
                logger.warning(
                    "turn.unanswered_tool_use",
                    extra={"conversation_key": conversation_key, "status": stop_reason},
                )
                content = [b for b in content if b.get("type") != "tool_use"] or [
                    {"type": "text", "text": f"(response stopped: {stop_reason})"}
                ]
                calls = []
            assistant = {"role": "assistant", "content": content}
            working.append(assistant)
            outcome.messages.append(assistant)
            outcome.rounds += 1
            outcome.stop_reason = stop_reason
            text = "".join(b.get("text", "") for b in content if b.get("type") == "text")
            if text:
                outcome.text = text

            if not calls:
                break

            outcome.tool_calls.extend(c["name"] for c in calls)
            results = await self._run_tools(conversation_key, turn, calls)
            tool_message = {"role": "user", "content": results}
            working.append(tool_message)
            outcome.messages.append(tool_message)

            if outcome.rounds >= self.settings.max_tool_rounds:
                outcome.stop_reason = "max_tool_rounds"
                logger.warning(
                    "turn.round_limit",
                    extra={"conversation_key": conversation_key, "status": outcome.rounds},
                )
                break

        logger.info(
            "turn.finished",
            extra={
                "conversation_key": conversation_key,
                "status": outcome.stop_reason,
                "tool": ",".join(outcome.tool_calls),
            },
        )
        return outcome
