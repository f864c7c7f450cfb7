"""
Chat layer: per-conversation history plus "interrupt" scheduling.

History lives in the correlation store under ``chat-history-<key>``. A new
message for a conversation cancels the turn still running for it and starts a
fresh one over the updated history; different conversations run in parallel.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Any, Awaitable, Callable, Dict, List, Optional

from agentbridge.agent.context_store import CorrelationStore
from agentbridge.agent.turn_executor import TurnResult

logger = logging.getLogger(__name__)

HISTORY_PREFIX = "chat-history-"
BEHAVIOR_INTERRUPT = "interrupt"

RunTurn = Callable[[str, List[Dict[str, Any]]], Awaitable[TurnResult]]


def history_key(conversation_key: str) -> str:
    return f"{HISTORY_PREFIX}{conversation_key}"


def trim_history(messages: List[Dict[str, Any]], max_messages: int) -> List[Dict[str, Any]]:
    """Keep at most ``max_messages``, starting at a plain user message so tool pairs stay intact."""
    if len(messages) <= max_messages:
        return messages
    tail = messages[-max_messages:]
    for i, message in enumerate(tail):
        if message.get("role") == "user" and isinstance(message.get("content"), str):
            return tail[i:]
    return tail[-1:]


class ChatService:
    def __init__(self, store: CorrelationStore, run_turn: RunTurn, max_history: int = 200):
        self.store = store
        self.run_turn = run_turn
        self.max_history = max_history
        self._tasks: Dict[str, asyncio.Task] = {}
        # entries vanish once no coroutine holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock(self, conversation_key: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_key)
        if lock is None:
            lock = self._locks[conversation_key] = asyncio.Lock()
        return lock

    async def history(self, conversation_key: str) -> List[Dict[str, Any]]:
        data = await self.store.get_json(history_key(conversation_key))
        return data if isinstance(data, list) else []

    async def _save(self, conversation_key: str, messages: List[Dict[str, Any]]) -> None:
        await self.store.set_json(history_key(conversation_key), trim_history(messages, self.max_history))

    async def append(self, conversation_key: str, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        async with self._lock(conversation_key):
            current = await self.history(conversation_key)
            current.extend(messages)
            await self._save(conversation_key, current)
            return current

    def is_running(self, conversation_key: str) -> bool:
        task = self._tasks.get(conversation_key)
        return task is not None and not task.done()

    async def _cancel(self, conversation_key: str) -> None:
        task = self._tasks.pop(conversation_key, None)
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.info("chat.turn_interrupted", extra={"conversation_key": conversation_key})
        except Exception as exc:
            # already surfaced to whoever awaited the direct-chat turn
            logger.info(
                "chat.previous_turn_failed",
                extra={"conversation_key": conversation_key, "error": str(exc)},
            )

    async def _turn(self, conversation_key: str) -> TurnResult:
        messages = await self.history(conversation_key)
        result = await self.run_turn(conversation_key, messages)
        await self.append(conversation_key, result.messages)
        return result

    async def _turn_logged(self, conversation_key: str) -> Optional[TurnResult]:
        try:
            return await self._turn(conversation_key)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("chat.turn_failed", extra={"conversation_key": conversation_key})
            return None

    async def enqueue(self, conversation_key: str, text: str, behavior: str = BEHAVIOR_INTERRUPT) -> asyncio.Task:
        """Append a user message and start a turn in the background, preempting any running one."""
        if behavior != BEHAVIOR_INTERRUPT:
            raise ValueError(f"Unsupported enqueue behavior: {behavior}")
        await self._cancel(conversation_key)
        await self.append(conversation_key, [{"role": "user", "content": text}])
        task = asyncio.create_task(self._turn_logged(conversation_key))
        self._tasks[conversation_key] = task
        task.add_done_callback(lambda t, key=conversation_key: self._forget(key, t))
        logger.info("chat.enqueued", extra={"conversation_key": conversation_key})
        return task

    def _forget(self, conversation_key: str, task: asyncio.Task) -> None:
        if self._tasks.get(conversation_key) is task:
            del self._tasks[conversation_key]

    async def send(self, conversation_key: str, text: str) -> TurnResult:
        """Direct chat: same interrupt semantics, but waits for the turn."""
        await self._cancel(conversation_key)
        await self.append(conversation_key, [{"role": "user", "content": text}])
        task = asyncio.create_task(self._turn(conversation_key))
        self._tasks[conversation_key] = task
        task.add_done_callback(lambda t, key=conversation_key: self._forget(key, t))
        return await task

    async def shutdown(self) -> None:
        for key in list(self._tasks):
            await self._cancel(key)
