"""Direct chat with a conversation, bypassing webhooks."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from agentbridge.agent.chat import ChatService
from agentbridge.api.deps import get_chat
from agentbridge.core.errors import ConfigurationError, UpstreamError, error_code_for_status

router = APIRouter(prefix="/chat", tags=["chat"])
logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)


@router.post("/{conversation_key}")
async def send_message(
    conversation_key: str, req: ChatRequest, chat: ChatService = Depends(get_chat)
):
    try:
        result = await chat.send(conversation_key, req.message)
    except asyncio.CancelledError:
        # a newer message for the same conversation took over
        raise HTTPException(status_code=409, detail={"code": error_code_for_status(409), "message": "Turn interrupted"})
    except ConfigurationError as exc:
        raise HTTPException(status_code=503, detail={"code": error_code_for_status(503), "message": str(exc)})
    except UpstreamError as exc:
        logger.error("chat.upstream_error", extra={"conversation_key": conversation_key, "error": str(exc)})
        raise HTTPException(status_code=502, detail={"code": error_code_for_status(502), "message": str(exc)})
    return {
        "conversation_key": conversation_key,
        "text": result.text,
        "stop_reason": result.stop_reason,
        "tool_calls": result.tool_calls,
        "context_source": result.context_source,
    }


@router.get("/{conversation_key}")
async def get_history(conversation_key: str, chat: ChatService = Depends(get_chat)):
    return {"conversation_key": conversation_key, "messages": await chat.history(conversation_key)}
