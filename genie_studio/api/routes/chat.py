from __future__ import annotations

from fastapi import APIRouter, Depends

from genie_studio.api.deps import RequireChatEnabled, get_chat_service
from genie_studio.domain.enums import ChatPersona
from genie_studio.domain.models import ChatReply, ChatRequest
from genie_studio.services.chat_service import ChatService

router = APIRouter(tags=["chat"])


@router.post("/conversation", dependencies=[RequireChatEnabled], response_model=ChatReply)
async def conversation(body: ChatRequest, chat: ChatService = Depends(get_chat_service)) -> ChatReply:
    return await chat.reply(ChatPersona.conversation, body.messages)


@router.post("/code", dependencies=[RequireChatEnabled], response_model=ChatReply)
async def code(body: ChatRequest, chat: ChatService = Depends(get_chat_service)) -> ChatReply:
    return await chat.reply(ChatPersona.code, body.messages)
