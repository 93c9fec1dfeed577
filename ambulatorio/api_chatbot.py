from __future__ import annotations

from fastapi import APIRouter, Depends, status

from . import chatbot
from .api_deps import get_chat_api, get_current_actor, get_knowledge, get_settings
from .api_schemas import (
    ChatbotConfigOut,
    ChatMessageIn,
    ChatMessageOut,
    ChatReplyOut,
    ChatSessionDetailOut,
    ChatSessionOut,
)
from .chatbot import ChatProvider, KnowledgeProvider
from .config import Settings
from .users import Actor

router = APIRouter(prefix="/api/chatbot", tags=["chatbot"])


@router.get("/config", response_model=ChatbotConfigOut)
def config(settings: Settings = Depends(get_settings)) -> ChatbotConfigOut:
    return ChatbotConfigOut(disclaimers=list(settings.disclaimers), medical_sources=list(settings.medical_sources))


@router.post("/sessions", response_model=ChatSessionOut, status_code=status.HTTP_201_CREATED)
def create_session(actor: Actor = Depends(get_current_actor)):
    return chatbot.create_session(actor)


@router.get("/sessions", response_model=list[ChatSessionOut])
def list_sessions(actor: Actor = Depends(get_current_actor)):
    return chatbot.list_sessions(actor)


@router.get("/sessions/{session_id}", response_model=ChatSessionDetailOut)
def get_session(session_id: int, actor: Actor = Depends(get_current_actor)) -> ChatSessionDetailOut:
    cs, messages = chatbot.get_session(session_id, actor)
    return ChatSessionDetailOut(
        **ChatSessionOut.model_validate(cs).model_dump(),
        messages=[ChatMessageOut.model_validate(m) for m in messages],
    )


@router.post("/sessions/{session_id}/messages", response_model=ChatReplyOut)
def post_message(
    session_id: int,
    payload: ChatMessageIn,
    actor: Actor = Depends(get_current_actor),
    knowledge: KnowledgeProvider = Depends(get_knowledge),
    chat_api: ChatProvider = Depends(get_chat_api),
) -> ChatReplyOut:
    bot = chatbot.post_message(session_id, payload.content, actor, knowledge, chat_api)
    return ChatReplyOut(response=bot.content, timestamp=bot.timestamp, message_type=bot.message_type)


@router.get("/sessions/{session_id}/messages", response_model=list[ChatMessageOut])
def history(session_id: int, actor: Actor = Depends(get_current_actor)):
    return chatbot.get_history(session_id, actor)


@router.post("/sessions/{session_id}/end", response_model=ChatSessionOut)
def end_session(session_id: int, actor: Actor = Depends(get_current_actor)):
    return chatbot.end_session(session_id, actor)
