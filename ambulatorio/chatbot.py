from __future__ import annotations

import logging
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from .db import db_session
from .errors import ConflictError, NotFoundError, PermissionDeniedError, ServiceError, ValidationError
from .models import ChatMessage, ChatSession, Sender, utcnow
from .users import Actor, get_user

logger = logging.getLogger(__name__)

MEDICAL_KEYWORDS = (
    "symptom", "disease", "condition", "treatment", "medicine", "diagnosis",
    "health", "medical", "doctor", "hospital", "clinic", "prescription",
    "pain", "fever", "cough", "headache", "allergy", "infection",
    "diabetes", "cancer", "heart", "blood", "pressure", "cholesterol",
    "vaccine", "prevention", "diet", "exercise", "nutrition",
)

DISCLAIMER = (
    "DISCLAIMER: This information is for educational purposes only and is not a substitute "
    "for professional medical advice. Always consult with a qualified healthcare provider "
    "for medical advice, diagnosis, or treatment."
)
NOT_FOUND_REPLY = (
    "I'm sorry, I couldn't find reliable information about that. "
    "Please consult with a healthcare professional for accurate advice."
)
NO_RESPONSE_REPLY = "I'm sorry, I couldn't process your request at this time. Please try again later."
FALLBACK_REPLY = (
    "I'm sorry, I'm having trouble connecting to my knowledge base. "
    "Please try again later or contact support if the problem persists."
)

# message_type salvato sui messaggi
MEDICAL_QUERY = "MEDICAL_QUERY"
GENERAL_QUERY = "GENERAL_QUERY"
MEDICAL_INFO = "MEDICAL_INFO"
GENERAL_REPLY = "GENERAL_REPLY"


class KnowledgeProvider(Protocol):
    def search(self, query: str) -> dict[str, Any]:
        ...


class ChatProvider(Protocol):
    def ask(self, message: str, session_id: int) -> str | None:
        ...


# =========================
# Classificazione / formattazione
# =========================
def is_medical_query(message: str) -> bool:
    text = message.lower()
    if any(k in text for k in MEDICAL_KEYWORDS):
        return True
    return "what is" in text and ("health" in text or "medical" in text)


def _results(info: dict[str, Any], key: str) -> list[dict[str, Any]]:
    block = info.get(key)
    if not isinstance(block, dict):
        return []
    return list(block.get("results") or [])


def format_medical_response(info: dict[str, Any], query: str) -> str:
    """Testo leggibile dai risultati di MedlinePlus / Health.gov, sempre con disclaimer."""
    medline = _results(info, "medlinePlus")
    healthgov = _results(info, "healthGov")
    if "error" in info or (not medline and not healthgov and _all_failed(info)):
        return NOT_FOUND_REPLY

    parts = [f'Here\'s what I found about "{query}":\n\n']

    if medline:
        top = medline[0]
        parts.append(f"From MedlinePlus: {top.get('title', '')}\n{top.get('summary', '')}\n\n")
        if len(medline) > 1:
            parts.append("Additional information:\n")
            parts.extend(f"- {r.get('title', '')}\n" for r in medline[1:3])
            parts.append("\n")

    if healthgov:
        top = healthgov[0]
        parts.append(f"From Health.gov: {top.get('title', '')}\n{top.get('description', '')}\n\n")

    parts.append(DISCLAIMER)
    return "".join(parts)


def _all_failed(info: dict[str, Any]) -> bool:
    blocks = [info.get("medlinePlus"), info.get("healthGov")]
    return all(isinstance(b, dict) and "error" in b for b in blocks)


# =========================
# Sessioni
# =========================
def _owned(s: Session, session_id: int, actor: Actor) -> ChatSession:
    cs = s.get(ChatSession, session_id)
    if not cs:
        raise NotFoundError(f"Chat session not found with id: {session_id}")
    if cs.user_id != actor.id:
        raise PermissionDeniedError("You can only access your own chat sessions")
    return cs


def create_session(actor: Actor) -> ChatSession:
    get_user(actor.id)
    with db_session() as s:
        cs = ChatSession(user_id=actor.id, start_time=utcnow(), is_active=True)
        s.add(cs)
        s.flush()
        logger.info("chat session %s opened by %s", cs.id, actor.id)
        return cs


def list_sessions(actor: Actor) -> list[ChatSession]:
    with db_session() as s:
        q = select(ChatSession).where(ChatSession.user_id == actor.id).order_by(ChatSession.start_time.desc())
        return list(s.scalars(q))


def get_session(session_id: int, actor: Actor) -> tuple[ChatSession, list[ChatMessage]]:
    """Sessione con i suoi messaggi in ordine cronologico."""
    with db_session() as s:
        cs = _owned(s, session_id, actor)
        return cs, list(cs.messages)


def get_history(session_id: int, actor: Actor) -> list[ChatMessage]:
    with db_session() as s:
        _owned(s, session_id, actor)
        q = (
            select(ChatMessage)
            .where(ChatMessage.session_id == session_id)
            .order_by(ChatMessage.timestamp.asc(), ChatMessage.id.asc())
        )
        return list(s.scalars(q))


def end_session(session_id: int, actor: Actor) -> ChatSession:
    with db_session() as s:
        cs = _owned(s, session_id, actor)
        if cs.is_active:
            cs.is_active = False
            cs.end_time = utcnow()
            logger.info("chat session %s ended", cs.id)
        return cs


# =========================
# Messaggi
# =========================
def _bot_reply(content: str, session_id: int, knowledge: KnowledgeProvider, chat_api: ChatProvider) -> str:
    """Risposta best-effort: nessun errore esterno arriva al chiamante."""
    try:
        if is_medical_query(content):
            return format_medical_response(knowledge.search(content), content)
        answer = chat_api.ask(content, session_id)
        return answer if answer else NO_RESPONSE_REPLY
    except ServiceError as e:
        logger.warning("chat collaborator failed for session %s: %s", session_id, e.message)
        return FALLBACK_REPLY
    except Exception:
        logger.exception("unexpected chat collaborator failure for session %s", session_id)
        return FALLBACK_REPLY


def post_message(
    session_id: int,
    content: str,
    actor: Actor,
    knowledge: KnowledgeProvider,
    chat_api: ChatProvider,
) -> ChatMessage:
    """
    Use case: messaggio dell'utente e risposta del bot.
    - messaggio utente salvato subito (prima transazione)
    - chiamata esterna fuori da ogni transazione
    - messaggio BOT + last_activity_time nella seconda transazione
    Ritorna il messaggio del bot.
    """
    content = (content or "").strip()
    if not content:
        raise ValidationError("Message content is required")
    medical = is_medical_query(content)

    with db_session() as s:
        cs = _owned(s, session_id, actor)
        if not cs.is_active:
            raise ConflictError("Chat session has ended")
        s.add(
            ChatMessage(
                session_id=cs.id,
                content=content,
                sender=Sender.USER,
                timestamp=utcnow(),
                message_type=MEDICAL_QUERY if medical else GENERAL_QUERY,
            )
        )

    reply = _bot_reply(content, session_id, knowledge, chat_api)

    with db_session() as s:
        cs = _owned(s, session_id, actor)
        now = utcnow()
        bot = ChatMessage(
            session_id=cs.id,
            content=reply,
            sender=Sender.BOT,
            timestamp=now,
            message_type=MEDICAL_INFO if medical else GENERAL_REPLY,
        )
        s.add(bot)
        cs.last_activity_time = now
        s.flush()
        return bot
