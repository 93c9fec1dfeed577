"""
Dipendenze FastAPI condivise dai router: autenticazione JWT, controllo
ruoli e collaboratori esterni registrati in app.state da create_app().
"""
from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from .auth_security import get_subject
from .chatbot import ChatProvider, KnowledgeProvider
from .config import Settings
from .errors import AuthenticationError, PermissionDeniedError
from .models import Role, User
from .payments import PaymentGateway
from .storage import FileStorage
from .users import Actor, actor_for, find_user

# OAuth2 Bearer (Authorization: Bearer <token>)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_payment_gateway(request: Request) -> PaymentGateway:
    return request.app.state.payment_gateway


def get_knowledge(request: Request) -> KnowledgeProvider:
    return request.app.state.knowledge


def get_chat_api(request: Request) -> ChatProvider:
    return request.app.state.chat_api


def get_storage(request: Request) -> FileStorage:
    return request.app.state.storage


def _user_from_token(token: str, settings: Settings) -> User:
    # protezione extra: elimina spazi / virgolette accidentali
    token = token.strip().strip('"').strip("'")

    user_id = get_subject(token, settings)
    if not user_id:
        raise AuthenticationError("Invalid token")

    u = find_user(user_id)
    if not u or not u.is_active:
        raise AuthenticationError("Invalid user")
    return u


def get_current_user(
    token: str = Depends(oauth2_scheme),
    settings: Settings = Depends(get_settings),
) -> User:
    return _user_from_token(token, settings)


def get_current_actor(user: User = Depends(get_current_user)) -> Actor:
    return actor_for(user)


def get_optional_actor(
    token: str | None = Depends(optional_oauth2_scheme),
    settings: Settings = Depends(get_settings),
) -> Actor | None:
    """Attore se è presente un bearer token; un token presente ma non valido è comunque 401."""
    if not token:
        return None
    return actor_for(_user_from_token(token, settings))


def require_roles(*roles: Role) -> Callable[..., Actor]:
    """Dipendenza: attore autenticato con uno dei ruoli indicati."""
    allowed = ", ".join(r.value for r in roles)

    def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in roles:
            raise PermissionDeniedError(f"Operation allowed only for: {allowed}")
        return actor

    return dependency
