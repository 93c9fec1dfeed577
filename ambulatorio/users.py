from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from .auth_security import hash_password, verify_password
from .db import db_session
from .errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from .models import Role, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """Utente autenticato che esegue la richiesta (un solo ruolo)."""
    id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def is_doctor(self) -> bool:
        return self.role is Role.DOCTOR

    @property
    def is_patient(self) -> bool:
        return self.role is Role.PATIENT


def actor_for(user: User) -> Actor:
    return Actor(id=user.id, role=user.role)


def create_user(
    first_name: str,
    last_name: str,
    email: str,
    password: str,
    role: Role = Role.PATIENT,
    phone: str | None = None,
    specialization: str | None = None,
) -> User:
    email = (email or "").strip().lower()
    first_name = (first_name or "").strip()
    last_name = (last_name or "").strip()
    if not email or not password or not first_name or not last_name:
        raise ValidationError("Name, email and password are required")

    with db_session() as s:
        exists = s.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if exists:
            raise ConflictError(f"Email already registered: {email}")

        u = User(
            first_name=first_name,
            last_name=last_name,
            email=email,
            password_hash=hash_password(password),
            role=role,
            phone=phone,
            specialization=specialization,
            is_active=True,
        )
        s.add(u)
        s.flush()
        logger.info("user %s registered with role %s", u.id, role.value)
        return u


def authenticate(email: str, password: str) -> User | None:
    email = (email or "").strip().lower()
    with db_session() as s:
        u = s.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if not u or not u.is_active:
            return None
        if not verify_password(password, u.password_hash):
            return None
        return u


def find_user(user_id: str) -> User | None:
    with db_session() as s:
        return s.get(User, user_id)


def get_user(user_id: str) -> User:
    u = find_user(user_id)
    if not u:
        raise NotFoundError(f"User not found with id: {user_id}")
    return u


def get_user_by_email(email: str) -> User:
    with db_session() as s:
        u = s.execute(select(User).where(User.email == email.strip().lower())).scalar_one_or_none()
        if not u:
            raise NotFoundError(f"User not found with email: {email}")
        return u


def list_users(role: Role | None = None) -> list[User]:
    with db_session() as s:
        q = select(User).order_by(User.last_name, User.first_name)
        if role is not None:
            q = q.where(User.role == role)
        return list(s.scalars(q))


def list_doctors() -> list[User]:
    with db_session() as s:
        q = (
            select(User)
            .where(User.role == Role.DOCTOR, User.is_active.is_(True))
            .order_by(User.last_name, User.first_name)
        )
        return list(s.scalars(q))


# =========================
# Helper per gli altri servizi
# =========================
def require_role(actor: Actor, *roles: Role) -> None:
    if actor.role not in roles:
        allowed = ", ".join(r.value for r in roles)
        raise PermissionDeniedError(f"Operation allowed only for: {allowed}")


def resolve_user(s: Session, user_id: str | None, role: Role, label: str) -> User:
    """Utente referenziato da una richiesta: deve esistere e avere il ruolo atteso."""
    if not user_id:
        raise ValidationError(f"{label} ID is required")
    u = s.get(User, user_id)
    if not u or u.role is not role:
        raise ValidationError(f"Invalid {label.lower()} ID: {user_id}")
    return u
