from __future__ import annotations

import logging

from sqlalchemy import select

from .auth_security import hash_password
from .db import db_session
from .models import Role, User

logger = logging.getLogger(__name__)

DEFAULT_PASSWORD = "changeme"

USERS = [
    # (nome, cognome, email, ruolo, specializzazione)
    ("Admin", "Ambulatorio", "admin@ambulatorio.local", Role.ADMIN, None),
    ("Mario", "Rossi", "m.rossi@ambulatorio.local", Role.DOCTOR, "Medicina Generale"),
    ("Laura", "Bianchi", "l.bianchi@ambulatorio.local", Role.DOCTOR, "Cardiologia"),
    ("Giulia", "Verdi", "g.verdi@ambulatorio.local", Role.PATIENT, None),
]


def seed_base(password: str = DEFAULT_PASSWORD) -> int:
    """
    Popola utenti minimi (idempotente): un admin, due medici, un paziente.
    Ritorna quanti utenti sono stati creati.
    """
    created = 0
    with db_session() as s:
        for first_name, last_name, email, role, spec in USERS:
            if s.execute(select(User).where(User.email == email)).scalar_one_or_none() is not None:
                continue
            s.add(
                User(
                    first_name=first_name,
                    last_name=last_name,
                    email=email,
                    password_hash=hash_password(password),
                    role=role,
                    specialization=spec,
                    is_active=True,
                )
            )
            created += 1

    logger.info("seed completed, %d users created", created)
    return created
