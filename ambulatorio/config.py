from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .db import DEFAULT_DATABASE_URL

DEFAULT_DISCLAIMERS = (
    "This chatbot provides general health information only and is not a substitute for professional medical advice.",
    "In case of emergency, call your local emergency number immediately.",
)
DEFAULT_MEDICAL_SOURCES = ("MedlinePlus", "Health.gov")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _split(value: str | None, default: tuple[str, ...]) -> tuple[str, ...]:
    if not value:
        return default
    return tuple(v.strip() for v in value.split("|") if v.strip())


@dataclass(frozen=True)
class Settings:
    """
    Configurazione dell'applicazione, letta una volta all'avvio.
    Viene passata a create_app(): nessun modulo legge l'ambiente a runtime.
    """
    database_url: str = DEFAULT_DATABASE_URL
    jwt_secret: str = "CHANGE_ME_DEV_SECRET"
    jwt_expire_minutes: int = 60
    log_level: str = "INFO"
    upload_dir: str = "./uploads"

    chatbot_api_url: str = ""
    chatbot_api_key: str = ""
    chatbot_timeout_seconds: float = 10.0
    medline_api_url: str = ""
    medline_api_key: str = ""
    healthgov_api_url: str = ""
    disclaimers: tuple[str, ...] = field(default=DEFAULT_DISCLAIMERS)
    medical_sources: tuple[str, ...] = field(default=DEFAULT_MEDICAL_SOURCES)

    payment_success_rate: float = 0.9


def load_settings() -> Settings:
    # In produzione: valori in variabili d'ambiente (o .env)
    load_dotenv()
    return Settings(
        database_url=os.getenv("AMBULATORIO_DATABASE_URL", DEFAULT_DATABASE_URL),
        jwt_secret=os.getenv("JWT_SECRET", "CHANGE_ME_DEV_SECRET"),
        jwt_expire_minutes=int(os.getenv("JWT_EXPIRE_MINUTES", "60")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        upload_dir=os.getenv("UPLOAD_DIR", "./uploads"),
        chatbot_api_url=os.getenv("CHATBOT_API_URL", ""),
        chatbot_api_key=os.getenv("CHATBOT_API_KEY", ""),
        chatbot_timeout_seconds=float(os.getenv("CHATBOT_TIMEOUT_SECONDS", "10")),
        medline_api_url=os.getenv("MEDLINE_API_URL", ""),
        medline_api_key=os.getenv("MEDLINE_API_KEY", ""),
        healthgov_api_url=os.getenv("HEALTHGOV_API_URL", ""),
        disclaimers=_split(os.getenv("CHATBOT_DISCLAIMERS"), DEFAULT_DISCLAIMERS),
        medical_sources=_split(os.getenv("CHATBOT_MEDICAL_SOURCES"), DEFAULT_MEDICAL_SOURCES),
        payment_success_rate=float(os.getenv("PAYMENT_SUCCESS_RATE", "0.9")),
    )
