from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api_appointments import public_router, router as appointments_router
from .api_chatbot import router as chatbot_router
from .api_deps import get_current_user, get_settings, require_roles
from .api_notifications import router as notifications_router
from .api_payments import router as payments_router
from .api_records import lab_reports_router, prescriptions_router, records_router
from .api_schemas import RegisterIn, TokenOut, UserCreateIn, UserOut
from .auth_security import create_access_token
from .chatbot import ChatProvider, KnowledgeProvider
from .config import LOG_FORMAT, Settings, load_settings
from .db import configure_engine, init_db
from .errors import AuthenticationError, ServiceError
from .knowledge import ChatApiClient, MedicalKnowledgeClient
from .models import Role, User
from .payments import PaymentGateway, RandomPaymentGateway
from .storage import FileStorage
from .users import Actor, authenticate, create_user, list_users

logger = logging.getLogger(__name__)

HTTP_KINDS = {
    401: "unauthorized",
    403: "permission_denied",
    404: "not_found",
    405: "method_not_allowed",
}


def _envelope(status_code: int, kind: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": {"kind": kind, "message": message}})


# Gestori errori: sempre {"error": {"kind", "message"}}

async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()}, headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(x) for x in err.get("loc", ()) if x != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return _envelope(status.HTTP_400_BAD_REQUEST, "validation_error", "; ".join(parts) or "Invalid request")


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    kind = HTTP_KINDS.get(exc.status_code, "http_error")
    response = _envelope(exc.status_code, kind, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return _envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", "Internal server error")


# Auth / utenti

def _auth_routes(app: FastAPI) -> None:
    @app.post("/api/auth/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
    def register(payload: RegisterIn):
        # auto-registrazione: solo pazienti
        return create_user(
            payload.first_name,
            payload.last_name,
            payload.email,
            payload.password,
            role=Role.PATIENT,
            phone=payload.phone,
        )

    @app.post("/api/auth/login", response_model=TokenOut)
    def login(form: OAuth2PasswordRequestForm = Depends(), settings: Settings = Depends(get_settings)) -> TokenOut:
        u = authenticate(form.username, form.password)
        if not u:
            raise AuthenticationError("Invalid credentials")

        token = create_access_token(subject=u.id, settings=settings, extra={"role": u.role.value})
        return TokenOut(access_token=token)

    @app.get("/api/me", response_model=UserOut)
    def me(user: User = Depends(get_current_user)):
        return user

    @app.get("/api/users", response_model=list[UserOut])
    def users(role: Role | None = None, actor: Actor = Depends(require_roles(Role.ADMIN))):
        return list_users(role)

    @app.post("/api/users", response_model=UserOut, status_code=status.HTTP_201_CREATED)
    def add_user(payload: UserCreateIn, actor: Actor = Depends(require_roles(Role.ADMIN))):
        return create_user(
            payload.first_name,
            payload.last_name,
            payload.email,
            payload.password,
            role=payload.role,
            phone=payload.phone,
            specialization=payload.specialization,
        )

    @app.get("/api/health")
    def health() -> dict[str, Any]:
        return {"ok": True}


def create_app(
    settings: Settings,
    payment_gateway: PaymentGateway | None = None,
    knowledge: KnowledgeProvider | None = None,
    chat_api: ChatProvider | None = None,
    storage: FileStorage | None = None,
) -> FastAPI:
    """
    Costruisce l'applicazione:
    - engine sul database di `settings`
    - logging configurato una volta
    - collaboratori esterni iniettabili (test, demo)
    """
    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT)
    configure_engine(settings.database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # crea tabelle se non esistono
        init_db()
        logger.info("database ready")
        yield

    app = FastAPI(title="Ambulatorio API", version="1.0.0", lifespan=lifespan)

    app.state.settings = settings
    app.state.payment_gateway = payment_gateway or RandomPaymentGateway(settings.payment_success_rate)
    app.state.knowledge = knowledge or MedicalKnowledgeClient.from_settings(settings)
    app.state.chat_api = chat_api or ChatApiClient.from_settings(settings)
    app.state.storage = storage or FileStorage(settings.upload_dir)

    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    _auth_routes(app)
    for r in (
        public_router,
        appointments_router,
        payments_router,
        notifications_router,
        chatbot_router,
        records_router,
        prescriptions_router,
        lab_reports_router,
    ):
        app.include_router(r)

    return app


def main() -> None:
    import uvicorn

    uvicorn.run(create_app(load_settings()), host="127.0.0.1", port=8000)


if __name__ == "__main__":
    main()
