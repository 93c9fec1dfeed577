"""
Errori di dominio.

Ogni errore porta un `kind` leggibile dalle macchine e lo status HTTP
con cui il layer REST lo espone (vedi api_main.service_error_handler).
"""
from __future__ import annotations


class ServiceError(Exception):
    kind = "service_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class ValidationError(ServiceError):
    """Input mancante o non valido (id referenziati, campi obbligatori)."""
    kind = "validation_error"
    status_code = 400


class NotFoundError(ServiceError):
    kind = "not_found"
    status_code = 404


class AuthenticationError(ServiceError):
    """Token assente, scaduto o riferito a un utente non valido."""
    kind = "unauthorized"
    status_code = 401


class PermissionDeniedError(ServiceError):
    """L'attore non ha il ruolo o la titolarità richiesti."""
    kind = "permission_denied"
    status_code = 403


class ConflictError(ServiceError):
    """Transizione di stato non ammessa (es. rimborso di un appuntamento non pagato)."""
    kind = "conflict"
    status_code = 409


class PaymentError(ServiceError):
    kind = "payment_failed"
    status_code = 402


class UpstreamError(ServiceError):
    kind = "upstream_error"
    status_code = 502
