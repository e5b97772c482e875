"""
Errores de dominio del servicio de mensajería.

Los servicios lanzan estas excepciones; ``main.py`` las traduce a respuestas
HTTP y el WebSocket las envía como eventos ``error``.
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)


class MessagingError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "messaging_error"
    retryable = False

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"detail": self.detail, "code": self.code, "retryable": self.retryable}


class NotFound(MessagingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class Unauthorized(MessagingError):
    """El usuario no es participante de la conversación (o suplanta a otro)."""
    status_code = status.HTTP_403_FORBIDDEN
    code = "unauthorized"


class InvalidRequest(MessagingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_request"


class TransientStoreFailure(MessagingError):
    """Base de datos no disponible o timeout; el cliente puede reintentar."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "store_unavailable"
    retryable = True


class UploadFailure(MessagingError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "upload_failed"


class DuplicateDocument(MessagingError):
    status_code = status.HTTP_409_CONFLICT
    code = "duplicate"


async def messaging_error_handler(request: Request, exc: MessagingError) -> JSONResponse:
    if isinstance(exc, TransientStoreFailure):
        logger.warning(f"Fallo transitorio en {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
