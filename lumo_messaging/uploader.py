# lumo_messaging/uploader.py
"""
Subida de adjuntos (imágenes y documentos) antes de enviar el mensaje.

Los ficheros se guardan en ``conversations/<conversation_id>/<kind>s/<ms>_<nombre>``.
Si la subida falla no se crea ningún mensaje; si falla el envío posterior el
fichero queda huérfano.
"""
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Optional
import logging
import re

import aiofiles

from .errors import InvalidRequest, UploadFailure
from .schemas.message import AttachmentOut, MessageType

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._\-]+")


def _safe_name(name: str) -> str:
    # sin separadores de ruta ni caracteres raros
    name = PurePosixPath(name.replace("\\", "/")).name
    name = _UNSAFE_CHARS.sub("_", name).strip("._")
    return name[:120]


class BlobStore(ABC):
    @abstractmethod
    async def put(self, path: str, payload: bytes, mime_type: str) -> str:
        """Guarda el blob y devuelve su URL pública."""


class LocalBlobStore(BlobStore):
    """Blobs en disco bajo MEDIA_DIR, servidos por StaticFiles en /media."""

    def __init__(self, media_dir: str, media_base_url: str = "/media"):
        self.media_dir = Path(media_dir)
        self.media_base_url = media_base_url.rstrip("/")

    async def put(self, path: str, payload: bytes, mime_type: str) -> str:
        abs_path = self.media_dir / path
        try:
            abs_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(abs_path, "wb") as out:
                await out.write(payload)
        except OSError as e:
            logger.error(f"Error guardando {abs_path}: {e}", exc_info=True)
            raise UploadFailure("No se pudo guardar el archivo")
        return f"{self.media_base_url}/{path}"


class AttachmentUploader:
    def __init__(self, blob_store: BlobStore, max_bytes: int):
        self.blob_store = blob_store
        self.max_bytes = max_bytes

    async def upload(
        self,
        payload: bytes,
        file_name: Optional[str],
        mime_type: Optional[str],
        conversation_id: str,
        kind: MessageType,
    ) -> AttachmentOut:
        if kind not in (MessageType.image, MessageType.document):
            raise InvalidRequest("Solo se pueden subir imágenes o documentos")
        mime_type = mime_type or "application/octet-stream"
        if kind == MessageType.image and not mime_type.startswith("image/"):
            raise UploadFailure("Solo imágenes")
        if not payload:
            raise UploadFailure("Archivo vacío")
        if len(payload) > self.max_bytes:
            raise UploadFailure(f"Archivo demasiado grande (máximo {self.max_bytes // (1024 * 1024)} MB)")

        millis = int(datetime.now(timezone.utc).timestamp() * 1000)
        name = _safe_name(file_name or "") or f"{kind.value}_{millis}"
        path = f"conversations/{conversation_id}/{kind.value}s/{millis}_{name}"

        url = await self.blob_store.put(path, payload, mime_type)
        logger.info(f"Adjunto subido a {path} ({len(payload)} bytes)")
        return AttachmentOut(url=url, file_name=name, file_size=len(payload), mime_type=mime_type)
