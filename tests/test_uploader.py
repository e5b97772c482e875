"""
Tests de subida de adjuntos
"""
import re
import pytest

from lumo_messaging.errors import InvalidRequest, UploadFailure
from lumo_messaging.schemas.message import MessageType
from lumo_messaging.uploader import AttachmentUploader, BlobStore, LocalBlobStore


@pytest.mark.asyncio
async def test_upload_image_path_and_metadata(tmp_path):
    uploader = AttachmentUploader(LocalBlobStore(str(tmp_path), "/media"), max_bytes=1024)
    attachment = await uploader.upload(b"\x89PNG data", "foto perfil.png", "image/png", "conv1", MessageType.image)

    assert re.fullmatch(r"/media/conversations/conv1/images/\d+_foto_perfil\.png", attachment.url)
    assert attachment.file_name == "foto_perfil.png"
    assert attachment.file_size == 9
    assert attachment.mime_type == "image/png"

    stored = tmp_path / attachment.url.removeprefix("/media/")
    assert stored.read_bytes() == b"\x89PNG data"


@pytest.mark.asyncio
async def test_default_name_uses_kind_and_timestamp(tmp_path):
    uploader = AttachmentUploader(LocalBlobStore(str(tmp_path)), max_bytes=1024)
    attachment = await uploader.upload(b"%PDF", None, "application/pdf", "conv1", MessageType.document)
    assert re.fullmatch(r"/media/conversations/conv1/documents/(\d+)_document_(\d+)", attachment.url)
    assert attachment.file_name.startswith("document_")


@pytest.mark.asyncio
async def test_path_separators_are_stripped(tmp_path):
    uploader = AttachmentUploader(LocalBlobStore(str(tmp_path)), max_bytes=1024)
    attachment = await uploader.upload(b"x", "../../etc/passwd", "text/plain", "conv1", MessageType.document)
    assert attachment.file_name == "passwd"
    assert "/documents/" in attachment.url


@pytest.mark.asyncio
async def test_rejections(tmp_path):
    uploader = AttachmentUploader(LocalBlobStore(str(tmp_path)), max_bytes=4)
    with pytest.raises(UploadFailure):
        await uploader.upload(b"12345", "big.png", "image/png", "c", MessageType.image)
    with pytest.raises(UploadFailure):
        await uploader.upload(b"1", "doc.pdf", "application/pdf", "c", MessageType.image)
    with pytest.raises(UploadFailure):
        await uploader.upload(b"", "empty.png", "image/png", "c", MessageType.image)
    with pytest.raises(InvalidRequest):
        await uploader.upload(b"1", "a.txt", "text/plain", "c", MessageType.text)
    assert not any(tmp_path.rglob("*.*"))


@pytest.mark.asyncio
async def test_blob_store_failure_is_upload_failure():
    class BrokenBlobs(BlobStore):
        async def put(self, path, payload, mime_type):
            raise UploadFailure("almacenamiento caído")

    uploader = AttachmentUploader(BrokenBlobs(), max_bytes=1024)
    with pytest.raises(UploadFailure):
        await uploader.upload(b"1", "a.png", "image/png", "c", MessageType.image)


@pytest.mark.asyncio
async def test_local_write_error_is_upload_failure(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("no soy un directorio")
    uploader = AttachmentUploader(LocalBlobStore(str(blocker)), max_bytes=1024)
    with pytest.raises(UploadFailure):
        await uploader.upload(b"1", "a.png", "image/png", "c", MessageType.image)
