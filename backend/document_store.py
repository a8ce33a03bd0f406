# document_store.py — Filesystem blob store for uploaded documents
import os
import time
import secrets
import logging

from fastapi import UploadFile

logger = logging.getLogger("certisphere.documents")

UPLOAD_ROOT = os.getenv("UPLOAD_ROOT", "uploads")
CHUNK_SIZE = 1024 * 1024


class DocumentStore:
    """Stores uploads under a unique name; the original filename lives in the DB row."""

    def __init__(self, root: str = UPLOAD_ROOT):
        self.root = root

    def _stored_name(self, original_name: str) -> str:
        ext = os.path.splitext(original_name or "")[1]
        return f"documents-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{ext}"

    async def save(self, upload: UploadFile, certificate_id: int, user_id: int) -> str:
        os.makedirs(self.root, exist_ok=True)
        path = os.path.join(self.root, self._stored_name(upload.filename))
        with open(path, "wb") as out:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                out.write(chunk)
        logger.info(f"Stored document for certificate={certificate_id} user={user_id} at {path}")
        return path


_document_store = DocumentStore()


def get_document_store() -> DocumentStore:
    return _document_store
