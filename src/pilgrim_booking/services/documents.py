from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict

from pilgrim_booking.db.enums import DocumentType
from pilgrim_booking.db.repositories.documents import _normalize_document_type
from pilgrim_booking.services.collaborators import ObjectStore
from pilgrim_booking.utils.errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class StagedDocument(BaseModel):
    """An uploaded file waiting for its booking to exist. Only the storage reference is kept."""

    model_config = ConfigDict(frozen=True)

    storage_path: str
    file_name: str
    doc_type: str


def safe_file_name(file_name: str) -> str:
    base = file_name.replace("\\", "/").rsplit("/", 1)[-1].strip()
    cleaned = _UNSAFE_NAME_CHARS.sub("_", base).strip("._")
    return cleaned or "upload"


class DocumentService:
    """
    What it does:
    - Uploads pilgrim documents to the object store and issues time-limited links.

    Behavior:
    - Objects are stored under `{user_id}/{timestamp}_{file_name}` so one user's
      files never share a prefix with another's.
    - Store failures surface as UpstreamError; the caller may retry.
    """

    def __init__(
        self,
        store: ObjectStore,
        *,
        ttl_seconds: int = 3600,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.now = now

    def upload_for_user(
        self,
        user_id: str,
        file_name: str,
        content: bytes,
        doc_type: DocumentType | str = DocumentType.OTHER,
    ) -> StagedDocument:
        if not user_id:
            raise ValidationError("A user id is required to store documents", {"user_id": "Required"})
        if not content:
            raise ValidationError("The uploaded file is empty", {"file": "Empty file"})
        try:
            doc_type_value = _normalize_document_type(doc_type)
        except ValueError as e:
            raise ValidationError(str(e), {"doc_type": "Unknown document type"}) from e

        stamp = int(self.now().timestamp() * 1000)
        path = f"{user_id}/{stamp}_{safe_file_name(file_name)}"
        try:
            stored = self.store.upload(path, content)
        except OSError as e:
            raise UpstreamError(f"Upload failed for {file_name}: {e}") from e

        logger.info("Document staged user=%s path=%s type=%s", user_id, stored, doc_type_value)
        return StagedDocument(storage_path=stored, file_name=file_name, doc_type=doc_type_value)

    def signed_url(self, storage_path: str, ttl_seconds: int | None = None) -> str:
        try:
            return self.store.signed_url(storage_path, ttl_seconds or self.ttl_seconds)
        except OSError as e:
            raise UpstreamError(f"Could not sign {storage_path}: {e}") from e
