from __future__ import annotations

from sqlalchemy import select

from pilgrim_booking.db.enums import DocumentType
from pilgrim_booking.db.models import Document
from pilgrim_booking.db.repositories.base import BaseRepository, normalize_enum_value
from pilgrim_booking.utils.errors import NotFoundError


def _normalize_document_type(doc_type: DocumentType | str) -> str:
    return normalize_enum_value(DocumentType, doc_type, "document type")


class DocumentRepository(BaseRepository):
    def create(
        self,
        *,
        user_id: str,
        storage_path: str,
        file_name: str,
        doc_type: DocumentType | str,
        booking_id: str | None = None,
    ) -> Document:
        document = Document(
            user_id=user_id,
            booking_id=booking_id,
            storage_path=storage_path,
            file_name=file_name,
            doc_type=_normalize_document_type(doc_type),
        )
        self.session.add(document)
        self.session.flush()
        return document

    def get(self, document_id: str) -> Document:
        document = self.session.get(Document, document_id)
        if not document:
            raise NotFoundError(f"Document {document_id} not found")
        return document

    def find_by_path(self, storage_path: str) -> Document | None:
        stmt = select(Document).where(Document.storage_path == storage_path)
        return self.session.scalars(stmt).first()

    def list_by_booking(self, booking_id: str) -> list[Document]:
        stmt = (
            select(Document)
            .where(Document.booking_id == booking_id)
            .order_by(Document.uploaded_at.desc())
        )
        return list(self.session.scalars(stmt).all())

    def list_by_user(self, user_id: str, *, limit: int = 200) -> list[Document]:
        stmt = (
            select(Document)
            .where(Document.user_id == user_id)
            .order_by(Document.uploaded_at.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def delete(self, document_id: str) -> None:
        document = self.get(document_id)
        self.session.delete(document)
        self.session.flush()
