"""
Document table - every collection (prompts, datasets, teams, users) is stored
as JSON documents keyed by ``(collection, id)``.
"""
from typing import Any

from sqlalchemy import JSON, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class DocumentRecord(Base):
    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(64), primary_key=True)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # ISO-8601 UTC strings; lexical order is chronological order
    created_at: Mapped[str] = mapped_column(String(40), nullable=False)
    updated_at: Mapped[str] = mapped_column(String(40), nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (Index("ix_documents_collection_created", "collection", "created_at"),)

    def to_document(self) -> dict[str, Any]:
        return {
            **self.data,
            "id": self.id,
            "version": self.version,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
