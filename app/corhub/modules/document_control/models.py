"""
Document Control models.

- A Document is the registry entry (control number, type, review schedule).
- A DocumentVersion is one snapshot of it; the lifecycle status lives on the version.
- Exactly one version per document is current; older ones are kept, never deleted.
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.corhub.models import Base
from app.corhub.modules.document_control.lifecycle import DocumentStatus

logger = logging.getLogger(__name__)


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("company_id", "control_number", name="uq_document_control_number"),
        Index("idx_documents_company_type", "company_id", "document_type_code"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)

    # e.g. "NCCI-POL-001"
    control_number: Mapped[str] = mapped_column(String(64), nullable=False)
    document_type_code: Mapped[str] = mapped_column(String(8), nullable=False)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    department: Mapped[str | None] = mapped_column(String(128), nullable=True)

    effective_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    next_review_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    versions: Mapped[list["DocumentVersion"]] = relationship(
        "DocumentVersion",
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DocumentVersion.revision_number",
    )

    @property
    def current_version(self) -> "DocumentVersion | None":
        for v in self.versions:
            if v.is_current:
                return v
        return None

    @property
    def status(self) -> DocumentStatus | None:
        cur = self.current_version
        return cur.lifecycle_status if cur else None

    @property
    def stored_status(self) -> str | None:
        """Raw status string of the current version, shown as-is when unknown."""
        cur = self.current_version
        return cur.status if cur else None

    @property
    def version_number(self) -> str | None:
        cur = self.current_version
        return cur.version_number if cur else None


class DocumentVersion(Base):
    __tablename__ = "document_versions"
    __table_args__ = (
        UniqueConstraint("document_id", "revision_number", name="uq_document_version_revision"),
        Index("idx_document_versions_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)

    version_number: Mapped[str] = mapped_column(String(16), nullable=False)  # "major.minor"
    revision_number: Mapped[int] = mapped_column(Integer, nullable=False)  # 1, 2, 3 ... per document
    previous_version: Mapped[str | None] = mapped_column(String(16), nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default=DocumentStatus.DRAFT.value)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Opaque references; file bytes live in an external store.
    file_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    change_type: Mapped[str] = mapped_column(String(32), nullable=False, default="initial")
    change_summary: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    change_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    prepared_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    approved_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    document: Mapped[Document] = relationship(
        "Document",
        back_populates="versions",
        lazy="selectin",
    )

    @property
    def lifecycle_status(self) -> DocumentStatus | None:
        """Parsed status; None (logged) for a value outside the vocabulary, e.g. from an import."""
        try:
            return DocumentStatus(self.status)
        except ValueError:
            logger.warning("Unknown document status %r on version id=%s", self.status, self.id)
            return None


class DocumentControlSequence(Base):
    """Last issued control-number sequence per (company, document type)."""

    __tablename__ = "document_control_sequences"
    __table_args__ = (
        UniqueConstraint("company_id", "document_type_code", name="uq_document_control_sequence"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    document_type_code: Mapped[str] = mapped_column(String(8), nullable=False)
    current_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
