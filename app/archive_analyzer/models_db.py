"""
SQLAlchemy database models for the Archive Analyzer application.

This module defines the ORM models for stored source files, analyzed
documents and the entities extracted from them.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class StoredFile(Base):
    """
    A source file uploaded for analysis.

    Holds the raw bytes so the pipeline can retrieve them by ID.
    """

    __tablename__ = "stored_files"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    filename: Mapped[str] = mapped_column(
        String(512),
        nullable=False,
    )
    media_type: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    size_bytes: Mapped[int] = mapped_column(
        nullable=False,
    )
    file_content: Mapped[bytes] = mapped_column(
        LargeBinary,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<StoredFile(id={self.id}, filename='{self.filename}', media_type='{self.media_type}')>"


class Document(Base):
    """
    A saved analysis of a source document.

    Created from a pipeline result when auto-save is requested.
    """

    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    title: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    file_name: Mapped[str] = mapped_column(
        String(512),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    image_url: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Normalized page image as a data URL",
    )
    document_type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    # Relationships
    entity_links: Mapped[list["DocumentEntity"]] = relationship(
        "DocumentEntity",
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DocumentEntity.position",
    )

    def __repr__(self) -> str:
        return f"<Document(id={self.id}, title='{self.title}', type={self.document_type})>"


class ArchiveEntity(Base):
    """
    A person, place, unit or other entity named in saved documents.

    Entities are shared: every document mentioning the same name and type
    links to one row.
    """

    __tablename__ = "entities"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    entity_type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        index=True,
    )
    date: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
        comment="ISO-8601 form for date entities",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    # Relationships
    document_links: Mapped[list["DocumentEntity"]] = relationship(
        "DocumentEntity",
        back_populates="entity",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<ArchiveEntity(id={self.id}, name='{self.name}', type={self.entity_type})>"


class DocumentEntity(Base):
    """Link between a document and an entity it mentions, in answer order."""

    __tablename__ = "document_entities"
    __table_args__ = (
        UniqueConstraint("document_id", "entity_id", name="uq_document_entity"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("entities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    # Relationships
    document: Mapped[Document] = relationship(
        "Document",
        back_populates="entity_links",
    )
    entity: Mapped[ArchiveEntity] = relationship(
        "ArchiveEntity",
        back_populates="document_links",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<DocumentEntity(document_id={self.document_id}, entity_id={self.entity_id})>"
