import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Table, Text
from sqlalchemy.orm import relationship

from catalog.db import Base


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Association table for many-to-many relationship between documents and tags
document_tags = Table(
    'document_tags',
    Base.metadata,
    Column('document_id', String(36), ForeignKey('documents.id', ondelete='CASCADE'), primary_key=True),
    Column('tag_id', String(36), ForeignKey('tags.id', ondelete='CASCADE'), primary_key=True),
    Column('created_at', DateTime(timezone=True), default=_utcnow),
)


class User(Base):
    """
    Catalog user - keyed by the identity provider's stable id.
    """
    __tablename__ = "users"

    id = Column(String(255), primary_key=True)
    username = Column(String(30), unique=True, nullable=False, index=True)
    display_name = Column(String(255), nullable=True)
    email = Column(String(320), nullable=True)
    avatar_url = Column(String(1000), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # Relationships
    documents = relationship("Document", back_populates="owner", cascade="all, delete-orphan", passive_deletes=True)
    tags = relationship("Tag", back_populates="creator", cascade="all, delete-orphan", passive_deletes=True)
    stars = relationship("DocumentStar", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)


class Document(Base):
    """
    Published document. The stars column caches the number of DocumentStar rows.
    """
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=_new_id)
    owner_id = Column(String(255), ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    title = Column(String(200), nullable=False, index=True)
    description = Column(Text, nullable=True)
    content = Column(Text, nullable=False)
    is_public = Column(Boolean, nullable=False, default=False, index=True)
    views = Column(Integer, nullable=False, default=0)
    downloads = Column(Integer, nullable=False, default=0)
    stars = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # Relationships
    owner = relationship("User", back_populates="documents")
    tags = relationship("Tag", secondary=document_tags, back_populates="documents", order_by="Tag.name")
    star_records = relationship("DocumentStar", back_populates="document", cascade="all, delete-orphan", passive_deletes=True)

    @property
    def tag_names(self):
        return [tag.name for tag in self.tags]


class Tag(Base):
    """
    Tags table - stores unique normalized tag names.
    """
    __tablename__ = "tags"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(50), unique=True, nullable=False, index=True)
    color = Column(String(20), nullable=True)
    creator_id = Column(String(255), ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # Relationships
    creator = relationship("User", back_populates="tags")
    documents = relationship("Document", secondary=document_tags, back_populates="tags")


class DocumentStar(Base):
    """
    One row per (document, user) star.
    """
    __tablename__ = "document_stars"

    document_id = Column(String(36), ForeignKey('documents.id', ondelete='CASCADE'), primary_key=True)
    user_id = Column(String(255), ForeignKey('users.id', ondelete='CASCADE'), primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    document = relationship("Document", back_populates="star_records")
    user = relationship("User", back_populates="stars")
