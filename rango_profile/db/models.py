"""SQLAlchemy models for saved resources and sessions."""
from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    JSON,
    func,
)

from .session import Base


class SavedResource(Base):
    """One saved address or payment instrument. ``data`` holds the kind fields."""

    __tablename__ = "saved_resources"
    __table_args__ = (Index("ix_saved_resources_partition", "owner_id", "kind", "is_default"),)

    id = Column(String(64), primary_key=True)
    owner_id = Column(String(255), nullable=False)
    kind = Column(String(32), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    is_default = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class ResourcePartition(Base):
    """Head row per (owner, kind); bumped by every default-flag move."""

    __tablename__ = "resource_partitions"

    owner_id = Column(String(255), primary_key=True)
    kind = Column(String(32), primary_key=True)
    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class UserSession(Base):
    __tablename__ = "sessions"

    token = Column(String(128), primary_key=True)
    owner_id = Column(String(255), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
