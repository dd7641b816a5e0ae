"""
SQLAlchemy ORM models for FlowInvest records.
"""

from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Record(Base):
    """A JSON document owned by one user, grouped by collection (investments, user_profiles, ...)."""

    __tablename__ = "records"
    __table_args__ = (
        Index("idx_records_collection_owner", "collection", "owner_id"),
        Index("idx_records_created_at", text("created_at DESC")),
    )

    id = Column(Integer, primary_key=True)
    collection = Column(String(50), nullable=False)
    owner_id = Column(String(128), nullable=False)
    payload = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
