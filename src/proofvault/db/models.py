"""SQLAlchemy models for credential, anchor and audit records.

- Credentials are keyed by their proof hash; payload bytes live in the vault
  and are referenced by ``storage_handle``.
- Anchors are append-only and keyed by proof hash without a cascading
  foreign key, so the anchoring history outlives a deleted credential.
- Audit logs record every lifecycle transition.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")

CREDENTIAL_STATUSES = ("uploaded", "vaulted", "anchored", "failed")
ANCHOR_TYPES = ("blockchain", "proof_hash_verification")
ANCHOR_STATUSES = ("pending", "confirmed", "failed", "verified")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_anchor_id() -> str:
    return uuid.uuid4().hex


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class Credential(Base):
    """Metadata for one vaulted upload."""

    __tablename__ = "credentials"

    proof_hash = Column(String(64), primary_key=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    file_name = Column(String(512), nullable=False)
    content_type = Column(String(255), nullable=False)
    size_bytes = Column(Integer, nullable=False)
    payload_kind = Column(String(16), nullable=False)  # structured | binary

    storage_handle = Column(String(512), nullable=True, index=True)
    status = Column(
        Enum(*CREDENTIAL_STATUSES, name="credential_status_enum"),
        nullable=False,
        default="uploaded",
    )

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (Index("idx_credentials_status_created", "status", "created_at"),)

    def to_summary(self) -> Dict[str, Any]:
        """Metadata-only view; never includes payload content."""

        return {
            "proof_hash": self.proof_hash,
            "title": self.title,
            "description": self.description,
            "file_name": self.file_name,
            "file_type": self.content_type,
            "size_bytes": self.size_bytes,
            "payload_kind": self.payload_kind,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Anchor(Base):
    """One attempt at anchoring a proof hash."""

    __tablename__ = "anchors"

    anchor_id = Column(String(32), primary_key=True, default=new_anchor_id)
    proof_hash = Column(String(64), nullable=False, index=True)
    anchor_type = Column(
        Enum(*ANCHOR_TYPES, name="anchor_type_enum"),
        nullable=False,
        default="blockchain",
    )
    # transaction id, or the derived fallback hash for proof_hash_verification
    tx_id = Column(String(130), nullable=True, index=True)
    status = Column(
        Enum(*ANCHOR_STATUSES, name="anchor_status_enum"),
        nullable=False,
        default="pending",
    )
    block_height = Column(BigInteger, nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    node_response = Column(JSONType, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_anchors_hash_created", "proof_hash", "created_at"),
        Index("idx_anchors_status", "status"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.anchor_id,
            "proof_hash": self.proof_hash,
            "anchor_type": self.anchor_type,
            "tx_hash": self.tx_id,
            "status": self.status,
            "block_height": self.block_height,
            "tx_time": _iso(self.confirmed_at),
            "attempts": self.attempts,
            "error": self.error,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(32), nullable=False)  # credential | anchor
    entity_id = Column(String(64), nullable=False)
    action = Column(String(32), nullable=False)
    actor = Column(String(255), nullable=True)
    proof_hash = Column(String(64), nullable=True, index=True)
    metadata_json = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("idx_audit_logs_entity", "entity_type", "entity_id"),)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "proof_hash": self.proof_hash,
            "metadata": self.metadata_json or {},
            "created_at": _iso(self.created_at),
        }
