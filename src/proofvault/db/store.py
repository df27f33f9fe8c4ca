"""Repository over the credential, anchor and audit tables.

All methods are synchronous and open their own short transaction; the
async services call them through the threadpool.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from proofvault.db.models import Anchor, AuditLog, Credential, utcnow
from proofvault.db.session import build_engine, build_session_factory, init_db, session_scope


class DuplicateRecordError(Exception):
    """A credential with the same proof hash already exists."""


class RecordStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._factory = build_session_factory(engine)

    @classmethod
    def from_url(cls, database_url: str) -> "RecordStore":
        return cls(build_engine(database_url))

    def create_all(self) -> None:
        init_db(self.engine)

    def ping(self) -> bool:
        with session_scope(self._factory) as session:
            session.execute(Credential.__table__.select().limit(1))
        return True

    # -------------------------------------------------------------------------
    # Credentials
    # -------------------------------------------------------------------------

    def get_credential(self, proof_hash: str) -> Optional[Credential]:
        with session_scope(self._factory) as session:
            return session.get(Credential, proof_hash)

    def find_credential_by_handle(self, storage_handle: str) -> Optional[Credential]:
        with session_scope(self._factory) as session:
            return (
                session.query(Credential)
                .filter(Credential.storage_handle == storage_handle)
                .first()
            )

    def insert_credential(self, **fields: Any) -> Credential:
        """Insert a new credential row.

        Raises:
            DuplicateRecordError: the proof hash is already recorded
        """
        credential = Credential(**fields)
        try:
            with session_scope(self._factory) as session:
                session.add(credential)
        except IntegrityError as exc:
            raise DuplicateRecordError(fields.get("proof_hash")) from exc
        return credential

    def update_credential(self, proof_hash: str, **changes: Any) -> Optional[Credential]:
        with session_scope(self._factory) as session:
            credential = session.get(Credential, proof_hash)
            if credential is None:
                return None
            for key, value in changes.items():
                setattr(credential, key, value)
            credential.updated_at = utcnow()
            session.flush()
            return credential

    def delete_credential(self, proof_hash: str) -> bool:
        with session_scope(self._factory) as session:
            credential = session.get(Credential, proof_hash)
            if credential is None:
                return False
            session.delete(credential)
            return True

    def list_credentials(self, limit: int = 50, offset: int = 0) -> Tuple[List[Credential], int]:
        """Return one page of credentials, newest first, and the total count."""

        with session_scope(self._factory) as session:
            total = session.query(func.count(Credential.proof_hash)).scalar() or 0
            items = (
                session.query(Credential)
                .order_by(Credential.created_at.desc(), Credential.proof_hash)
                .offset(offset)
                .limit(limit)
                .all()
            )
            return items, int(total)

    # -------------------------------------------------------------------------
    # Anchors
    # -------------------------------------------------------------------------

    def create_anchor(self, proof_hash: str, **fields: Any) -> Anchor:
        anchor = Anchor(proof_hash=proof_hash, **fields)
        with session_scope(self._factory) as session:
            session.add(anchor)
            session.flush()
        return anchor

    def update_anchor(self, anchor_id: str, **changes: Any) -> Optional[Anchor]:
        with session_scope(self._factory) as session:
            anchor = session.get(Anchor, anchor_id)
            if anchor is None:
                return None
            for key, value in changes.items():
                setattr(anchor, key, value)
            anchor.updated_at = utcnow()
            session.flush()
            return anchor

    def settle_pending_anchor(self, anchor_id: str, **changes: Any) -> Optional[Anchor]:
        """Apply *changes* only while the anchor is still ``pending``.

        Returns ``None`` when another writer already settled the row.
        """
        with session_scope(self._factory) as session:
            result = session.execute(
                update(Anchor)
                .where(Anchor.anchor_id == anchor_id, Anchor.status == "pending")
                .values(updated_at=utcnow(), **changes)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            return session.get(Anchor, anchor_id)

    def claim_stale_anchor(self, anchor_id: str, stale_before: datetime) -> bool:
        """Claim a pending anchor that never got a tx id and has not moved since *stale_before*."""

        with session_scope(self._factory) as session:
            result = session.execute(
                update(Anchor)
                .where(
                    Anchor.anchor_id == anchor_id,
                    Anchor.status == "pending",
                    Anchor.tx_id.is_(None),
                    Anchor.updated_at < stale_before,
                )
                .values(updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def get_anchor(self, anchor_id: str) -> Optional[Anchor]:
        with session_scope(self._factory) as session:
            return session.get(Anchor, anchor_id)

    def get_anchor_by_tx(self, tx_id: str) -> Optional[Anchor]:
        with session_scope(self._factory) as session:
            return (
                session.query(Anchor)
                .filter(Anchor.tx_id == tx_id)
                .order_by(Anchor.created_at.desc())
                .first()
            )

    def latest_anchor(self, proof_hash: str) -> Optional[Anchor]:
        with session_scope(self._factory) as session:
            return (
                session.query(Anchor)
                .filter(Anchor.proof_hash == proof_hash)
                .order_by(Anchor.created_at.desc(), Anchor.anchor_id.desc())
                .first()
            )

    def list_anchors(self, proof_hash: str) -> List[Anchor]:
        with session_scope(self._factory) as session:
            return (
                session.query(Anchor)
                .filter(Anchor.proof_hash == proof_hash)
                .order_by(Anchor.created_at.desc(), Anchor.anchor_id.desc())
                .all()
            )

    def pending_anchors(self, limit: int = 100) -> List[Anchor]:
        with session_scope(self._factory) as session:
            return (
                session.query(Anchor)
                .filter(Anchor.status == "pending", Anchor.anchor_type == "blockchain")
                .order_by(Anchor.created_at)
                .limit(limit)
                .all()
            )

    def anchor_stats(self) -> Dict[str, Any]:
        with session_scope(self._factory) as session:
            by_status = dict(
                session.query(Anchor.status, func.count(Anchor.anchor_id))
                .group_by(Anchor.status)
                .all()
            )
            by_type = dict(
                session.query(Anchor.anchor_type, func.count(Anchor.anchor_id))
                .group_by(Anchor.anchor_type)
                .all()
            )
        return {
            "total": sum(by_status.values()),
            "by_status": {status: int(count) for status, count in by_status.items()},
            "by_type": {kind: int(count) for kind, count in by_type.items()},
        }

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    def add_audit(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        *,
        actor: Optional[str] = None,
        proof_hash: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        entry = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor=actor,
            proof_hash=proof_hash,
            metadata_json=metadata or {},
        )
        with session_scope(self._factory) as session:
            session.add(entry)
            session.flush()
        return entry

    def audit_trail(self, proof_hash: str) -> List[AuditLog]:
        with session_scope(self._factory) as session:
            return (
                session.query(AuditLog)
                .filter(AuditLog.proof_hash == proof_hash)
                .order_by(AuditLog.created_at, AuditLog.id)
                .all()
            )
