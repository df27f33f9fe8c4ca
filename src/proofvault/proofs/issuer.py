"""Proof issuance: size limits, hashing, idempotent vaulting."""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from starlette.concurrency import run_in_threadpool

from proofvault.config import Settings
from proofvault.db.models import Credential
from proofvault.db.store import DuplicateRecordError, RecordStore
from proofvault.errors import (
    CollaboratorError,
    NotFoundError,
    PayloadTooLarge,
    ValidationError,
    VaultDeleteError,
    VaultWriteError,
)
from proofvault.observability import log_event, short_hash
from proofvault.proofs.anchoring import AnchorSubmitter
from proofvault.proofs.canonical import is_proof_hash
from proofvault.proofs.payload import Payload, PayloadMetadata, StructuredPayload
from proofvault.storage.vault import Vault

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _needs_vaulting(credential: Credential) -> bool:
    """Failed records, and records stranded before their vault write, are written again."""
    return credential.status == "failed" or (
        credential.status == "uploaded" and not credential.storage_handle
    )


@dataclass(frozen=True)
class IssueResult:
    credential: Credential
    duplicate: bool

    @property
    def proof_hash(self) -> str:
        return self.credential.proof_hash

    @property
    def storage_handle(self) -> Optional[str]:
        return self.credential.storage_handle

    @property
    def status(self) -> str:
        return self.credential.status


def normalize_proof_hash(value: Any) -> str:
    """Lowercase and validate a caller-supplied proof hash."""

    candidate = value.strip().lower() if isinstance(value, str) else value
    if not is_proof_hash(candidate):
        raise ValidationError(
            "Invalid proof hash format",
            details={"expected": "64 hexadecimal characters"},
        )
    return candidate


class ProofIssuer:
    def __init__(
        self,
        store: RecordStore,
        vault: Vault,
        anchors: AnchorSubmitter,
        settings: Settings,
    ) -> None:
        self.store = store
        self.vault = vault
        self.anchors = anchors
        self.settings = settings
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, proof_hash: str) -> asyncio.Lock:
        lock = self._locks.get(proof_hash)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[proof_hash] = lock
        return lock

    def check_size(self, payload: Payload) -> None:
        """Reject oversized payloads before any collaborator is touched."""

        if isinstance(payload, StructuredPayload) and payload.from_field:
            size, limit = payload.canonical_size(), self.settings.max_field_bytes
            message = f"Structured data exceeds the {limit} byte limit"
        else:
            size, limit = payload.size, self.settings.max_file_bytes
            message = f"File exceeds the {limit} byte limit"
        if size > limit:
            raise PayloadTooLarge(message, details={"size": size, "limit": limit})

    async def issue(
        self,
        payload: Payload,
        metadata: PayloadMetadata,
        *,
        client_proof_hash: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> IssueResult:
        """Hash, vault and schedule anchoring for one payload.

        Re-uploading content that is already recorded returns the existing
        record with ``duplicate=True`` and writes nothing.

        Raises:
            PayloadTooLarge: the payload is over its size limit
            ValidationError: ``client_proof_hash`` disagrees with the server
            VaultWriteError: the vault rejected or could not take the payload
        """
        self.check_size(payload)
        proof_hash = payload.proof_hash()

        if client_proof_hash:
            if normalize_proof_hash(client_proof_hash) != proof_hash:
                raise ValidationError(
                    "Client proof hash does not match the computed proof hash",
                    details={"computed": proof_hash},
                )

        async with self._lock_for(proof_hash):
            credential = await run_in_threadpool(self.store.get_credential, proof_hash)
            if credential is not None and not _needs_vaulting(credential):
                log_event("credential.duplicate", proof_hash=short_hash(proof_hash))
                return IssueResult(credential, duplicate=True)

            if credential is None:
                try:
                    credential = await run_in_threadpool(
                        self.store.insert_credential,
                        proof_hash=proof_hash,
                        title=metadata.title or metadata.filename,
                        description=metadata.description,
                        file_name=metadata.filename,
                        content_type=metadata.content_type,
                        size_bytes=payload.size,
                        payload_kind=payload.kind,
                        status="uploaded",
                    )
                except DuplicateRecordError:
                    # another process won the insert
                    existing = await run_in_threadpool(self.store.get_credential, proof_hash)
                    return IssueResult(existing, duplicate=True)
                await self._audit(proof_hash, "created", actor, kind=payload.kind, size=payload.size)

            credential = await self._vault(credential, payload, metadata, actor)

        self.anchors.schedule(proof_hash)
        log_event("credential.issued", proof_hash=short_hash(proof_hash), kind=payload.kind)
        return IssueResult(credential, duplicate=False)

    async def _vault(
        self,
        credential: Credential,
        payload: Payload,
        metadata: PayloadMetadata,
        actor: Optional[str],
    ) -> Credential:
        proof_hash = credential.proof_hash
        vault_metadata = {
            "proof_hash": proof_hash,
            "filename": metadata.filename,
            "content_type": metadata.content_type,
            "payload_kind": payload.kind,
        }
        try:
            handle = await run_in_threadpool(self.vault.store, payload.raw, vault_metadata)
        except CollaboratorError as exc:
            logger.error("vault write failed for %s: %s", short_hash(proof_hash), exc)
            await run_in_threadpool(self.store.update_credential, proof_hash, status="failed")
            await self._audit(proof_hash, "vault_failed", actor, kind=exc.kind)
            raise VaultWriteError("Vault write failed", details={"kind": exc.kind}) from exc

        try:
            updated = await run_in_threadpool(
                self.store.update_credential, proof_hash, storage_handle=handle, status="vaulted"
            )
        except Exception:
            logger.exception("recording vault handle failed for %s", short_hash(proof_hash))
            await run_in_threadpool(self.store.update_credential, proof_hash, status="failed")
            raise
        await self._audit(proof_hash, "vaulted", actor, vault=self.vault.name)
        return updated

    async def _audit(self, proof_hash: str, action: str, actor: Optional[str], **metadata: Any) -> None:
        await run_in_threadpool(
            self.store.add_audit,
            "credential",
            proof_hash,
            action,
            actor=actor,
            proof_hash=proof_hash,
            metadata=metadata,
        )

    # -------------------------------------------------------------------------
    # Record management
    # -------------------------------------------------------------------------

    async def delete(self, record_handle: str, actor: Optional[str] = None) -> Credential:
        """Delete a credential by proof hash or by storage handle.

        The vault copy goes first; anchors are kept as history.
        """
        handle = (record_handle or "").strip()
        if is_proof_hash(handle.lower()):
            credential = await run_in_threadpool(self.store.get_credential, handle.lower())
        else:
            credential = await run_in_threadpool(self.store.find_credential_by_handle, handle)
        if credential is None:
            raise NotFoundError("Credential")

        if credential.storage_handle:
            try:
                await run_in_threadpool(self.vault.delete, credential.storage_handle)
            except CollaboratorError as exc:
                if exc.kind != "rejected":
                    logger.error("vault delete failed for %s: %s", short_hash(credential.proof_hash), exc)
                    raise VaultDeleteError("Vault delete failed", details={"kind": exc.kind}) from exc
                logger.warning("vault copy of %s already gone: %s", short_hash(credential.proof_hash), exc)

        await run_in_threadpool(self.store.delete_credential, credential.proof_hash)
        await self._audit(credential.proof_hash, "deleted", actor, file_name=credential.file_name)
        log_event("credential.deleted", proof_hash=short_hash(credential.proof_hash))
        return credential

    async def list_records(self, limit: int = 50, offset: int = 0) -> Dict[str, Any]:
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise ValidationError("offset must not be negative")
        items, total = await run_in_threadpool(self.store.list_credentials, limit, offset)
        return {
            "credentials": [credential.to_summary() for credential in items],
            "pagination": {
                "limit": limit,
                "offset": offset,
                "total": total,
                "has_more": offset + len(items) < total,
            },
        }

    async def audit_trail(self, proof_hash: str) -> List[Dict[str, Any]]:
        proof_hash = normalize_proof_hash(proof_hash)
        entries = await run_in_threadpool(self.store.audit_trail, proof_hash)
        if not entries:
            raise NotFoundError("Credential")
        return [entry.to_dict() for entry in entries]
