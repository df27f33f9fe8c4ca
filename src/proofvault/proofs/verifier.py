"""Proof verification and vault integrity checks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from starlette.concurrency import run_in_threadpool

from proofvault.config import Settings
from proofvault.db.models import Anchor, utcnow
from proofvault.db.store import RecordStore
from proofvault.errors import CollaboratorError, NotFoundError, ValidationError, VaultReadError
from proofvault.observability import log_event, short_hash
from proofvault.proofs.anchoring import BLOCKCHAIN, AnchorSubmitter
from proofvault.proofs.issuer import normalize_proof_hash
from proofvault.proofs.payload import payload_from_stored
from proofvault.storage.vault import Vault

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    exists: bool
    proof_hash: str
    credential: Optional[Dict[str, Any]] = None
    anchoring: Optional[Dict[str, Any]] = None
    verification: Optional[Dict[str, Any]] = None

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"exists": self.exists, "proofHash": self.proof_hash}
        if self.exists:
            body["credential"] = self.credential
            body["anchoring"] = self.anchoring
            body["verification"] = self.verification
        return body


class ProofVerifier:
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

    async def verify(self, proof_hash: str) -> VerificationResult:
        """Look up a proof hash; an unknown hash is ``exists=False``, not an error."""

        proof_hash = normalize_proof_hash(proof_hash)
        credential = await run_in_threadpool(self.store.get_credential, proof_hash)
        if credential is None:
            log_event("verify.miss", proof_hash=short_hash(proof_hash))
            return VerificationResult(exists=False, proof_hash=proof_hash)

        anchors = await run_in_threadpool(self.store.list_anchors, proof_hash)
        latest: Optional[Anchor] = anchors[0] if anchors else None

        if (
            latest is not None
            and latest.status == "pending"
            and self.settings.verify_refresh_pending
        ):
            try:
                refreshed = await self.anchors.refresh(latest)
            except CollaboratorError as exc:
                logger.warning("receipt refresh failed for %s: %s", latest.anchor_id, exc)
            else:
                if refreshed.status != latest.status:
                    credential = await run_in_threadpool(self.store.get_credential, proof_hash)
                latest = refreshed

        blockchain_verified = (
            latest is not None and latest.anchor_type == BLOCKCHAIN and latest.status == "confirmed"
        )
        anchoring = None
        if latest is not None:
            anchoring = {
                "count": len(anchors),
                "latest": {**latest.to_dict(), "explorer_url": self.anchors.explorer_url(latest)},
            }
        log_event("verify.hit", proof_hash=short_hash(proof_hash), blockchain_verified=blockchain_verified)
        return VerificationResult(
            exists=True,
            proof_hash=proof_hash,
            credential=credential.to_summary(),
            anchoring=anchoring,
            verification={
                "proof_hash_matches": True,
                "blockchain_verified": blockchain_verified,
                "anchor_type": latest.anchor_type if latest is not None else None,
            },
        )

    async def check_integrity(self, proof_hash: str) -> Dict[str, Any]:
        """Re-read the vaulted payload and confirm it still hashes to *proof_hash*.

        The payload itself is never returned.
        """
        proof_hash = normalize_proof_hash(proof_hash)
        credential = await run_in_threadpool(self.store.get_credential, proof_hash)
        if credential is None:
            raise NotFoundError("Credential")
        if not credential.storage_handle:
            raise ValidationError(
                "Credential has no vaulted payload", details={"status": credential.status}
            )

        try:
            data = await run_in_threadpool(self.vault.retrieve, credential.storage_handle)
        except CollaboratorError as exc:
            logger.error("vault read failed for %s: %s", short_hash(proof_hash), exc)
            raise VaultReadError("Vault read failed", details={"kind": exc.kind}) from exc

        recomputed = payload_from_stored(credential.payload_kind, data).proof_hash()
        intact = recomputed == proof_hash
        if not intact:
            logger.error("integrity mismatch for %s: vault holds %s", short_hash(proof_hash), short_hash(recomputed))
        return {
            "proofHash": proof_hash,
            "intact": intact,
            "recomputedHash": recomputed,
            "payloadKind": credential.payload_kind,
            "sizeBytes": len(data),
            "checkedAt": utcnow().isoformat(),
        }
