"""Anchor submission, confirmation polling and fallback.

An upload never waits on the chain: the issuer hands the proof hash to
:meth:`AnchorSubmitter.schedule`, which runs :meth:`AnchorSubmitter.submit`
either as an in-process task or on a Celery worker. Submission failures
settle the anchor according to ``ANCHOR_FALLBACK_POLICY``; they are never
raised to the uploader.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict, Optional, Set

from starlette.concurrency import run_in_threadpool

from proofvault.chain.rpc_client import AnchorRpc, Receipt
from proofvault.config import (
    DISPATCH_CELERY,
    FALLBACK_ANY_ERROR,
    FALLBACK_UNSUPPORTED_ONLY,
    Settings,
)
from proofvault.db.models import Anchor, utcnow
from proofvault.db.store import RecordStore
from proofvault.errors import AnchorSubmissionError, CollaboratorError, NotFoundError, ValidationError
from proofvault.observability import log_event, short_hash
from proofvault.proofs.canonical import fallback_anchor_id

logger = logging.getLogger(__name__)

BLOCKCHAIN = "blockchain"
PROOF_HASH_VERIFICATION = "proof_hash_verification"


class AnchorSubmitter:
    def __init__(self, store: RecordStore, rpc: Optional[AnchorRpc], settings: Settings) -> None:
        self.store = store
        self.rpc = rpc
        self.settings = settings
        self._tasks: Set[asyncio.Task] = set()

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def schedule(self, proof_hash: str, anchor_id: Optional[str] = None) -> None:
        """Start anchoring *proof_hash* without waiting for it."""

        if self.settings.anchor_dispatch == DISPATCH_CELERY:
            from proofvault.workers.tasks import anchor_proof

            try:
                anchor_proof.delay(proof_hash, anchor_id)
                return
            except Exception:  # broker errors vary by transport
                logger.exception("celery dispatch failed for %s; anchoring in-process", short_hash(proof_hash))

        task = asyncio.get_running_loop().create_task(self._run(proof_hash, anchor_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, proof_hash: str, anchor_id: Optional[str]) -> None:
        try:
            await self.submit(proof_hash, anchor_id=anchor_id)
        except asyncio.CancelledError:
            logger.info("anchoring cancelled for %s", short_hash(proof_hash))
            raise
        except Exception:
            logger.exception("anchoring crashed for %s", short_hash(proof_hash))

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every in-process anchoring task to finish."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    def _should_fallback(self, error: Optional[CollaboratorError]) -> bool:
        policy = self.settings.anchor_fallback_policy
        if policy == FALLBACK_ANY_ERROR:
            return True
        if policy == FALLBACK_UNSUPPORTED_ONLY:
            return error is None or error.kind == "unsupported"
        return False

    async def _update(self, anchor_id: str, **changes: Any) -> Anchor:
        anchor = await run_in_threadpool(self.store.update_anchor, anchor_id, **changes)
        if anchor is None:
            raise NotFoundError("Anchor")
        return anchor

    async def _settle(self, anchor: Anchor, **changes: Any) -> Optional[Anchor]:
        """Settle a pending anchor; ``None`` if another writer got there first."""
        settled = await run_in_threadpool(self.store.settle_pending_anchor, anchor.anchor_id, **changes)
        if settled is None:
            logger.info("anchor %s already settled elsewhere", anchor.anchor_id)
        return settled

    async def _current(self, anchor: Anchor) -> Anchor:
        return await run_in_threadpool(self.store.get_anchor, anchor.anchor_id) or anchor

    async def _audit(self, anchor: Anchor, action: str, **metadata: Any) -> None:
        await run_in_threadpool(
            self.store.add_audit,
            "anchor",
            anchor.anchor_id,
            action,
            proof_hash=anchor.proof_hash,
            metadata=metadata,
        )

    async def _send(self, proof_hash: str) -> str:
        if self.rpc is None:
            raise AnchorSubmissionError("no anchoring RPC configured")
        try:
            return await self.rpc.submit(f"0x{proof_hash}")
        except CollaboratorError as exc:
            raise AnchorSubmissionError(str(exc)) from exc

    async def submit(self, proof_hash: str, anchor_id: Optional[str] = None) -> Anchor:
        """Anchor *proof_hash* and return the settled (or pending) record.

        Uses the pending record *anchor_id* when a retry already created
        one; otherwise a new record is appended.
        """
        if anchor_id is not None:
            anchor = await run_in_threadpool(self.store.get_anchor, anchor_id)
            if anchor is None:
                raise NotFoundError("Anchor")
        else:
            anchor = await run_in_threadpool(
                self.store.create_anchor, proof_hash, anchor_type=BLOCKCHAIN, status="pending"
            )
        log_event("anchor.submit", proof_hash=short_hash(proof_hash), anchor_id=anchor.anchor_id)

        try:
            tx_id = await self._send(proof_hash)
        except AnchorSubmissionError as exc:
            cause = exc.__cause__ if isinstance(exc.__cause__, CollaboratorError) else None
            return await self._settle_submission_failure(anchor, cause)

        anchor = await self._update(anchor.anchor_id, tx_id=tx_id)
        await self._audit(anchor, "anchor_submitted", tx_id=tx_id)
        return await self.confirm(anchor)

    async def _settle_submission_failure(
        self, anchor: Anchor, error: Optional[CollaboratorError]
    ) -> Anchor:
        reason = error.kind if error is not None else "not_configured"
        if error is not None:
            logger.warning(
                "anchor submission failed for %s (%s): %s",
                short_hash(anchor.proof_hash),
                error.kind,
                error.detail,
            )

        if self._should_fallback(error):
            anchor = await self._update(
                anchor.anchor_id,
                anchor_type=PROOF_HASH_VERIFICATION,
                status="verified",
                tx_id=fallback_anchor_id(anchor.proof_hash),
                confirmed_at=utcnow(),
                node_response={"fallback_reason": reason},
            )
            await self._audit(anchor, "anchor_fallback", reason=reason)
            log_event("anchor.fallback", proof_hash=short_hash(anchor.proof_hash), reason=reason)
            return anchor

        anchor = await self._update(
            anchor.anchor_id, status="failed", error=f"submission failed: {reason}"
        )
        await self._audit(anchor, "anchor_failed", reason=reason)
        return anchor

    # -------------------------------------------------------------------------
    # Confirmation
    # -------------------------------------------------------------------------

    async def confirm(self, anchor: Anchor) -> Anchor:
        """Poll for a receipt until the anchor settles or attempts run out."""

        attempts = self.settings.anchor_poll_attempts
        for attempt in range(1, attempts + 1):
            try:
                receipt = await self.rpc.get_receipt(anchor.tx_id)
            except CollaboratorError as exc:
                logger.warning(
                    "confirmation attempt %d/%d for %s failed: %s",
                    attempt,
                    attempts,
                    anchor.tx_id,
                    exc,
                )
                receipt = None
            if receipt is not None:
                return await self._settle_receipt(anchor, receipt, attempt)
            if attempt < attempts:
                await asyncio.sleep(self.settings.anchor_poll_delay_seconds)

        message = f"confirmation timeout after {attempts} attempts"
        settled = await self._settle(anchor, status="failed", attempts=attempts, error=message)
        if settled is None:
            return await self._current(anchor)
        anchor = settled
        await self._audit(anchor, "anchor_failed", reason="timeout", attempts=attempts)
        log_event("anchor.timeout", level=logging.WARNING, anchor_id=anchor.anchor_id, tx_id=anchor.tx_id)
        return anchor

    async def _settle_receipt(self, anchor: Anchor, receipt: Receipt, attempts: int) -> Anchor:
        if not receipt.succeeded:
            settled = await self._settle(
                anchor,
                status="failed",
                block_height=receipt.block_height,
                attempts=attempts,
                error="transaction reverted",
                node_response=receipt.raw,
            )
            if settled is None:
                return await self._current(anchor)
            anchor = settled
            await self._audit(anchor, "anchor_failed", reason="reverted", block_height=receipt.block_height)
            return anchor

        settled = await self._settle(
            anchor,
            status="confirmed",
            block_height=receipt.block_height,
            confirmed_at=utcnow(),
            attempts=attempts,
            error=None,
            node_response=receipt.raw,
        )
        if settled is None:
            return await self._current(anchor)
        anchor = settled
        credential = await run_in_threadpool(self.store.get_credential, anchor.proof_hash)
        if credential is not None and credential.status == "vaulted":
            await run_in_threadpool(self.store.update_credential, anchor.proof_hash, status="anchored")
        await self._audit(anchor, "anchor_confirmed", tx_id=anchor.tx_id, block_height=receipt.block_height)
        log_event(
            "anchor.confirmed",
            proof_hash=short_hash(anchor.proof_hash),
            tx_id=anchor.tx_id,
            block_height=receipt.block_height,
        )
        return anchor

    async def refresh(self, anchor: Anchor) -> Anchor:
        """Read one receipt for a pending blockchain anchor.

        Raises:
            CollaboratorError: the receipt lookup failed
        """
        if (
            anchor.status != "pending"
            or anchor.anchor_type != BLOCKCHAIN
            or not anchor.tx_id
            or self.rpc is None
        ):
            return anchor
        receipt = await self.rpc.get_receipt(anchor.tx_id)
        attempts = (anchor.attempts or 0) + 1
        if receipt is None:
            return await self._update(anchor.anchor_id, attempts=attempts)
        return await self._settle_receipt(anchor, receipt, attempts)

    async def sweep_pending(self, limit: int = 100) -> Dict[str, int]:
        """Refresh anchors left pending, e.g. by a restart mid-confirmation."""

        pending = await run_in_threadpool(self.store.pending_anchors, limit)
        stale_before = utcnow() - timedelta(seconds=self.settings.anchor_stale_after_seconds)
        summary = {"checked": 0, "settled": 0, "errors": 0}
        for anchor in pending:
            if not anchor.tx_id:
                # a fresh record may still have its first submission in flight
                claimed = await run_in_threadpool(self.store.claim_stale_anchor, anchor.anchor_id, stale_before)
                if not claimed:
                    continue
                summary["checked"] += 1
                settled = await self.submit(anchor.proof_hash, anchor_id=anchor.anchor_id)
            else:
                summary["checked"] += 1
                try:
                    settled = await self.refresh(anchor)
                except CollaboratorError as exc:
                    summary["errors"] += 1
                    logger.warning("sweep refresh failed for %s: %s", anchor.anchor_id, exc)
                    continue
            if settled.status != "pending":
                summary["settled"] += 1
        return summary

    # -------------------------------------------------------------------------
    # Operator actions
    # -------------------------------------------------------------------------

    async def retry(self, anchor_id: str) -> Anchor:
        """Append a fresh anchor for the proof hash of a failed anchor."""

        previous = await run_in_threadpool(self.store.get_anchor, anchor_id)
        if previous is None:
            raise NotFoundError("Anchor")
        if previous.status != "failed":
            raise ValidationError(
                "Only failed anchors can be retried",
                details={"anchor_id": anchor_id, "status": previous.status},
            )
        anchor = await run_in_threadpool(
            self.store.create_anchor, previous.proof_hash, anchor_type=BLOCKCHAIN, status="pending"
        )
        await self._audit(anchor, "anchor_retry", previous_anchor_id=anchor_id)
        self.schedule(anchor.proof_hash, anchor_id=anchor.anchor_id)
        return anchor

    async def get(self, anchor_id: str) -> Anchor:
        anchor = await run_in_threadpool(self.store.get_anchor, anchor_id)
        if anchor is None:
            raise NotFoundError("Anchor")
        return anchor

    async def get_by_tx(self, tx_id: str) -> Anchor:
        anchor = await run_in_threadpool(self.store.get_anchor_by_tx, tx_id)
        if anchor is None:
            raise NotFoundError("Anchor")
        return anchor

    async def pending(self, limit: int = 100) -> list:
        return await run_in_threadpool(self.store.pending_anchors, limit)

    async def stats(self) -> Dict[str, Any]:
        stats = await run_in_threadpool(self.store.anchor_stats)
        stats["in_flight"] = self.in_flight
        stats["fallback_policy"] = self.settings.anchor_fallback_policy
        stats["rpc_configured"] = self.rpc is not None
        return stats

    def explorer_url(self, anchor: Anchor) -> Optional[str]:
        if anchor.anchor_type != BLOCKCHAIN or not anchor.tx_id:
            return None
        return self.settings.explorer_tx_url(anchor.tx_id)
