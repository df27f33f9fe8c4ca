"""Celery tasks for anchoring.

Each worker process builds its own services once; every task drives the
async submitter to completion with ``asyncio.run``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from proofvault.bootstrap import Services, build_services
from proofvault.config import get_settings
from proofvault.observability import short_hash
from proofvault.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

_services: Optional[Services] = None


def worker_services() -> Services:
    global _services
    if _services is None:
        _services = build_services(get_settings())
    return _services


@celery_app.task(bind=True, name="proofvault.workers.tasks.anchor_proof")
def anchor_proof(self, proof_hash: str, anchor_id: Optional[str] = None) -> Dict[str, Any]:
    """Submit a proof hash and wait for it to settle.

    Args:
        self: Celery task instance
        proof_hash: Proof hash to anchor
        anchor_id: Existing pending anchor to reuse (retries)

    Returns:
        The settled anchor record
    """
    logger.info("task %s anchoring %s", self.request.id, short_hash(proof_hash))
    anchor = asyncio.run(worker_services().anchors.submit(proof_hash, anchor_id=anchor_id))
    return anchor.to_dict()


@celery_app.task(name="proofvault.workers.tasks.refresh_pending_anchors")
def refresh_pending_anchors(limit: int = 100) -> Dict[str, int]:
    """Re-poll blockchain anchors still pending (periodic beat task)."""
    summary = asyncio.run(worker_services().anchors.sweep_pending(limit=limit))
    if summary["checked"]:
        logger.info("pending anchor sweep: %s", summary)
    return summary
