"""Celery workers for background anchoring."""

from proofvault.workers.celery_app import celery_app
from proofvault.workers.tasks import anchor_proof, refresh_pending_anchors

__all__ = ["celery_app", "anchor_proof", "refresh_pending_anchors"]
