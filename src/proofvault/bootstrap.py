"""Service construction shared by the API, the Celery worker and the CLI.

Nothing here runs at import time; each entrypoint decides when the
collaborators are built and whether tables are created.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from proofvault.chain.rpc_client import AnchorRpc, JsonRpcAnchorClient
from proofvault.config import Settings
from proofvault.db.store import RecordStore
from proofvault.proofs.anchoring import AnchorSubmitter
from proofvault.proofs.issuer import ProofIssuer
from proofvault.proofs.verifier import ProofVerifier
from proofvault.storage import build_vault
from proofvault.storage.vault import Vault

LOGGER = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    store: RecordStore
    vault: Vault
    rpc: Optional[AnchorRpc]
    anchors: AnchorSubmitter
    issuer: ProofIssuer
    verifier: ProofVerifier

    async def close(self) -> None:
        await self.anchors.shutdown()
        self.store.engine.dispose()


def build_rpc(settings: Settings) -> Optional[AnchorRpc]:
    if not settings.anchor_rpc_url:
        return None
    return JsonRpcAnchorClient(
        settings.anchor_rpc_url,
        submit_method=settings.anchor_rpc_submit_method,
        receipt_method=settings.anchor_rpc_receipt_method,
        timeout_seconds=settings.anchor_rpc_timeout_seconds,
    )


def build_services(
    settings: Settings,
    *,
    vault: Optional[Vault] = None,
    rpc: Optional[AnchorRpc] = None,
    store: Optional[RecordStore] = None,
    create_tables: bool = True,
) -> Services:
    """Wire the store, collaborators and proof services together.

    ``vault``, ``rpc`` and ``store`` override the configured collaborators,
    which is how tests inject fakes.
    """
    store = store or RecordStore.from_url(settings.database_url)
    if create_tables:
        store.create_all()
    vault = vault if vault is not None else build_vault(settings)
    rpc = rpc if rpc is not None else build_rpc(settings)

    anchors = AnchorSubmitter(store, rpc, settings)
    issuer = ProofIssuer(store, vault, anchors, settings)
    verifier = ProofVerifier(store, vault, anchors, settings)

    LOGGER.info(
        "proofvault services ready (vault=%s, rpc=%s, fallback=%s, dispatch=%s)",
        getattr(vault, "name", type(vault).__name__),
        "configured" if rpc is not None else "none",
        settings.anchor_fallback_policy,
        settings.anchor_dispatch,
    )
    return Services(
        settings=settings,
        store=store,
        vault=vault,
        rpc=rpc,
        anchors=anchors,
        issuer=issuer,
        verifier=verifier,
    )
