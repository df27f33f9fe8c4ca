"""Vault contract and the filesystem vault used for local development.

A vault owns payload bytes. Callers keep only the opaque handle returned
by :meth:`Vault.store`; every failure surfaces as ``CollaboratorError``.
"""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Dict, Optional, Protocol

from proofvault.errors import CollaboratorError

logger = logging.getLogger(__name__)


class Vault(Protocol):
    """Encrypted payload storage with an opaque-handle contract."""

    name: str

    def store(self, data: bytes, metadata: Dict[str, str]) -> str:
        ...

    def retrieve(self, handle: str) -> bytes:
        ...

    def delete(self, handle: str) -> None:
        ...

    def ping(self) -> bool:
        ...


class LocalVault:
    """Filesystem vault: one blob plus one metadata sidecar per handle."""

    name = "local"

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _paths(self, handle: str) -> tuple[Path, Path]:
        # handles are generated here; anything else is not ours
        try:
            uuid.UUID(hex=handle)
        except ValueError as exc:
            raise CollaboratorError("rejected", f"malformed vault handle {handle!r}") from exc
        return self.root / f"{handle}.bin", self.root / f"{handle}.meta.json"

    def store(self, data: bytes, metadata: Dict[str, str]) -> str:
        handle = uuid.uuid4().hex
        blob, meta = self._paths(handle)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            blob.write_bytes(data)
            meta.write_text(json.dumps(metadata, sort_keys=True), encoding="utf-8")
        except OSError as exc:
            raise CollaboratorError("unavailable", str(exc)) from exc
        logger.debug("local vault stored %s (%d bytes)", handle, len(data))
        return handle

    def retrieve(self, handle: str) -> bytes:
        blob, _ = self._paths(handle)
        try:
            return blob.read_bytes()
        except FileNotFoundError as exc:
            raise CollaboratorError("rejected", f"unknown vault handle {handle}") from exc
        except OSError as exc:
            raise CollaboratorError("unavailable", str(exc)) from exc

    def metadata(self, handle: str) -> Optional[Dict[str, str]]:
        _, meta = self._paths(handle)
        if not meta.exists():
            return None
        return json.loads(meta.read_text(encoding="utf-8"))

    def delete(self, handle: str) -> None:
        for path in self._paths(handle):
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                raise CollaboratorError("unavailable", str(exc)) from exc

    def ping(self) -> bool:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return self.root.is_dir()
