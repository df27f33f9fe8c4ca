"""Error taxonomy shared by the proof services and the HTTP layer."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ProofVaultError(Exception):
    """Base class for errors rendered to API callers."""

    code = "INTERNAL_ERROR"
    status_code = 500
    public_message: Optional[str] = None

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "error": self.code,
            "message": self.public_message or self.message,
        }
        if self.details is not None and self.public_message is None:
            body["details"] = self.details
        return body


class ValidationError(ProofVaultError):
    code = "VALIDATION_ERROR"
    status_code = 400


class PayloadTooLarge(ValidationError):
    code = "PAYLOAD_TOO_LARGE"
    status_code = 413


class SerializationError(ValidationError):
    """Structured payload could not be canonicalized."""

    code = "SERIALIZATION_ERROR"


class NotFoundError(ProofVaultError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str = "Resource", details: Any = None) -> None:
        super().__init__(f"{resource} not found", details)


class VaultWriteError(ProofVaultError):
    code = "VAULT_WRITE_ERROR"
    status_code = 502
    public_message = "Failed to store credential in vault"


class VaultReadError(ProofVaultError):
    code = "VAULT_READ_ERROR"
    status_code = 502
    public_message = "Failed to read credential from vault"


class VaultDeleteError(ProofVaultError):
    code = "VAULT_DELETE_ERROR"
    status_code = 502
    public_message = "Failed to delete credential from vault"


class AnchorSubmissionError(Exception):
    """Blockchain anchoring failed; absorbed by the submitter, never rendered."""


class ConfigError(Exception):
    """Invalid service configuration detected at startup."""


class CollaboratorError(Exception):
    """Normalized failure raised at an external collaborator boundary.

    ``kind`` is one of ``timeout``, ``unavailable``, ``rejected``,
    ``unsupported`` or ``invalid_response``; ``detail`` is kept for
    server-side logs only.
    """

    KINDS = ("timeout", "unavailable", "rejected", "unsupported", "invalid_response")

    def __init__(self, kind: str, detail: str = "") -> None:
        if kind not in self.KINDS:
            kind = "invalid_response"
        super().__init__(f"{kind}: {detail}" if detail else kind)
        self.kind = kind
        self.detail = detail

    @property
    def transient(self) -> bool:
        return self.kind in ("timeout", "unavailable")
