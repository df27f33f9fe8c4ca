"""Vault backends for credential payloads."""

from __future__ import annotations

from proofvault.config import Settings
from proofvault.storage.s3_backend import S3Vault
from proofvault.storage.vault import LocalVault, Vault


def build_vault(settings: Settings) -> Vault:
    """Construct the vault selected by ``VAULT_BACKEND``."""
    if settings.vault_backend == "s3":
        return S3Vault(
            bucket=settings.s3_bucket,
            prefix=settings.s3_prefix,
            region=settings.aws_region,
            timeout_seconds=settings.vault_timeout_seconds,
        )
    return LocalVault(settings.vault_local_dir)


__all__ = ["Vault", "LocalVault", "S3Vault", "build_vault"]
