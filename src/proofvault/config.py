"""Environment-driven service configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional, Tuple

from proofvault.errors import ConfigError

FALLBACK_ANY_ERROR = "any_error"
FALLBACK_UNSUPPORTED_ONLY = "unsupported_only"
FALLBACK_DISABLED = "disabled"
FALLBACK_POLICIES = (FALLBACK_ANY_ERROR, FALLBACK_UNSUPPORTED_ONLY, FALLBACK_DISABLED)

DISPATCH_INLINE = "inline"
DISPATCH_CELERY = "celery"

DEFAULT_MAX_FILE_BYTES = 10 * 1024 * 1024
DEFAULT_MAX_FIELD_BYTES = 4096


def _int(env: Mapping[str, str], key: str, default: int, minimum: int = 0) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{key} must be >= {minimum}")
    return value


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ConfigError(f"{key} must not be negative")
    return value


def _bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _choice(env: Mapping[str, str], key: str, default: str, choices: Tuple[str, ...]) -> str:
    value = (env.get(key) or default).strip().lower()
    if value not in choices:
        raise ConfigError(f"{key} must be one of {', '.join(choices)}; got {value!r}")
    return value


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///data/proofvault.db"

    vault_backend: str = "local"
    vault_local_dir: str = "data/vault"
    s3_bucket: str = "proofvault-credentials"
    s3_prefix: str = "credentials"
    aws_region: str = "us-east-1"
    vault_timeout_seconds: float = 30.0

    anchor_rpc_url: Optional[str] = None
    anchor_rpc_submit_method: str = "nil_sendRawTransaction"
    anchor_rpc_receipt_method: str = "nil_getTransactionReceipt"
    anchor_rpc_timeout_seconds: float = 30.0
    anchor_poll_attempts: int = 30
    anchor_poll_delay_seconds: float = 2.0
    anchor_fallback_policy: str = FALLBACK_ANY_ERROR
    anchor_dispatch: str = DISPATCH_INLINE
    anchor_explorer_url: str = "https://testnet.nillion.explorers.guru"

    verify_refresh_pending: bool = True
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES
    max_field_bytes: int = DEFAULT_MAX_FIELD_BYTES

    celery_broker_url: str = "redis://localhost:6379/1"
    celery_result_backend: str = "redis://localhost:6379/2"

    cors_origins: Tuple[str, ...] = field(default_factory=lambda: ("*",))
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        defaults = cls()
        origins = tuple(
            origin.strip() for origin in (env.get("CORS_ORIGINS") or "*").split(",") if origin.strip()
        )
        return cls(
            database_url=env.get("DATABASE_URL") or defaults.database_url,
            vault_backend=_choice(env, "VAULT_BACKEND", defaults.vault_backend, ("local", "s3")),
            vault_local_dir=env.get("VAULT_LOCAL_DIR") or defaults.vault_local_dir,
            s3_bucket=env.get("S3_BUCKET") or defaults.s3_bucket,
            s3_prefix=env.get("S3_PREFIX") or defaults.s3_prefix,
            aws_region=env.get("AWS_REGION") or defaults.aws_region,
            vault_timeout_seconds=_float(env, "VAULT_TIMEOUT_SECONDS", defaults.vault_timeout_seconds),
            anchor_rpc_url=env.get("ANCHOR_RPC_URL") or None,
            anchor_rpc_submit_method=env.get("ANCHOR_RPC_SUBMIT_METHOD") or defaults.anchor_rpc_submit_method,
            anchor_rpc_receipt_method=env.get("ANCHOR_RPC_RECEIPT_METHOD") or defaults.anchor_rpc_receipt_method,
            anchor_rpc_timeout_seconds=_float(
                env, "ANCHOR_RPC_TIMEOUT_SECONDS", defaults.anchor_rpc_timeout_seconds
            ),
            anchor_poll_attempts=_int(env, "ANCHOR_POLL_ATTEMPTS", defaults.anchor_poll_attempts, minimum=1),
            anchor_poll_delay_seconds=_float(
                env, "ANCHOR_POLL_DELAY_SECONDS", defaults.anchor_poll_delay_seconds
            ),
            anchor_fallback_policy=_choice(
                env, "ANCHOR_FALLBACK_POLICY", defaults.anchor_fallback_policy, FALLBACK_POLICIES
            ),
            anchor_dispatch=_choice(
                env, "ANCHOR_DISPATCH", defaults.anchor_dispatch, (DISPATCH_INLINE, DISPATCH_CELERY)
            ),
            anchor_explorer_url=(env.get("ANCHOR_EXPLORER_URL") or defaults.anchor_explorer_url).rstrip("/"),
            verify_refresh_pending=_bool(env, "VERIFY_REFRESH_PENDING", defaults.verify_refresh_pending),
            max_file_bytes=_int(env, "MAX_FILE_BYTES", defaults.max_file_bytes, minimum=1),
            max_field_bytes=_int(env, "MAX_FIELD_BYTES", defaults.max_field_bytes, minimum=1),
            celery_broker_url=env.get("CELERY_BROKER_URL") or defaults.celery_broker_url,
            celery_result_backend=env.get("CELERY_RESULT_BACKEND") or defaults.celery_result_backend,
            cors_origins=origins or ("*",),
            log_level=(env.get("LOG_LEVEL") or defaults.log_level).upper(),
        )

    def with_overrides(self, **changes: object) -> "Settings":
        return replace(self, **changes)

    @property
    def anchor_stale_after_seconds(self) -> float:
        """Age after which a pending anchor without a tx id is presumed abandoned."""
        return 2 * self.anchor_rpc_timeout_seconds + self.anchor_poll_attempts * self.anchor_poll_delay_seconds

    def explorer_tx_url(self, tx_id: str) -> str:
        return f"{self.anchor_explorer_url}/tx/{tx_id}"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide settings, read from the environment once."""

    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
