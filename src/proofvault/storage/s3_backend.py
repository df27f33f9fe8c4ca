"""S3 vault for credential payloads.

Objects are written with server-side encryption under a single prefix:

    {bucket}/
    └── {prefix}/{handle}

The handle returned to callers is the uuid part only; the prefix stays an
implementation detail of this backend.
"""

from __future__ import annotations

import logging
import os
import uuid
from typing import Any, Dict, Optional
from urllib.parse import quote

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, ConnectTimeoutError, ReadTimeoutError

from proofvault.errors import CollaboratorError

logger = logging.getLogger(__name__)

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}
_REJECTED_CODES = {"AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch", "NoSuchBucket"}


def _classify(exc: Exception) -> CollaboratorError:
    """Map a boto3/botocore failure onto a collaborator error kind."""

    if isinstance(exc, (ConnectTimeoutError, ReadTimeoutError)):
        return CollaboratorError("timeout", str(exc))
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code", "")
        if code in _MISSING_CODES or code in _REJECTED_CODES:
            return CollaboratorError("rejected", f"{code}: {exc}")
        return CollaboratorError("unavailable", f"{code}: {exc}")
    return CollaboratorError("unavailable", str(exc))


class S3Vault:
    """S3-backed vault (AES256 server-side encryption)."""

    name = "s3"

    def __init__(
        self,
        bucket: str,
        prefix: str = "credentials",
        region: Optional[str] = None,
        timeout_seconds: float = 30.0,
        client: Any = None,
    ):
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.region = region or os.getenv("AWS_REGION", "us-east-1")

        # Credentials come from the environment or the instance role.
        self.client = client or boto3.client(
            "s3",
            region_name=self.region,
            config=Config(
                connect_timeout=timeout_seconds,
                read_timeout=timeout_seconds,
                retries={"max_attempts": 2, "mode": "standard"},
            ),
        )

    def _key(self, handle: str) -> str:
        return f"{self.prefix}/{handle}" if self.prefix else handle

    # -------------------------------------------------------------------------
    # Payloads
    # -------------------------------------------------------------------------

    def store(self, data: bytes, metadata: Dict[str, str]) -> str:
        """Upload a payload and return its handle.

        Args:
            data: Raw payload bytes
            metadata: Object metadata (proof hash, filename, content type)

        Returns:
            Opaque handle for later retrieval
        """
        handle = uuid.uuid4().hex
        # S3 user metadata must be ASCII
        object_metadata = {key: quote(str(value), safe="") for key, value in metadata.items()}
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=self._key(handle),
                Body=data,
                ContentType=metadata.get("content_type", "application/octet-stream"),
                ServerSideEncryption="AES256",
                Metadata=object_metadata,
            )
        except (BotoCoreError, ClientError) as exc:
            raise _classify(exc) from exc
        return handle

    def retrieve(self, handle: str) -> bytes:
        """Download a payload.

        Args:
            handle: Handle returned by :meth:`store`

        Returns:
            Raw payload bytes
        """
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=self._key(handle))
            return response["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            raise _classify(exc) from exc

    def delete(self, handle: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=self._key(handle))
        except (BotoCoreError, ClientError) as exc:
            raise _classify(exc) from exc

    # -------------------------------------------------------------------------
    # Utility
    # -------------------------------------------------------------------------

    def ping(self) -> bool:
        try:
            self.client.head_bucket(Bucket=self.bucket)
            return True
        except (BotoCoreError, ClientError) as exc:
            logger.warning("s3 vault unreachable: %s", exc)
            return False
