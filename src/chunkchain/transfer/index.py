# src/chunkchain/transfer/index.py
"""
Metadata index adapters: ``logical_id -> session_handle``.

The upload pipeline only writes through ``record``; ``lookup`` serves the CLI
and callers that resolve a logical id before downloading.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from types import TracebackType
from typing import TYPE_CHECKING, Protocol

import aioboto3
from botocore.config import Config
from botocore.exceptions import ClientError

from ..result import Failure, Result, Success
from .errors import SessionIndexError


_logger = logging.getLogger(__name__)

INDEX_VERSION = 1


def _entry(session_handle: str) -> dict[str, str]:
    return {"sessionHandle": session_handle, "recordedAt": datetime.now(UTC).isoformat()}


# ---------------------------------------------------------------------------
# Local JSON file
# ---------------------------------------------------------------------------


class LocalSessionIndex:
    """Index kept in one JSON document on local disk."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _load(self) -> dict[str, dict[str, str]]:
        if not self.path.exists():
            return {}
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise SessionIndexError(str(self.path), f"unreadable index file: {exc}") from exc
        if not isinstance(document, dict) or not isinstance(document.get("entries"), dict):
            raise SessionIndexError(str(self.path), "index file has no 'entries' object")
        entries: dict[str, dict[str, str]] = document["entries"]
        return entries

    def _store(self, logical_id: str, session_handle: str) -> None:
        entries = self._load()
        entries[logical_id] = _entry(session_handle)
        staging = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            staging.write_text(
                json.dumps({"version": INDEX_VERSION, "entries": entries}, indent=2, sort_keys=True),
                encoding="utf-8",
            )
            os.replace(staging, self.path)
        except OSError as exc:
            raise SessionIndexError(logical_id, f"cannot write {self.path}: {exc}") from exc

    async def record(self, logical_id: str, session_handle: str) -> None:
        """
        Raises:
            SessionIndexError: index file unreadable or not writable
        """
        await asyncio.to_thread(self._store, logical_id, session_handle)
        _logger.debug(f"Recorded {logical_id} -> {session_handle} in {self.path}")

    async def lookup(self, logical_id: str) -> str | None:
        entries = await asyncio.to_thread(self._load)
        entry = entries.get(logical_id)
        return None if entry is None else entry.get("sessionHandle")


# ---------------------------------------------------------------------------
# S3
# ---------------------------------------------------------------------------


if TYPE_CHECKING:

    class _BodyProtocol(Protocol):
        async def read(self) -> bytes: ...

    class S3ClientProtocol(Protocol):
        async def put_object(self, **kwargs: object) -> object: ...
        async def get_object(self, **kwargs: object) -> dict[str, _BodyProtocol]: ...

else:
    S3ClientProtocol = object


def classify_client_error(error: ClientError, key: str) -> str:
    """Short, stable description of an S3 ClientError."""
    code = error.response.get("Error", {}).get("Code", "Unknown")
    message = error.response.get("Error", {}).get("Message", "")
    match code:
        case "NoSuchBucket":
            return f"bucket not found: {message}"
        case "NoSuchKey":
            return f"no object at {key}"
        case "AccessDenied" | "Forbidden" | "InvalidAccessKeyId" | "SignatureDoesNotMatch":
            return f"access denied: {message}"
        case "RequestTimeout" | "ServiceUnavailable" | "SlowDown" | "InternalError":
            return f"S3 unavailable ({code}): {message}"
        case _:
            return f"S3 error {code}: {message}"


class S3SessionIndex:
    """
    Index with one JSON object per logical id under ``prefix`` in an S3 bucket.

    Usage:
        async with S3SessionIndex("chunkchain-index") as index:
            await index.record("doc-1", handle)
    """

    def __init__(
        self,
        bucket_name: str,
        *,
        prefix: str = "sessions/",
        endpoint_url: str | None = None,
        region_name: str = "us-east-1",
        client: S3ClientProtocol | None = None,
    ) -> None:
        """
        Args:
            bucket_name: S3 bucket name
            prefix: Key prefix for index entries
            endpoint_url: S3 endpoint URL (reads from AWS_ENDPOINT_URL env if None)
            region_name: AWS region
            client: Already-open S3 client; skips session creation when given
        """
        self.bucket_name = bucket_name
        self.prefix = prefix
        self.endpoint_url = endpoint_url or os.environ.get("AWS_ENDPOINT_URL")
        self.region_name = region_name
        self.boto_config = Config(
            connect_timeout=5,
            read_timeout=30,
            retries={"max_attempts": 3, "mode": "adaptive"},
        )
        self._s3_client: S3ClientProtocol | None = client
        self._client_context: object | None = None

    async def __aenter__(self) -> S3SessionIndex:
        if self._s3_client is None:
            session = aioboto3.Session(region_name=self.region_name)
            client_context = session.client(
                "s3", endpoint_url=self.endpoint_url, config=self.boto_config
            )
            self._client_context = client_context
            self._s3_client = await client_context.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        client_ctx = self._client_context
        if client_ctx is not None and hasattr(client_ctx, "__aexit__"):
            await client_ctx.__aexit__(exc_type, exc_val, exc_tb)
            self._s3_client = None
            self._client_context = None
        return None

    def key_for(self, logical_id: str) -> str:
        return f"{self.prefix}{logical_id}.json"

    def _client(self) -> S3ClientProtocol:
        if self._s3_client is None:
            raise RuntimeError("S3 client not initialized. Use 'async with' context manager.")
        return self._s3_client

    async def _get(self, key: str) -> Result[bytes | None, str]:
        try:
            response = await self._client().get_object(Bucket=self.bucket_name, Key=key)
            return Success(await response["Body"].read())
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "NoSuchKey":
                return Success(None)
            return Failure(classify_client_error(exc, key))

    async def record(self, logical_id: str, session_handle: str) -> None:
        key = self.key_for(logical_id)
        body = json.dumps(_entry(session_handle), sort_keys=True).encode("utf-8")
        try:
            await self._client().put_object(
                Bucket=self.bucket_name, Key=key, Body=body, ContentType="application/json"
            )
        except ClientError as exc:
            message = classify_client_error(exc, key)
            _logger.error(f"Could not index {logical_id}: {message}")
            raise SessionIndexError(logical_id, message) from exc
        _logger.debug(f"Recorded {logical_id} -> {session_handle} at s3://{self.bucket_name}/{key}")

    async def lookup(self, logical_id: str) -> str | None:
        match await self._get(self.key_for(logical_id)):
            case Success(None):
                return None
            case Success(raw):
                try:
                    handle = json.loads(raw)["sessionHandle"]
                except (ValueError, KeyError, TypeError) as exc:
                    raise SessionIndexError(logical_id, f"malformed index entry: {exc}") from exc
                return str(handle)
            case Failure(message):
                raise SessionIndexError(logical_id, message)


__all__ = ["LocalSessionIndex", "S3SessionIndex", "classify_client_error"]
