# src/chunkchain/transfer/service.py
"""HTTP client for the remote session-creation and download service."""

from __future__ import annotations

import logging
import os
from types import TracebackType
from typing import TypeVar

import httpx
from pydantic import BaseModel

from ..result import Failure, Result, Success
from ..validation import validate_payload
from .config import DEFAULT_SERVICE_URL
from .models import SessionMetadata, SessionPlan, SessionRequest
from .retry import retry_transient
from .transport_errors import (
    ServiceError,
    ServiceInvalidResponse,
    ServiceRejected,
    ServiceUnavailable,
)


_logger = logging.getLogger(__name__)

TModel = TypeVar("TModel", bound=BaseModel)

CREATE_SESSION_PATH = "/api/v2/inscribe/pinocchio"
SESSION_METADATA_PATH = "/api/v2/inscribe/session/{handle}"
DOWNLOAD_PATH = "/api/v2/inscribe/download/{handle}"


class SessionServiceClient:
    """
    Async client for the session service.

    Usage:
        async with SessionServiceClient("https://service.example") as service:
            result = await service.get_session_metadata(handle)
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or os.environ.get("CHUNKCHAIN_SERVICE_URL", DEFAULT_SERVICE_URL)
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> SessionServiceClient:
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_seconds,
            transport=self._transport,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        return None

    @retry_transient(max_retries=5)
    async def _request(
        self, method: str, path: str, json_body: dict[str, object] | None = None
    ) -> Result[httpx.Response, ServiceError]:
        return await self._send(method, path, json_body)

    async def _send(
        self, method: str, path: str, json_body: dict[str, object] | None = None
    ) -> Result[httpx.Response, ServiceError]:
        if self._client is None:
            raise RuntimeError("Service client not initialized. Use 'async with' context manager.")
        try:
            response = await self._client.request(method, path, json=json_body)
        except httpx.TransportError as exc:
            return Failure(ServiceUnavailable(endpoint=path, message=f"{type(exc).__name__}: {exc}"))

        if response.status_code == 429 or response.status_code >= 500:
            return Failure(ServiceUnavailable(endpoint=path, message=f"HTTP {response.status_code}"))
        if response.status_code >= 400:
            return Failure(
                ServiceRejected(
                    endpoint=path,
                    status_code=response.status_code,
                    message=_error_detail(response),
                )
            )
        return Success(response)

    def _parse(
        self, path: str, response: httpx.Response, model_cls: type[TModel]
    ) -> Result[TModel, ServiceError]:
        try:
            document = response.json()
        except ValueError as exc:
            return Failure(ServiceInvalidResponse(endpoint=path, message=f"body is not JSON: {exc}"))
        return validate_payload(model_cls, document).map_error(
            lambda error: ServiceInvalidResponse(
                endpoint=path, message=f"{error.error_count()} validation error(s): {error}"
            )
        )

    async def create_session(self, request: SessionRequest) -> Result[SessionPlan, ServiceError]:
        """Ask the service for a session and every transaction template of the upload."""
        _logger.debug(
            f"Creating session {request.session_id} ({len(request.chunks)} chunks, "
            f"chunk_size={request.chunk_size})"
        )
        body = request.model_dump(by_alias=True, mode="json")
        sent = await self._request("POST", CREATE_SESSION_PATH, body)
        return sent.and_then(
            lambda response: self._parse(CREATE_SESSION_PATH, response, SessionPlan)
        )

    async def get_session_metadata(
        self, session_handle: str
    ) -> Result[SessionMetadata, ServiceError]:
        """
        One metadata request, without transient retries.

        Callers poll metadata under their own retry budget (see ``Retriever``).
        """
        path = SESSION_METADATA_PATH.format(handle=session_handle)
        fetched = await self._send("GET", path)
        return fetched.and_then(lambda response: self._parse(path, response, SessionMetadata))

    async def download_session(self, session_handle: str) -> Result[bytes, ServiceError]:
        """Concatenated encoded stream of a finalized session, as raw bytes."""
        path = DOWNLOAD_PATH.format(handle=session_handle)
        match await self._request("GET", path):
            case Failure() as failure:
                return failure
            case Success(response):
                if not response.content:
                    return Failure(ServiceInvalidResponse(endpoint=path, message="empty body"))
                _logger.debug(f"Downloaded {len(response.content)} bytes for {session_handle}")
                return Success(response.content)


def _error_detail(response: httpx.Response) -> str:
    """Prefer the JSON ``error``/``detail``/``message`` member over the raw body."""
    try:
        document = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(document, dict):
        for key in ("error", "detail", "message"):
            if key in document:
                return str(document[key])[:200]
    return response.text[:200]


__all__ = ["SessionServiceClient", "CREATE_SESSION_PATH", "SESSION_METADATA_PATH", "DOWNLOAD_PATH"]
