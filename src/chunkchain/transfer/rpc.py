# src/chunkchain/transfer/rpc.py
"""
Ledger JSON-RPC client over httpx.

Every public method returns ``Result[T, RpcError]``; transport problems are
classified into the RpcError ADTs instead of escaping as httpx exceptions.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import os
from collections.abc import Sequence
from types import TracebackType

import base58
import httpx

from ..result import Failure, Result, Success, partition_results
from .config import DEFAULT_RPC_URL, Commitment
from .models import HistoryEntry, SignatureStatus
from .retry import retry_transient
from .transport_errors import (
    RpcError,
    RpcInvalidResponse,
    RpcRejected,
    RpcTransactionFailed,
    RpcUnavailable,
)


_logger = logging.getLogger(__name__)

# JSON-RPC codes a healthy node may return while catching up
_TRANSIENT_RPC_CODES = frozenset({-32004, -32005, -32014})

_SIGNATURE_PAGE_SIZE = 1000
_HISTORY_FETCH_CONCURRENCY = 8

_MALFORMED = (KeyError, TypeError, IndexError, ValueError, binascii.Error)


class JsonRpcLedgerClient:
    """
    Async ledger RPC client.

    Usage:
        async with JsonRpcLedgerClient("https://rpc.example") as ledger:
            match await ledger.latest_reference():
                case Success(blockhash):
                    ...
    """

    def __init__(
        self,
        rpc_url: str | None = None,
        *,
        commitment: Commitment = "confirmed",
        timeout_seconds: float = 60.0,
        history_limit: int = 1000,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            rpc_url: JSON-RPC endpoint (reads CHUNKCHAIN_RPC_URL env if None)
            commitment: Commitment used for reads and simulations
            timeout_seconds: Per-request timeout
            history_limit: Maximum number of signatures scanned per address
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.rpc_url = rpc_url or os.environ.get("CHUNKCHAIN_RPC_URL", DEFAULT_RPC_URL)
        self.commitment: Commitment = commitment
        self.timeout_seconds = timeout_seconds
        self.history_limit = history_limit
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._request_id = 0

    async def __aenter__(self) -> JsonRpcLedgerClient:
        self._client = httpx.AsyncClient(
            timeout=self.timeout_seconds,
            transport=self._transport,
            headers={"Content-Type": "application/json"},
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

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    @retry_transient(max_retries=5)
    async def _call(self, method: str, params: list[object]) -> Result[object, RpcError]:
        """POST one JSON-RPC request and classify the answer."""
        if self._client is None:
            raise RuntimeError("RPC client not initialized. Use 'async with' context manager.")
        self._request_id += 1
        body = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            response = await self._client.post(self.rpc_url, json=body)
        except httpx.TransportError as exc:
            return Failure(RpcUnavailable(method=method, message=f"{type(exc).__name__}: {exc}"))
        return self._classify_response(method, response)

    def _classify_response(self, method: str, response: httpx.Response) -> Result[object, RpcError]:
        if response.status_code == 429 or response.status_code >= 500:
            return Failure(
                RpcUnavailable(method=method, message=f"HTTP {response.status_code}")
            )
        if response.status_code >= 400:
            return Failure(
                RpcRejected(
                    method=method, code=response.status_code, message=response.text[:200]
                )
            )
        try:
            payload = response.json()
        except ValueError as exc:
            return Failure(RpcInvalidResponse(method=method, message=f"body is not JSON: {exc}"))
        if not isinstance(payload, dict):
            return Failure(RpcInvalidResponse(method=method, message="body is not an object"))

        error = payload.get("error")
        if isinstance(error, dict):
            code = error.get("code")
            code = code if isinstance(code, int) else 0
            message = str(error.get("message", ""))
            if code in _TRANSIENT_RPC_CODES:
                return Failure(RpcUnavailable(method=method, message=f"({code}) {message}"))
            data = error.get("data")
            return Failure(
                RpcRejected(
                    method=method,
                    code=code,
                    message=message,
                    data="" if data is None else json.dumps(data, sort_keys=True),
                )
            )
        if "result" not in payload:
            return Failure(RpcInvalidResponse(method=method, message="missing result"))
        return Success(payload["result"])

    # -------------------------------------------------------------------------
    # LedgerClient protocol
    # -------------------------------------------------------------------------

    async def latest_reference(self) -> Result[str, RpcError]:
        """Recent block hash used as the transaction reference point."""
        match await self._call("getLatestBlockhash", [{"commitment": self.commitment}]):
            case Failure() as failure:
                return failure
            case Success(result):
                try:
                    return Success(str(result["value"]["blockhash"]))  # type: ignore[index]
                except _MALFORMED as exc:
                    return Failure(RpcInvalidResponse("getLatestBlockhash", repr(exc)))

    async def submit_transaction(self, signed: bytes) -> Result[str, RpcError]:
        params: list[object] = [
            base64.b64encode(signed).decode("ascii"),
            {"encoding": "base64", "skipPreflight": True, "maxRetries": 3},
        ]
        match await self._call("sendTransaction", params):
            case Failure() as failure:
                return failure
            case Success(signature) if isinstance(signature, str) and signature:
                return Success(signature)
            case Success(other):
                return Failure(RpcInvalidResponse("sendTransaction", f"no signature: {other!r}"))

    async def simulate_transaction(self, signed: bytes) -> Result[None, RpcError]:
        params: list[object] = [
            base64.b64encode(signed).decode("ascii"),
            {"encoding": "base64", "commitment": self.commitment, "sigVerify": False},
        ]
        match await self._call("simulateTransaction", params):
            case Failure() as failure:
                return failure
            case Success(result):
                try:
                    err = result["value"]["err"]  # type: ignore[index]
                except _MALFORMED as exc:
                    return Failure(RpcInvalidResponse("simulateTransaction", repr(exc)))
                if err is not None:
                    return Failure(
                        RpcTransactionFailed(signature="", detail=json.dumps(err, sort_keys=True))
                    )
                return Success(None)

    async def get_signature_statuses(
        self, signatures: Sequence[str]
    ) -> Result[list[SignatureStatus | None], RpcError]:
        """One request for the whole batch, whatever its size."""
        params: list[object] = [list(signatures), {"searchTransactionHistory": False}]
        match await self._call("getSignatureStatuses", params):
            case Failure() as failure:
                return failure
            case Success(result):
                try:
                    entries = result["value"]  # type: ignore[index]
                    statuses: list[SignatureStatus | None] = [
                        None
                        if entry is None
                        else SignatureStatus(
                            confirmation_status=entry.get("confirmationStatus"),
                            err=(
                                None
                                if entry.get("err") is None
                                else json.dumps(entry["err"], sort_keys=True)
                            ),
                        )
                        for entry in entries
                    ]
                except _MALFORMED as exc:
                    return Failure(RpcInvalidResponse("getSignatureStatuses", repr(exc)))
                if len(statuses) != len(signatures):
                    return Failure(
                        RpcInvalidResponse(
                            "getSignatureStatuses",
                            f"{len(statuses)} statuses for {len(signatures)} signatures",
                        )
                    )
                return Success(statuses)

    async def get_account_info(self, address: str) -> Result[bytes | None, RpcError]:
        params: list[object] = [address, {"encoding": "base64", "commitment": self.commitment}]
        match await self._call("getAccountInfo", params):
            case Failure() as failure:
                return failure
            case Success(result):
                try:
                    value = result["value"]  # type: ignore[index]
                    if value is None:
                        return Success(None)
                    return Success(base64.b64decode(value["data"][0]))
                except _MALFORMED as exc:
                    return Failure(RpcInvalidResponse("getAccountInfo", repr(exc)))

    async def get_transaction_history(self, address: str) -> Result[list[HistoryEntry], RpcError]:
        """
        Every successful transaction that touched ``address``, newest first.

        Failed transactions are skipped: their instructions never took effect.
        """
        match await self._list_signatures(address):
            case Failure() as failure:
                return failure
            case Success(signatures):
                pass

        semaphore = asyncio.Semaphore(_HISTORY_FETCH_CONCURRENCY)

        async def fetch(signature: str) -> Result[HistoryEntry | None, RpcError]:
            async with semaphore:
                return await self._get_transaction(signature)

        results = await asyncio.gather(*(fetch(signature) for signature in signatures))
        entries, failures = partition_results(list(results))
        if failures:
            return Failure(failures[0])
        return Success([entry for entry in entries if entry is not None])

    # -------------------------------------------------------------------------
    # History helpers
    # -------------------------------------------------------------------------

    async def _list_signatures(self, address: str) -> Result[list[str], RpcError]:
        signatures: list[str] = []
        before: str | None = None
        while len(signatures) < self.history_limit:
            options: dict[str, object] = {
                "limit": min(_SIGNATURE_PAGE_SIZE, self.history_limit - len(signatures)),
                "commitment": self.commitment,
            }
            if before is not None:
                options["before"] = before
            match await self._call("getSignaturesForAddress", [address, options]):
                case Failure() as failure:
                    return failure
                case Success(page):
                    try:
                        page_entries = [
                            entry for entry in page if entry.get("err") is None  # type: ignore[attr-defined]
                        ]
                        page_signatures = [str(entry["signature"]) for entry in page_entries]
                        page_size = len(page)  # type: ignore[arg-type]
                        last = str(page[-1]["signature"]) if page_size else None  # type: ignore[index]
                    except _MALFORMED as exc:
                        return Failure(RpcInvalidResponse("getSignaturesForAddress", repr(exc)))
            signatures.extend(page_signatures)
            if page_size < _SIGNATURE_PAGE_SIZE or last is None:
                break
            before = last
        return Success(signatures)

    async def _get_transaction(self, signature: str) -> Result[HistoryEntry | None, RpcError]:
        options = {
            "encoding": "json",
            "maxSupportedTransactionVersion": 0,
            "commitment": self.commitment,
        }
        match await self._call("getTransaction", [signature, options]):
            case Failure() as failure:
                return failure
            case Success(None):
                return Success(None)
            case Success(result):
                try:
                    meta = result.get("meta") or {}  # type: ignore[attr-defined]
                    if meta.get("err") is not None:
                        return Success(None)
                    instructions = result["transaction"]["message"]["instructions"]  # type: ignore[index]
                    data = tuple(base58.b58decode(ix["data"]) for ix in instructions)
                except _MALFORMED as exc:
                    return Failure(RpcInvalidResponse("getTransaction", repr(exc)))
                return Success(HistoryEntry(signature=signature, instructions=data))


__all__ = ["JsonRpcLedgerClient"]
