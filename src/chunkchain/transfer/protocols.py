# src/chunkchain/transfer/protocols.py
"""
Protocols for the external collaborators of the transfer core.

The core depends only on these shapes:
- LedgerClient (ledger RPC)
- SessionService (session-creation / download service)
- TransactionSigner (wallet)
- MetadataIndex (logical id -> session handle sink)
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from ..result import Result
from .models import (
    HistoryEntry,
    SessionMetadata,
    SessionPlan,
    SessionRequest,
    SignatureStatus,
    TransactionTemplate,
)
from .transport_errors import RpcError, ServiceError


class LedgerClient(Protocol):
    """
    Ledger RPC boundary.

    ``get_signature_statuses`` must answer for every signature in one round
    trip; the confirmation tracker never splits a round into several queries.
    """

    async def latest_reference(self) -> Result[str, RpcError]: ...

    async def submit_transaction(self, signed: bytes) -> Result[str, RpcError]: ...

    async def simulate_transaction(self, signed: bytes) -> Result[None, RpcError]: ...

    async def get_signature_statuses(
        self, signatures: Sequence[str]
    ) -> Result[list[SignatureStatus | None], RpcError]: ...

    async def get_account_info(self, address: str) -> Result[bytes | None, RpcError]: ...

    async def get_transaction_history(self, address: str) -> Result[list[HistoryEntry], RpcError]: ...


class SessionService(Protocol):
    """Remote session-creation and download service."""

    async def create_session(self, request: SessionRequest) -> Result[SessionPlan, ServiceError]: ...

    async def get_session_metadata(
        self, session_handle: str
    ) -> Result[SessionMetadata, ServiceError]: ...

    async def download_session(self, session_handle: str) -> Result[bytes, ServiceError]: ...


class TransactionSigner(Protocol):
    """Wallet that turns a template plus a recent reference into signed wire bytes."""

    @property
    def owner(self) -> str: ...

    async def sign(self, template: TransactionTemplate, reference: str) -> bytes: ...


class MetadataIndex(Protocol):
    """Sink for ``(logical_id, session_handle)`` pairs emitted after finalization."""

    # raises SessionIndexError when the entry cannot be stored
    async def record(self, logical_id: str, session_handle: str) -> None: ...


__all__ = ["LedgerClient", "SessionService", "TransactionSigner", "MetadataIndex"]
