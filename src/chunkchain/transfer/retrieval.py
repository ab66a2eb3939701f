# src/chunkchain/transfer/retrieval.py
"""
Download and reconstruction of finalized sessions.

Metadata and chunk bytes come from a pluggable ``ChunkSource``:

- ``ServiceDownload``: session service metadata plus its download endpoint
- ``HistoryScan``: the session account on the ledger plus every chunk
  instruction found in the account's transaction history

Either way the encoded stream is checked against the session digest and then
decoded (text layer, then compression layer).
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Iterable
from dataclasses import dataclass

from ..result import Failure, Result, Success
from .config import TransferConfig
from .encoder import content_digest, decode
from .errors import (
    ChunkCountMismatch,
    DigestMismatch,
    InvalidInput,
    LayoutError,
    RetrievalFailed,
    SessionNotFinalized,
)
from .layout import ChunkInstruction, SessionAccount, parse_chunk_instruction
from .models import HistoryEntry, SessionSnapshot
from .protocols import LedgerClient, SessionService
from .transport_errors import (
    RpcUnavailable,
    ServiceUnavailable,
    TransportError,
    describe,
)


_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetrievalResult:
    """Reconstructed payload and the metadata snapshot it was checked against."""

    data: bytes
    snapshot: SessionSnapshot
    encoded_size: int
    source: str
    attempts: int

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def declared_chunks(self) -> int:
        return self.snapshot.total_chunks


@dataclass(frozen=True)
class SessionProgress:
    """What a caller may learn about a session that is not (yet) finalized."""

    snapshot: SessionSnapshot
    observed_chunks: int | None

    @property
    def is_finalized(self) -> bool:
        return self.snapshot.is_finalized


class PayloadCache:
    """LRU cache of retrieval results keyed by session handle."""

    def __init__(self, capacity: int = 64) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._entries: OrderedDict[str, RetrievalResult] = OrderedDict()

    def get(self, session_handle: str) -> RetrievalResult | None:
        entry = self._entries.get(session_handle)
        if entry is not None:
            self._entries.move_to_end(session_handle)
        return entry

    def put(self, session_handle: str, result: RetrievalResult) -> None:
        self._entries[session_handle] = result
        self._entries.move_to_end(session_handle)
        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            _logger.debug(f"Evicted {evicted} from payload cache")

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, session_handle: object) -> bool:
        return session_handle in self._entries

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Reconstruction
# ---------------------------------------------------------------------------


def chunks_from_history(
    entries: Iterable[HistoryEntry], session_id: bytes
) -> list[ChunkInstruction]:
    """Chunk instructions of ``session_id`` found in a transaction history."""
    found: list[ChunkInstruction] = []
    for entry in entries:
        for data in entry.instructions:
            match parse_chunk_instruction(data):
                case Success(chunk) if chunk.session_id == session_id:
                    found.append(chunk)
                case _:
                    continue
    return found


class Reconstructor:
    """Order, check and decode chunk bytes."""

    def __init__(self, *, strict_integrity: bool = True) -> None:
        self.strict_integrity = strict_integrity

    def reassemble(self, chunks: Iterable[tuple[int, bytes]], total_chunks: int) -> bytes:
        """
        Concatenate chunks by index, whatever order they arrive in.

        Identical duplicates (retried submissions) collapse; indices at or past
        ``total_chunks`` are dropped with a warning.

        Raises:
            LayoutError: two different payloads claim the same index
            ChunkCountMismatch: indices missing (only with strict integrity)
        """
        by_index: dict[int, bytes] = {}
        surplus: set[int] = set()
        for index, data in chunks:
            if index >= total_chunks:
                surplus.add(index)
                continue
            existing = by_index.setdefault(index, data)
            if existing != data:
                raise LayoutError(f"Chunk {index} observed with two different payloads")

        if surplus:
            _logger.warning(
                f"Dropping {len(surplus)} chunk(s) beyond declared total {total_chunks}: "
                f"{sorted(surplus)[:10]}"
            )

        missing = [index for index in range(total_chunks) if index not in by_index]
        if missing:
            mismatch = ChunkCountMismatch(total_chunks, len(by_index), missing)
            if self.strict_integrity:
                _logger.error(str(mismatch))
                raise mismatch
            _logger.warning(f"Integrity warning: {mismatch}")

        return b"".join(by_index[index] for index in sorted(by_index))

    def verify(self, stream: bytes, expected: bytes) -> None:
        actual = content_digest(stream)
        if actual != expected:
            mismatch = DigestMismatch(expected.hex(), actual.hex())
            if self.strict_integrity:
                _logger.error(str(mismatch))
                raise mismatch
            _logger.warning(f"Integrity warning: {mismatch}")

    def reconstruct(
        self, chunks: Iterable[tuple[int, bytes]], total_chunks: int, digest: bytes
    ) -> tuple[bytes, int]:
        """Reassemble, verify and decode. Returns the payload and the encoded size."""
        stream = self.reassemble(chunks, total_chunks)
        self.verify(stream, digest)
        return decode(stream), len(stream)


# ---------------------------------------------------------------------------
# Chunk sources
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ServiceDownload:
    """Metadata and concatenated stream from the session service."""

    service: SessionService

    @property
    def name(self) -> str:
        return "service"

    async def fetch_metadata(
        self, session_handle: str
    ) -> Result[SessionSnapshot | None, TransportError]:
        match await self.service.get_session_metadata(session_handle):
            case Success(metadata):
                return Success(metadata.snapshot(session_handle))
            case Failure(error):
                return Failure(error)

    async def acquire_stream(self, snapshot: SessionSnapshot, reconstructor: Reconstructor) -> bytes:
        match await self.service.download_session(snapshot.session_handle):
            case Success(stream):
                return stream
            case Failure(error):
                raise RetrievalFailed(snapshot.session_handle, f"download failed: {describe(error)}")

    async def observed_chunks(self, snapshot: SessionSnapshot) -> int | None:
        return None


@dataclass(frozen=True)
class HistoryScan:
    """Session account and chunk instructions read straight from the ledger."""

    ledger: LedgerClient

    @property
    def name(self) -> str:
        return "history"

    async def fetch_metadata(
        self, session_handle: str
    ) -> Result[SessionSnapshot | None, TransportError]:
        match await self.ledger.get_account_info(session_handle):
            case Success(None):
                return Success(None)
            case Success(data):
                account = SessionAccount.decode(data)
                return Success(SessionSnapshot.from_account(session_handle, account))
            case Failure(error):
                return Failure(error)

    async def _chunks(self, snapshot: SessionSnapshot) -> list[ChunkInstruction]:
        match await self.ledger.get_transaction_history(snapshot.session_handle):
            case Success(entries):
                return chunks_from_history(entries, snapshot.session_id)
            case Failure(error):
                raise RetrievalFailed(
                    snapshot.session_handle, f"history scan failed: {describe(error)}"
                )

    async def acquire_stream(self, snapshot: SessionSnapshot, reconstructor: Reconstructor) -> bytes:
        chunks = await self._chunks(snapshot)
        _logger.debug(f"History scan of {snapshot.session_handle}: {len(chunks)} chunk instruction(s)")
        return reconstructor.reassemble(
            ((chunk.index, chunk.data) for chunk in chunks), snapshot.total_chunks
        )

    async def observed_chunks(self, snapshot: SessionSnapshot) -> int | None:
        chunks = await self._chunks(snapshot)
        return len({chunk.index for chunk in chunks if chunk.index < snapshot.total_chunks})


ChunkSource = ServiceDownload | HistoryScan


# ---------------------------------------------------------------------------
# Retriever
# ---------------------------------------------------------------------------


class Retriever:
    """
    Fetch metadata until finalized, acquire the stream, verify and decode it.

    Usage:
        retriever = Retriever(HistoryScan(ledger), config, cache=PayloadCache())
        result = await retriever.retrieve(handle)
    """

    def __init__(
        self,
        source: ChunkSource,
        config: TransferConfig | None = None,
        *,
        cache: PayloadCache | None = None,
    ) -> None:
        self.source = source
        self.config = config or TransferConfig()
        self.cache = cache
        self.reconstructor = Reconstructor(strict_integrity=self.config.strict_integrity)

    async def finalized_snapshot(
        self, session_handle: str, max_retries: int, retry_delay: float
    ) -> tuple[SessionSnapshot, int]:
        """
        Poll metadata until the session reports Finalized.

        Unavailability the source has not already retried is retried here,
        within the same ``max_retries`` budget as an Active session.

        Raises:
            InvalidInput: ``max_retries`` below 1
            SessionNotFinalized: still Active after ``max_retries`` attempts
            RetrievalFailed: metadata unavailable after ``max_retries`` attempts,
                or rejected outright
        """
        if max_retries < 1:
            raise InvalidInput(f"max_retries must be at least 1, got {max_retries}")
        last_snapshot: SessionSnapshot | None = None
        last_error = ""
        for attempt in range(1, max_retries + 1):
            match await self.source.fetch_metadata(session_handle):
                case Success(None):
                    last_error = "session account not found"
                    _logger.warning(f"{session_handle}: attempt {attempt}/{max_retries}: {last_error}")
                case Success(snapshot) if snapshot.is_finalized:
                    return snapshot, attempt
                case Success(snapshot):
                    last_snapshot = snapshot
                    _logger.info(
                        f"{session_handle}: attempt {attempt}/{max_retries}: session still active"
                    )
                case Failure(
                    ServiceUnavailable(retry_count=0) | RpcUnavailable(retry_count=0) as error
                ):
                    last_error = describe(error)
                    _logger.warning(f"{session_handle}: attempt {attempt}/{max_retries}: {last_error}")
                case Failure(error):
                    # not transient, or the client already spent its own retries
                    _logger.error(f"Metadata for {session_handle} unavailable: {describe(error)}")
                    raise RetrievalFailed(session_handle, describe(error))
            if attempt < max_retries:
                await asyncio.sleep(retry_delay)

        if last_snapshot is not None:
            raise SessionNotFinalized(session_handle, last_snapshot, max_retries)
        _logger.error(f"Metadata for {session_handle} unavailable: {last_error}")
        raise RetrievalFailed(session_handle, last_error)

    async def retrieve(
        self,
        session_handle: str,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ) -> RetrievalResult:
        """
        Reconstruct the payload stored under ``session_handle``.

        Raises:
            InvalidInput, SessionNotFinalized, RetrievalFailed, ChunkCountMismatch,
            DigestMismatch, LayoutError, CorruptPayload
        """
        if self.cache is not None:
            cached = self.cache.get(session_handle)
            if cached is not None:
                _logger.debug(f"Cache hit for {session_handle}")
                return cached

        retries = self.config.metadata_retries if max_retries is None else max_retries
        delay = self.config.metadata_retry_delay_seconds if retry_delay is None else retry_delay
        snapshot, attempts = await self.finalized_snapshot(session_handle, retries, delay)

        stream = await self.source.acquire_stream(snapshot, self.reconstructor)
        self.reconstructor.verify(stream, snapshot.digest)
        data = decode(stream)

        result = RetrievalResult(
            data=data,
            snapshot=snapshot,
            encoded_size=len(stream),
            source=self.source.name,
            attempts=attempts,
        )
        if self.cache is not None:
            self.cache.put(session_handle, result)
        _logger.info(
            f"Retrieved {len(data)} bytes from {session_handle} "
            f"({snapshot.total_chunks} chunks via {self.source.name})"
        )
        return result

    async def progress(self, session_handle: str) -> SessionProgress:
        """
        Current status and chunk progress, without requiring finalization.

        Raises:
            RetrievalFailed: metadata unavailable or account missing
        """
        match await self.source.fetch_metadata(session_handle):
            case Success(None):
                raise RetrievalFailed(session_handle, "session account not found")
            case Success(snapshot):
                return SessionProgress(
                    snapshot=snapshot, observed_chunks=await self.source.observed_chunks(snapshot)
                )
            case Failure(error):
                raise RetrievalFailed(session_handle, describe(error))


__all__ = [
    "RetrievalResult",
    "SessionProgress",
    "PayloadCache",
    "Reconstructor",
    "chunks_from_history",
    "ServiceDownload",
    "HistoryScan",
    "ChunkSource",
    "Retriever",
]
