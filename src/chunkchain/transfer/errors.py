# src/chunkchain/transfer/errors.py
"""Exception hierarchy for chunked ledger transfers."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .dispatch import DispatchRecord
    from .models import SessionSnapshot


class TransferError(Exception):
    """Base exception for all transfer-related errors."""

    pass


class InvalidInput(TransferError):
    """Payload or configuration rejected before any network call (fatal)."""

    pass


class LayoutError(TransferError):
    """Bytes do not match the session-account or chunk-instruction layout."""

    pass


class CorruptPayload(TransferError):
    """Envelope marker present but the wrapped data cannot be decoded."""

    pass


class SessionCreationFailed(TransferError):
    """Session could not be created or storage could not be initialized."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Session creation failed: {message}")


class ChunkDispatchFailed(TransferError):
    """A chunk transaction could not be signed or submitted (recoverable)."""

    def __init__(self, chunk_index: int, message: str) -> None:
        self.chunk_index = chunk_index
        self.message = message
        super().__init__(f"Chunk {chunk_index} dispatch failed: {message}")


class ConfirmationTimeout(TransferError):
    """Signatures still unresolved when the wait budget ran out (recoverable)."""

    def __init__(self, signatures: Sequence[str], waited_seconds: float) -> None:
        self.signatures = tuple(signatures)
        self.waited_seconds = waited_seconds
        super().__init__(
            f"{len(self.signatures)} signature(s) unconfirmed after {waited_seconds:.1f}s"
        )


class UploadFailed(TransferError):
    """Chunks remained unconfirmed after the final retry round."""

    def __init__(
        self,
        session_handle: str,
        unconfirmed: Sequence[int],
        records: Sequence[DispatchRecord] = (),
    ) -> None:
        self.session_handle = session_handle
        self.unconfirmed = tuple(sorted(unconfirmed))
        self.records = tuple(records)
        super().__init__(
            f"Upload to session {session_handle} failed: "
            f"chunk(s) {list(self.unconfirmed)} unconfirmed after retries"
        )


class FinalizationFailed(TransferError):
    """Finalize transaction failed; the session stays Active."""

    def __init__(self, session_handle: str, message: str) -> None:
        self.session_handle = session_handle
        self.message = message
        super().__init__(
            f"Finalization of session {session_handle} failed: {message}. "
            "All chunks are uploaded but the data is not usable until the session is finalized."
        )


class SessionNotFinalized(TransferError):
    """Session is still Active after the metadata retry budget."""

    def __init__(self, session_handle: str, snapshot: SessionSnapshot, attempts: int) -> None:
        self.session_handle = session_handle
        self.snapshot = snapshot
        self.attempts = attempts
        super().__init__(
            f"Session {session_handle} not finalized after {attempts} attempt(s) "
            f"(status={snapshot.status.name.lower()}, total_chunks={snapshot.total_chunks})"
        )


class RetrievalFailed(TransferError):
    """Session metadata or chunk data could not be obtained."""

    def __init__(self, session_handle: str, message: str) -> None:
        self.session_handle = session_handle
        self.message = message
        super().__init__(f"Retrieval of session {session_handle} failed: {message}")


class ChunkCountMismatch(TransferError):
    """Observed chunk set disagrees with the declared total."""

    def __init__(self, expected: int, observed: int, missing: Sequence[int] = ()) -> None:
        self.expected = expected
        self.observed = observed
        self.missing = tuple(missing)
        super().__init__(
            f"Chunk count mismatch: expected {expected}, found {observed}"
            + (f" (missing {list(self.missing)[:10]})" if self.missing else "")
        )


class DigestMismatch(TransferError):
    """Reassembled stream does not hash to the session's content digest."""

    def __init__(self, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Digest mismatch: expected {expected[:16]}, got {actual[:16]}")


class SessionIndexError(TransferError):
    """Metadata index could not record or look up an entry."""

    def __init__(self, logical_id: str, message: str) -> None:
        self.logical_id = logical_id
        self.message = message
        super().__init__(f"Index entry {logical_id!r}: {message}")


__all__ = [
    "TransferError",
    "InvalidInput",
    "LayoutError",
    "CorruptPayload",
    "SessionCreationFailed",
    "ChunkDispatchFailed",
    "ConfirmationTimeout",
    "UploadFailed",
    "FinalizationFailed",
    "SessionNotFinalized",
    "RetrievalFailed",
    "ChunkCountMismatch",
    "DigestMismatch",
    "SessionIndexError",
]
