# src/chunkchain/transfer/uploader.py
"""
Chunked upload pipeline.

encode -> create session -> dispatch rounds -> finalize -> index
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import TransferConfig
from .confirmation import ConfirmationTracker
from .dispatch import Dispatcher, DispatchLog, DispatchRecord, DispatchStrategy, default_strategy
from .encoder import encode
from .errors import ChunkDispatchFailed, ConfirmationTimeout, SessionIndexError, UploadFailed
from .finalize import Finalizer
from .layout import new_session_id
from .protocols import LedgerClient, MetadataIndex, SessionService, TransactionSigner
from .rounds import ChunkRetryLoop
from .session import SessionManager


_logger = logging.getLogger(__name__)

LAMPORTS_PER_SIGNATURE = 5000


@dataclass(frozen=True)
class StorageResult:
    """
    Outcome of a successful upload.

    ``signatures`` lists the confirmed chunk signatures in chunk order followed
    by the finalize signature. Failed attempts stay in ``records`` for audit.
    ``create_signature`` and ``finalize_signature`` are None when an earlier
    attempt landed late and only the resulting account state was observed.
    ``index_error`` is set when the session is finalized but the metadata
    index could not record it; the handle is still returned here.
    """

    session_handle: str
    session_id: str
    total_chunks: int
    chunk_signatures: tuple[str, ...]
    finalize_signature: str | None
    create_signature: str | None
    init_signature: str | None
    single_submissions: int
    records: tuple[DispatchRecord, ...]
    content_digest: str
    compressed: bool
    original_size: int
    encoded_size: int
    logical_id: str | None = None
    index_error: str | None = None

    @property
    def signatures(self) -> tuple[str, ...]:
        if self.finalize_signature is None:
            return self.chunk_signatures
        return (*self.chunk_signatures, self.finalize_signature)

    @property
    def indexed(self) -> bool:
        return self.logical_id is not None and self.index_error is None

    @property
    def signatures_spent(self) -> int:
        """Every transaction that reached the ledger, including failed attempts."""
        attempts = sum(1 for record in self.records if record.signature is not None)
        return self.single_submissions + attempts

    @property
    def cost_lamports(self) -> int:
        return self.signatures_spent * LAMPORTS_PER_SIGNATURE


class ChunkUploader:
    """
    Store one payload across chunk transactions of a fresh session.

    Usage:
        uploader = ChunkUploader(ledger, service, signer, TransferConfig())
        result = await uploader.upload(payload, compress=True, logical_id="doc-1")
    """

    def __init__(
        self,
        ledger: LedgerClient,
        service: SessionService,
        signer: TransactionSigner,
        config: TransferConfig | None = None,
        *,
        index: MetadataIndex | None = None,
    ) -> None:
        self._ledger = ledger
        self._service = service
        self._signer = signer
        self.config = config or TransferConfig()
        self._index = index
        self.tracker = ConfirmationTracker(
            ledger,
            commitment=self.config.commitment,
            poll_interval_seconds=self.config.poll_interval_seconds,
        )

    async def upload(
        self,
        payload: bytes,
        *,
        compress: bool = True,
        strategy: DispatchStrategy | None = None,
        logical_id: str | None = None,
        description: str = "",
        text_safe: bool = False,
    ) -> StorageResult:
        """
        Raises:
            InvalidInput: empty payload or chunk size outside the configured bounds
            SessionCreationFailed: session or storage could not be set up
            UploadFailed: chunks still unconfirmed after the last retry round
            FinalizationFailed: chunks are stored but the session stays Active

        A metadata index failure after finalization does not raise; it is
        reported through ``StorageResult.index_error``.
        """
        config = self.config
        encoded = encode(
            payload,
            compress,
            chunk_size=config.chunk_size,
            max_chunk_size=config.max_chunk_size,
            compression_threshold=config.compression_threshold,
            text_safe=text_safe,
        )
        _logger.info(
            f"Encoded {encoded.original_size} bytes -> {encoded.encoded_size} "
            f"({encoded.method.name.lower()}), {encoded.chunk_count} chunk(s)"
        )

        # One log and dispatcher per upload; nothing is shared across uploads
        log = DispatchLog()
        dispatcher = Dispatcher(self._ledger, self._signer, self.tracker, config, log)

        manager = SessionManager(self._service, dispatcher, self._signer.owner, config)
        session = await manager.create_session(encoded, new_session_id(), description)
        handle = session.session_handle

        loop = ChunkRetryLoop(
            dispatcher,
            retry_rounds=config.retry_rounds,
            first_wait=config.confirm_wait_seconds,
            retry_wait=config.retry_wait_seconds,
        )
        state = await loop.run(
            session.plan.chunk_txs, strategy or default_strategy(config), session.total_chunks
        )
        if not state.done:
            _logger.error(
                f"Upload to {handle} failed: {len(state.pending)} chunk(s) unconfirmed "
                f"after {state.round} round(s)"
            )
            raise UploadFailed(handle, state.unconfirmed, log.records) from _last_failure(
                log, state.unconfirmed, config.retry_wait_seconds
            )

        finalize_signature = await Finalizer(dispatcher, self._ledger).finalize(
            handle, session.plan.finalize_tx, state
        )

        index_error: str | None = None
        if logical_id is not None and self._index is not None:
            try:
                await self._index.record(logical_id, handle)
            except SessionIndexError as exc:
                # the session is finalized; the handle must reach the caller
                index_error = exc.message
                _logger.error(f"Session {handle} finalized but not indexed: {exc}")
            else:
                _logger.info(f"Indexed {logical_id} -> {handle}")

        return StorageResult(
            session_handle=handle,
            session_id=session.plan.session_id,
            total_chunks=session.total_chunks,
            chunk_signatures=tuple(state.confirmed_signatures()),
            finalize_signature=finalize_signature,
            create_signature=session.create_signature,
            init_signature=session.init_signature,
            single_submissions=dispatcher.single_submissions,
            records=log.records,
            content_digest=encoded.digest_hex,
            compressed=encoded.compressed,
            original_size=encoded.original_size,
            encoded_size=encoded.encoded_size,
            logical_id=logical_id,
            index_error=index_error,
        )


def _last_failure(
    log: DispatchLog, unconfirmed: list[int], waited_seconds: float
) -> ChunkDispatchFailed | ConfirmationTimeout:
    """The recoverable error behind the final round, chained onto UploadFailed."""
    last_attempts = [log.for_chunk(index)[-1] for index in unconfirmed if log.for_chunk(index)]
    timed_out = [record.signature for record in last_attempts if record.signature is not None]
    if timed_out:
        return ConfirmationTimeout(timed_out, waited_seconds)
    if last_attempts:
        return ChunkDispatchFailed(last_attempts[0].chunk_index, last_attempts[0].detail)
    return ChunkDispatchFailed(unconfirmed[0], "never dispatched")


__all__ = ["LAMPORTS_PER_SIGNATURE", "StorageResult", "ChunkUploader"]
