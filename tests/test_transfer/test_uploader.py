# tests/test_transfer/test_uploader.py
"""End-to-end upload scenarios against in-memory ledger and service fakes."""

from __future__ import annotations

import os

import pytest

from chunkchain.transfer.config import TransferConfig
from chunkchain.transfer.dispatch import DispatchOutcome, Sequential
from chunkchain.transfer.encoder import COMPRESSED_MARKER, decode
from chunkchain.transfer.errors import (
    ConfirmationTimeout,
    FinalizationFailed,
    InvalidInput,
    SessionIndexError,
    UploadFailed,
)
from chunkchain.transfer.layout import SessionStatus
from chunkchain.transfer.retrieval import HistoryScan, Retriever, ServiceDownload
from chunkchain.transfer.uploader import LAMPORTS_PER_SIGNATURE, ChunkUploader
from tests.helpers import (
    FakeLedger,
    FakeSessionService,
    FakeSigner,
    RecordingIndex,
    session_account,
)
from tests.helpers.fakes import Behaviour


def _uploader(
    ledger: FakeLedger,
    signer: FakeSigner,
    service: FakeSessionService,
    config: TransferConfig,
    index: RecordingIndex | None = None,
) -> ChunkUploader:
    return ChunkUploader(ledger, service, signer, config, index=index)


@pytest.mark.asyncio
async def test_small_payload_single_chunk(
    ledger: FakeLedger, signer: FakeSigner, service: FakeSessionService, config: TransferConfig
) -> None:
    payload = bytes(range(50))
    result = await _uploader(ledger, signer, service, config).upload(payload, compress=True)

    assert result.total_chunks == 1
    assert not result.compressed
    assert len(result.signatures) == 2
    assert result.signatures[-1] == result.finalize_signature
    assert len(result.chunk_signatures) == 1
    assert result.original_size == 50
    assert [label for _, label, _ in ledger.submissions] == ["create", "init", "chunk:0", "finalize"]

    fetched = await Retriever(ServiceDownload(service), config).retrieve(result.session_handle)
    assert fetched.data == payload


@pytest.mark.asyncio
async def test_compressible_payload_round_trip(
    ledger: FakeLedger, signer: FakeSigner, service: FakeSessionService, config: TransferConfig
) -> None:
    payload = (b"0123456789abcdef" * 400)[:5000]
    result = await _uploader(ledger, signer, service, config).upload(payload, compress=True)

    assert result.compressed
    assert result.encoded_size < 5000
    stream = service.streams[result.session_handle]
    assert stream[0] == COMPRESSED_MARKER
    assert decode(stream) == payload

    fetched = await Retriever(ServiceDownload(service), config).retrieve(result.session_handle)
    assert fetched.data == payload
    assert fetched.size == 5000


@pytest.mark.asyncio
async def test_pending_chunk_retried_in_next_round(
    signer: FakeSigner, service: FakeSessionService, config: TransferConfig
) -> None:
    ledger = FakeLedger(
        signer,
        behaviour=lambda label, attempt: "pending" if label == "chunk:7" and attempt == 0 else "confirmed",
    )
    payload = os.urandom(6500)
    result = await _uploader(ledger, signer, service, config).upload(payload)

    assert result.total_chunks == 10
    assert len(result.signatures) == 11
    assert ledger.attempts_for("chunk:7") == 2

    retried = [ref for _, label, ref in ledger.submissions if label == "chunk:7"]
    assert len(set(retried)) == 2

    attempts = [record for record in result.records if record.chunk_index == 7]
    assert [record.outcome for record in attempts] == [
        DispatchOutcome.FAILED,
        DispatchOutcome.CONFIRMED,
    ]
    assert attempts[1].signature in result.signatures
    assert attempts[0].signature not in result.signatures
    assert result.signatures_spent == 2 + 11 + 1
    assert result.cost_lamports == result.signatures_spent * LAMPORTS_PER_SIGNATURE


@pytest.mark.asyncio
async def test_retry_exhaustion_raises_upload_failed(
    signer: FakeSigner, service: FakeSessionService, config: TransferConfig
) -> None:
    ledger = FakeLedger(
        signer, behaviour=lambda label, attempt: "pending" if label == "chunk:1" else "confirmed"
    )
    with pytest.raises(UploadFailed) as excinfo:
        await _uploader(ledger, signer, service, config).upload(os.urandom(2000))

    error = excinfo.value
    assert error.unconfirmed == (1,)
    assert isinstance(error.__cause__, ConfirmationTimeout)
    assert ledger.attempts_for("chunk:1") == config.retry_rounds + 1
    assert ledger.attempts_for("finalize") == 0
    assert len([r for r in error.records if r.chunk_index == 1]) == config.retry_rounds + 1


@pytest.mark.asyncio
async def test_finalize_failure_leaves_session_active(
    signer: FakeSigner, service: FakeSessionService, config: TransferConfig
) -> None:
    ledger = FakeLedger(
        signer, behaviour=lambda label, attempt: "failed" if label == "finalize" else "confirmed"
    )
    index = RecordingIndex()

    with pytest.raises(FinalizationFailed) as excinfo:
        await _uploader(ledger, signer, service, config, index).upload(
            b"x" * 300, logical_id="doc-1"
        )

    assert "not usable" in str(excinfo.value)
    assert ledger.confirmed_labels()[-1] == "chunk:0"
    assert index.entries == []


@pytest.mark.asyncio
async def test_logical_id_recorded_after_finalize(
    ledger: FakeLedger, signer: FakeSigner, service: FakeSessionService, config: TransferConfig
) -> None:
    index = RecordingIndex()
    result = await _uploader(ledger, signer, service, config, index).upload(
        b"indexed payload", logical_id="doc-42"
    )

    assert index.entries == [("doc-42", result.session_handle)]
    assert result.logical_id == "doc-42"


@pytest.mark.asyncio
async def test_empty_payload_rejected_before_network(
    ledger: FakeLedger, signer: FakeSigner, service: FakeSessionService, config: TransferConfig
) -> None:
    with pytest.raises(InvalidInput):
        await _uploader(ledger, signer, service, config).upload(b"")

    assert service.requests == []
    assert ledger.submissions == []


@pytest.mark.asyncio
async def test_sequential_strategy_and_history_retrieval(
    ledger: FakeLedger, signer: FakeSigner, service: FakeSessionService, config: TransferConfig
) -> None:
    payload = os.urandom(1500)
    result = await _uploader(ledger, signer, service, config).upload(
        payload, strategy=Sequential(delay_seconds=0.0)
    )
    assert result.total_chunks == 3

    ledger.accounts[result.session_handle] = session_account(service.plans[result.session_handle])
    fetched = await Retriever(HistoryScan(ledger), config).retrieve(result.session_handle)

    assert fetched.data == payload
    assert fetched.source == "history"


@pytest.mark.asyncio
async def test_text_safe_upload(
    ledger: FakeLedger, signer: FakeSigner, service: FakeSessionService, config: TransferConfig
) -> None:
    payload = b'{"note": "plain text memory"}' * 40
    result = await _uploader(ledger, signer, service, config).upload(payload, text_safe=True)

    assert service.requests[0].method == 2
    fetched = await Retriever(ServiceDownload(service), config).retrieve(result.session_handle)
    assert fetched.data == payload


@pytest.mark.asyncio
async def test_create_landing_late_counts_as_created(
    signer: FakeSigner, service: FakeSessionService, config: TransferConfig
) -> None:
    ledger = FakeLedger(
        signer,
        behaviour=lambda label, attempt: "pending" if label == "create" and attempt == 0 else "confirmed",
    )
    ledger.late_landing.add("create")
    payload = b"x" * 300

    result = await _uploader(ledger, signer, service, config).upload(payload)

    assert result.create_signature is None
    assert ledger.attempts_for("create") == 1
    assert ledger.confirmed_labels()[-1] == "finalize"
    assert result.signatures_spent == 3 + result.total_chunks
    fetched = await Retriever(ServiceDownload(service), config).retrieve(result.session_handle)
    assert fetched.data == payload


@pytest.mark.asyncio
async def test_finalize_landing_late_counts_as_finalized(
    signer: FakeSigner, service: FakeSessionService, config: TransferConfig
) -> None:
    def behaviour(label: str, attempt: int) -> Behaviour:
        if label == "finalize" and attempt == 0:
            (plan,) = service.plans.values()
            ledger.accounts[plan.session_handle] = session_account(plan, SessionStatus.FINALIZED)
            return "pending"
        return "confirmed"

    ledger = FakeLedger(signer, behaviour=behaviour)
    ledger.late_landing.add("finalize")
    index = RecordingIndex()

    result = await _uploader(ledger, signer, service, config, index).upload(
        b"x" * 300, logical_id="doc-1"
    )

    assert result.finalize_signature is None
    assert result.signatures == result.chunk_signatures
    assert ledger.attempts_for("finalize") == 1
    assert index.entries == [("doc-1", result.session_handle)]


@pytest.mark.asyncio
async def test_finalize_already_exists_but_account_active_fails(
    signer: FakeSigner, service: FakeSessionService, config: TransferConfig
) -> None:
    def behaviour(label: str, attempt: int) -> Behaviour:
        if label == "finalize":
            (plan,) = service.plans.values()
            ledger.accounts[plan.session_handle] = session_account(plan, SessionStatus.ACTIVE)
            return "pending"
        return "confirmed"

    ledger = FakeLedger(signer, behaviour=behaviour)
    ledger.late_landing.add("finalize")

    with pytest.raises(FinalizationFailed, match="not usable"):
        await _uploader(ledger, signer, service, config).upload(b"x" * 300)


class FailingIndex:
    async def record(self, logical_id: str, session_handle: str) -> None:
        raise SessionIndexError(logical_id, "S3 unavailable (SlowDown): try later")


@pytest.mark.asyncio
async def test_index_failure_still_returns_finalized_session(
    ledger: FakeLedger, signer: FakeSigner, service: FakeSessionService, config: TransferConfig
) -> None:
    payload = b"must not be lost " * 20
    uploader = ChunkUploader(ledger, service, signer, config, index=FailingIndex())

    result = await uploader.upload(payload, logical_id="doc-1")

    assert result.finalize_signature is not None
    assert result.logical_id == "doc-1"
    assert not result.indexed
    assert result.index_error is not None and "SlowDown" in result.index_error
    fetched = await Retriever(ServiceDownload(service), config).retrieve(result.session_handle)
    assert fetched.data == payload


@pytest.mark.asyncio
async def test_twenty_chunks_in_four_batches_then_finalized(
    ledger: FakeLedger, signer: FakeSigner, service: FakeSessionService, config: TransferConfig
) -> None:
    payload = os.urandom(13000)

    result = await _uploader(ledger, signer, service, config).upload(payload)

    assert result.total_chunks == 20
    assert len(result.chunk_signatures) == 20
    assert result.finalize_signature is not None
    assert result.signatures[-1] == result.finalize_signature
    chunk_queries = [query for query in ledger.status_queries if len(query) > 1]
    assert [len(query) for query in chunk_queries] == [5, 5, 5, 5]
    assert ledger.confirmed_labels()[-1] == "finalize"

    plan = service.plans[result.session_handle]
    ledger.accounts[result.session_handle] = session_account(plan, SessionStatus.FINALIZED)
    retriever = Retriever(HistoryScan(ledger), config)

    progress = await retriever.progress(result.session_handle)
    assert progress.snapshot.status is SessionStatus.FINALIZED
    assert progress.observed_chunks == 20

    fetched = await retriever.retrieve(result.session_handle)
    assert fetched.data == payload
    assert fetched.snapshot.status is SessionStatus.FINALIZED
