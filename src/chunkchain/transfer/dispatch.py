# src/chunkchain/transfer/dispatch.py
"""
Chunk transaction dispatch.

A dispatch *round* takes the chunk indices still needing a confirmed
submission, fetches one fresh reference, and walks them window by window:
submit the window, confirm it with one tracker pass, record every attempt,
then move to the next window. The window size is what distinguishes the
strategies.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

from ..result import Failure, Result, Success
from .config import TransferConfig
from .confirmation import ConfirmationReport, ConfirmationTracker
from .models import TransactionTemplate
from .protocols import LedgerClient, TransactionSigner
from .transport_errors import RpcTransactionFailed, describe


_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BatchedParallel:
    """Fixed-size windows submitted concurrently with staggered starts."""

    batch_size: int = 5
    stagger_seconds: float = 0.1


@dataclass(frozen=True)
class Sequential:
    """One chunk per window, with a pause between windows."""

    delay_seconds: float = 0.1


@dataclass(frozen=True)
class FireAndForget:
    """Every chunk submitted up front, then confirmed in one pass."""

    stagger_seconds: float = 0.0


DispatchStrategy = BatchedParallel | Sequential | FireAndForget


def default_strategy(config: TransferConfig) -> DispatchStrategy:
    return BatchedParallel(batch_size=config.batch_size, stagger_seconds=config.submit_stagger_seconds)


def windows(indices: Sequence[int], strategy: DispatchStrategy) -> list[list[int]]:
    """Partition ``indices`` (kept in order) into the windows of ``strategy``."""
    ordered = list(indices)
    match strategy:
        case BatchedParallel(batch_size=size):
            if size <= 0:
                raise ValueError(f"batch_size must be positive, got {size}")
            return [ordered[start : start + size] for start in range(0, len(ordered), size)]
        case Sequential():
            return [[index] for index in ordered]
        case FireAndForget():
            return [ordered] if ordered else []


def _stagger(strategy: DispatchStrategy) -> float:
    match strategy:
        case BatchedParallel(stagger_seconds=seconds) | FireAndForget(stagger_seconds=seconds):
            return seconds
        case Sequential():
            return 0.0


# ---------------------------------------------------------------------------
# Dispatch records
# ---------------------------------------------------------------------------


class DispatchOutcome(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class DispatchRecord:
    """One submission attempt of one chunk. ``signature`` is None when sending failed."""

    chunk_index: int
    signature: str | None
    attempt: int
    outcome: DispatchOutcome
    detail: str = ""


@dataclass
class DispatchLog:
    """Append-only list of dispatch records owned by a single upload."""

    _records: list[DispatchRecord] = field(default_factory=list)

    def append(self, record: DispatchRecord) -> None:
        self._records.append(record)

    @property
    def records(self) -> tuple[DispatchRecord, ...]:
        return tuple(self._records)

    def for_chunk(self, chunk_index: int) -> list[DispatchRecord]:
        return [record for record in self._records if record.chunk_index == chunk_index]

    def signatures(self) -> list[str]:
        """Every signature that reached the ledger, confirmed or not."""
        return [record.signature for record in self._records if record.signature is not None]

    def __len__(self) -> int:
        return len(self._records)


@dataclass(frozen=True)
class RoundOutcome:
    """Chunk-level result of one dispatch round."""

    confirmed: dict[int, str]
    failed: frozenset[int]


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class Dispatcher:
    """Sign, submit and confirm transactions against the ledger."""

    def __init__(
        self,
        ledger: LedgerClient,
        signer: TransactionSigner,
        tracker: ConfirmationTracker,
        config: TransferConfig,
        log: DispatchLog | None = None,
    ) -> None:
        self._ledger = ledger
        self._signer = signer
        self._tracker = tracker
        self.config = config
        self.log = log if log is not None else DispatchLog()
        # create / init / finalize transactions sent, retried attempts included
        self.single_submissions = 0

    async def fresh_reference(self) -> Result[str, str]:
        return (await self._ledger.latest_reference()).map_error(describe)

    async def submit_chunk(
        self, chunk_index: int, template: TransactionTemplate, reference: str, attempt: int
    ) -> DispatchRecord:
        """Sign and send one chunk transaction. Never waits for confirmation."""
        signed = await self._signer.sign(template, reference)
        match await self._ledger.submit_transaction(signed):
            case Success(signature):
                _logger.debug(f"Chunk {chunk_index} attempt {attempt} sent: {signature[:16]}")
                return DispatchRecord(chunk_index, signature, attempt, DispatchOutcome.PENDING)
            case Failure(error):
                _logger.warning(f"Chunk {chunk_index} attempt {attempt} not sent: {describe(error)}")
                return DispatchRecord(
                    chunk_index, None, attempt, DispatchOutcome.FAILED, detail=describe(error)
                )

    async def submit_window(
        self,
        window: Sequence[int],
        templates: Mapping[int, TransactionTemplate] | Sequence[TransactionTemplate],
        reference: str,
        attempt: int,
        stagger_seconds: float,
    ) -> list[DispatchRecord]:
        """Submit a window concurrently; the i-th submission starts after ``i * stagger``."""

        async def staggered(position: int, chunk_index: int) -> DispatchRecord:
            if position and stagger_seconds > 0:
                await asyncio.sleep(position * stagger_seconds)
            return await self.submit_chunk(chunk_index, templates[chunk_index], reference, attempt)

        return list(
            await asyncio.gather(
                *(staggered(position, index) for position, index in enumerate(window))
            )
        )

    async def dispatch_round(
        self,
        indices: Sequence[int],
        templates: Mapping[int, TransactionTemplate] | Sequence[TransactionTemplate],
        strategy: DispatchStrategy,
        *,
        attempt: int,
        max_wait: float,
    ) -> RoundOutcome:
        """
        Dispatch and confirm ``indices`` window by window under one reference.

        Every attempt is appended to :attr:`log` with its final outcome.
        """
        match await self.fresh_reference():
            case Failure(message):
                _logger.warning(f"Round {attempt}: no reference available ({message})")
                for index in indices:
                    self.log.append(
                        DispatchRecord(index, None, attempt, DispatchOutcome.FAILED, detail=message)
                    )
                return RoundOutcome(confirmed={}, failed=frozenset(indices))
            case Success(reference):
                pass

        confirmed: dict[int, str] = {}
        failed: set[int] = set()
        planned = windows(indices, strategy)
        for number, window in enumerate(planned):
            if number and isinstance(strategy, Sequential) and strategy.delay_seconds > 0:
                await asyncio.sleep(strategy.delay_seconds)

            records = await self.submit_window(
                window, templates, reference, attempt, _stagger(strategy)
            )
            sent = [record.signature for record in records if record.signature is not None]
            report = (
                await self._tracker.confirm(sent, max_wait) if sent else ConfirmationReport.empty()
            )

            for record in records:
                if record.signature is None:
                    self.log.append(record)
                    failed.add(record.chunk_index)
                elif record.signature in report.confirmed:
                    self.log.append(_resolved(record, DispatchOutcome.CONFIRMED))
                    confirmed[record.chunk_index] = record.signature
                else:
                    detail = report.errors.get(record.signature, "not confirmed in time")
                    self.log.append(_resolved(record, DispatchOutcome.FAILED, detail))
                    failed.add(record.chunk_index)

            _logger.info(
                f"Round {attempt} window {number + 1}/{len(planned)}: "
                f"{sum(1 for r in records if r.chunk_index in confirmed)}/{len(window)} confirmed"
            )

        return RoundOutcome(confirmed=confirmed, failed=frozenset(failed))

    async def submit_and_confirm(self, template: TransactionTemplate, label: str) -> Result[str, str]:
        """
        Single-transaction discipline used for session setup and finalization.

        Up to ``submit_attempts`` attempts, each with a fresh reference, an
        optional simulation, one submission and a batch-of-one confirmation.
        A simulation or on-ledger program error is returned at once; transport
        failures and confirmation timeouts are retried with linear back-off.
        """
        last_error = "no attempt made"
        for attempt in range(1, self.config.submit_attempts + 1):
            if attempt > 1:
                await asyncio.sleep(self.config.poll_interval_seconds * (attempt - 1))

            match await self.fresh_reference():
                case Failure(message):
                    last_error = message
                    _logger.warning(f"{label}: attempt {attempt} has no reference ({message})")
                    continue
                case Success(reference):
                    pass

            signed = await self._signer.sign(template, reference)

            if self.config.simulate_before_submit:
                match await self._ledger.simulate_transaction(signed):
                    case Failure(RpcTransactionFailed() as error):
                        return Failure(describe(error))
                    case Failure(error):
                        last_error = describe(error)
                        _logger.warning(f"{label}: simulation attempt {attempt} failed: {last_error}")
                        continue
                    case Success():
                        pass

            match await self._ledger.submit_transaction(signed):
                case Failure(error):
                    last_error = describe(error)
                    _logger.warning(f"{label}: submit attempt {attempt} failed: {last_error}")
                    continue
                case Success(signature):
                    self.single_submissions += 1

            report = await self._tracker.confirm([signature], self.config.confirm_wait_seconds)
            if signature in report.confirmed:
                _logger.info(f"{label} confirmed: {signature[:16]}")
                return Success(signature)
            if signature in report.failed:
                return Failure(
                    describe(RpcTransactionFailed(signature, report.errors.get(signature, "")))
                )
            last_error = f"{signature[:16]} not confirmed within {self.config.confirm_wait_seconds:.0f}s"
            _logger.warning(f"{label}: attempt {attempt}: {last_error}")

        return Failure(f"{label} failed after {self.config.submit_attempts} attempt(s): {last_error}")


def _resolved(record: DispatchRecord, outcome: DispatchOutcome, detail: str = "") -> DispatchRecord:
    return DispatchRecord(record.chunk_index, record.signature, record.attempt, outcome, detail)


__all__ = [
    "BatchedParallel",
    "Sequential",
    "FireAndForget",
    "DispatchStrategy",
    "default_strategy",
    "windows",
    "DispatchOutcome",
    "DispatchRecord",
    "DispatchLog",
    "RoundOutcome",
    "Dispatcher",
]
