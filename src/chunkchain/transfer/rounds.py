# src/chunkchain/transfer/rounds.py
"""Bounded retry state machine for chunk dispatch rounds."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from .dispatch import Dispatcher, DispatchStrategy, RoundOutcome
from .models import TransactionTemplate


_logger = logging.getLogger(__name__)


@dataclass
class TransferState:
    """
    Progress of one upload's chunk phase.

    ``pending`` holds indices still lacking a confirmed submission. Indices move
    from ``pending`` to ``confirmed`` and never back; ``failed`` is the set of
    indices that did not confirm in the most recent round.
    """

    total_chunks: int
    round: int = 0
    pending: set[int] = field(default_factory=set)
    confirmed: dict[int, str] = field(default_factory=dict)
    failed: set[int] = field(default_factory=set)

    @classmethod
    def start(cls, total_chunks: int) -> TransferState:
        return cls(total_chunks=total_chunks, pending=set(range(total_chunks)))

    @property
    def done(self) -> bool:
        return not self.pending

    @property
    def unconfirmed(self) -> list[int]:
        return sorted(self.pending)

    def apply(self, outcome: RoundOutcome) -> None:
        overlap = set(outcome.confirmed) & outcome.failed
        if overlap:
            raise ValueError(f"Indices {sorted(overlap)} both confirmed and failed")
        for index, signature in outcome.confirmed.items():
            if index in self.pending:
                self.confirmed[index] = signature
        self.pending -= set(outcome.confirmed)
        self.failed = set(outcome.failed) & self.pending
        self.round += 1

    def confirmed_signatures(self) -> list[str]:
        """Confirmed chunk signatures in chunk-index order."""
        return [self.confirmed[index] for index in sorted(self.confirmed)]


class ChunkRetryLoop:
    """
    Drive dispatch rounds until every chunk is confirmed or the budget is spent.

    Round 0 waits ``first_wait`` per window; each of the ``retry_rounds``
    follow-up rounds waits ``retry_wait`` and re-dispatches only the indices
    still pending, with a fresh reference and new signatures.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        retry_rounds: int,
        first_wait: float,
        retry_wait: float,
    ) -> None:
        self._dispatcher = dispatcher
        self.retry_rounds = retry_rounds
        self.first_wait = first_wait
        self.retry_wait = retry_wait

    async def run(
        self,
        templates: Mapping[int, TransactionTemplate] | Sequence[TransactionTemplate],
        strategy: DispatchStrategy,
        total_chunks: int | None = None,
    ) -> TransferState:
        state = TransferState.start(len(templates) if total_chunks is None else total_chunks)

        while not state.done and state.round <= self.retry_rounds:
            if state.round:
                _logger.warning(
                    f"Retry round {state.round}/{self.retry_rounds} for "
                    f"{len(state.pending)} chunk(s): {state.unconfirmed[:10]}"
                )
            outcome = await self._dispatcher.dispatch_round(
                state.unconfirmed,
                templates,
                strategy,
                attempt=state.round + 1,
                max_wait=self.first_wait if state.round == 0 else self.retry_wait,
            )
            state.apply(outcome)
            _logger.info(
                f"Round {state.round}: {len(state.confirmed)}/{state.total_chunks} chunks confirmed"
            )

        return state


__all__ = ["TransferState", "ChunkRetryLoop"]
