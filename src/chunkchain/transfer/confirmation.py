# src/chunkchain/transfer/confirmation.py
"""
Batched confirmation tracking.

Each polling round issues exactly one ``get_signature_statuses`` call covering
every still-outstanding signature. Confirmed and failed signatures leave the
outstanding set for good.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field

from ..result import Failure, Success
from .config import Commitment
from .protocols import LedgerClient
from .transport_errors import describe


_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfirmationReport:
    """
    Outcome of one :meth:`ConfirmationTracker.confirm` pass.

    ``confirmed``, ``failed`` and ``pending`` are pairwise disjoint. Entries still
    pending when the budget ran out count as unresolved, like failures.
    """

    confirmed: frozenset[str]
    failed: frozenset[str]
    pending: frozenset[str]
    polls: int
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def unresolved(self) -> frozenset[str]:
        return self.failed | self.pending

    @property
    def all_confirmed(self) -> bool:
        return not self.failed and not self.pending

    @classmethod
    def empty(cls) -> ConfirmationReport:
        return cls(confirmed=frozenset(), failed=frozenset(), pending=frozenset(), polls=0)


class ConfirmationTracker:
    """Poll signature statuses in batches until resolved or out of time."""

    def __init__(
        self,
        ledger: LedgerClient,
        *,
        commitment: Commitment = "confirmed",
        poll_interval_seconds: float = 1.0,
    ) -> None:
        self._ledger = ledger
        self.commitment: Commitment = commitment
        self.poll_interval_seconds = poll_interval_seconds

    async def confirm(self, signatures: Sequence[str], max_wait: float) -> ConfirmationReport:
        """
        Classify ``signatures`` as confirmed, failed or (at timeout) pending.

        At least one status query is always made, even with a zero budget.
        A failed status query is logged and the round is simply retried at the
        next interval; it never marks a signature failed by itself.
        """
        outstanding = list(dict.fromkeys(signatures))
        if not outstanding:
            return ConfirmationReport.empty()

        confirmed: set[str] = set()
        failed: set[str] = set()
        errors: dict[str, str] = {}
        deadline = time.monotonic() + max_wait
        polls = 0

        while outstanding:
            polls += 1
            match await self._ledger.get_signature_statuses(outstanding):
                case Failure(error):
                    _logger.warning(f"Status poll {polls} failed: {describe(error)}")
                case Success(statuses):
                    for signature, status in zip(outstanding, statuses):
                        if status is None:
                            continue
                        if status.failed:
                            failed.add(signature)
                            errors[signature] = status.err or ""
                        elif status.reached(self.commitment):
                            confirmed.add(signature)
                    outstanding = [s for s in outstanding if s not in confirmed and s not in failed]

            remaining = deadline - time.monotonic()
            if not outstanding or remaining <= 0:
                break
            await asyncio.sleep(min(self.poll_interval_seconds, remaining))

        if outstanding:
            _logger.warning(
                f"{len(outstanding)} signature(s) unresolved after {max_wait:.1f}s ({polls} polls)"
            )
        return ConfirmationReport(
            confirmed=frozenset(confirmed),
            failed=frozenset(failed),
            pending=frozenset(outstanding),
            polls=polls,
            errors=errors,
        )


__all__ = ["ConfirmationReport", "ConfirmationTracker"]
