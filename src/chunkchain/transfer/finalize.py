# src/chunkchain/transfer/finalize.py
"""Session finalization."""

from __future__ import annotations

import logging

from ..result import Failure, Success
from .dispatch import Dispatcher
from .errors import FinalizationFailed, LayoutError
from .layout import SessionAccount, SessionStatus
from .models import TransactionTemplate
from .protocols import LedgerClient
from .rounds import TransferState
from .transport_errors import describe


_logger = logging.getLogger(__name__)


class Finalizer:
    """Submit the closing transaction once every chunk is confirmed."""

    def __init__(self, dispatcher: Dispatcher, ledger: LedgerClient) -> None:
        self._dispatcher = dispatcher
        self._ledger = ledger

    async def finalize(
        self, session_handle: str, template: TransactionTemplate, state: TransferState
    ) -> str | None:
        """
        Returns the finalize signature, or None when the finalize transaction
        failed but the session account already reads Finalized (an earlier
        attempt landed after its wait budget).

        Raises:
            FinalizationFailed: chunks still pending, or the finalize
                transaction itself failed (the session stays Active)
        """
        if not state.done:
            raise FinalizationFailed(
                session_handle, f"chunk(s) {state.unconfirmed[:10]} have no confirmed submission"
            )
        match await self._dispatcher.submit_and_confirm(template, "finalize"):
            case Success(signature):
                _logger.info(f"Session {session_handle} finalized: {signature[:16]}")
                return signature
            case Failure(message):
                pass

        status = await self.session_status(session_handle)
        if status is SessionStatus.FINALIZED:
            _logger.warning(f"Session {session_handle} already finalized: {message}")
            return None
        _logger.error(f"Finalization of {session_handle} failed: {message}")
        raise FinalizationFailed(session_handle, message)

    async def session_status(self, session_handle: str) -> SessionStatus | None:
        """Status byte of the session account, or None when it cannot be read."""
        match await self._ledger.get_account_info(session_handle):
            case Success(None):
                return None
            case Success(data):
                try:
                    return SessionAccount.decode(data).status
                except LayoutError as exc:
                    _logger.warning(f"Session account {session_handle} unreadable: {exc}")
                    return None
            case Failure(error):
                _logger.warning(f"Session account {session_handle} unavailable: {describe(error)}")
                return None


__all__ = ["Finalizer"]
