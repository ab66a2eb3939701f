# src/chunkchain/transfer/session.py
"""Session negotiation with the service and the one-time storage initialization."""

from __future__ import annotations

import base64
import logging
import re
from dataclasses import dataclass

from ..result import Failure, Success
from .config import TransferConfig
from .dispatch import Dispatcher
from .encoder import EncodedPayload
from .errors import SessionCreationFailed
from .layout import ChunkInstruction
from .models import SessionPlan, SessionRequest, TransactionTemplate
from .protocols import SessionService
from .transport_errors import describe


_logger = logging.getLogger(__name__)

_ALREADY_INITIALIZED = re.compile(
    r"0x0(?![0-9a-f])|\"custom\":0\b|already in use|already exists"
)


def is_already_initialized(error_text: str) -> bool:
    """True when a storage-initialization error means the account already exists."""
    normalized = error_text.lower().replace("\": ", "\":")
    return _ALREADY_INITIALIZED.search(normalized) is not None


@dataclass(frozen=True)
class CreatedSession:
    """A confirmed session plus the signatures spent creating it."""

    plan: SessionPlan
    create_signature: str | None
    init_signature: str | None

    @property
    def session_handle(self) -> str:
        return self.plan.session_handle

    @property
    def total_chunks(self) -> int:
        return self.plan.total_chunks


class SessionManager:
    """Create the session for an upload; no chunk may be sent before this returns."""

    def __init__(
        self,
        service: SessionService,
        dispatcher: Dispatcher,
        owner: str,
        config: TransferConfig,
    ) -> None:
        self._service = service
        self._dispatcher = dispatcher
        self.owner = owner
        self.config = config

    async def request_plan(
        self, encoded: EncodedPayload, session_id: bytes, description: str = ""
    ) -> SessionPlan:
        request = SessionRequest(
            pubkey=self.owner,
            sessionId=session_id.hex(),
            chunks=tuple(base64.b64encode(chunk).decode("ascii") for chunk in encoded.chunks),
            chunkSize=self.config.chunk_size,
            method=int(encoded.method),
            contentDigest=encoded.digest_hex,
            payloadDescription=description,
        )
        match await self._service.create_session(request):
            case Failure(error):
                _logger.error(f"Session service refused session {session_id.hex()}: {describe(error)}")
                raise SessionCreationFailed(describe(error))
            case Success(plan):
                validate_plan(plan, encoded, session_id)
                return plan

    async def create_session(
        self, encoded: EncodedPayload, session_id: bytes, description: str = ""
    ) -> CreatedSession:
        """
        Request a plan, then confirm the create-session transaction and storage init.

        Raises:
            SessionCreationFailed: service refusal, plan disagreeing with the
                local encoding, or a failed create / init transaction. An
                "already exists" failure of the create transaction counts as
                created; ``create_signature`` is then None.
        """
        plan = await self.request_plan(encoded, session_id, description)

        create_signature: str | None
        match await self._dispatcher.submit_and_confirm(plan.create_session_tx, "create session"):
            case Success(signature):
                create_signature = signature
            case Failure(message) if is_already_initialized(message):
                # an earlier attempt landed after its wait budget
                _logger.warning(f"Session {plan.session_handle} already exists: {message}")
                create_signature = None
            case Failure(message):
                _logger.error(f"Session {plan.session_handle} not created: {message}")
                raise SessionCreationFailed(message)

        init_signature = await self.ensure_storage_initialized(plan.init_storage_tx)
        _logger.info(
            f"Session {plan.session_handle} created ({plan.total_chunks} chunks, "
            f"digest {plan.content_digest[:16]})"
        )
        return CreatedSession(plan=plan, create_signature=create_signature, init_signature=init_signature)

    async def ensure_storage_initialized(self, template: TransactionTemplate | None) -> str | None:
        """
        Idempotent per-owner storage provisioning.

        Returns the init signature, or None when nothing was sent or the
        storage already existed.

        Raises:
            SessionCreationFailed: any error other than "already initialized"
        """
        if template is None:
            return None
        match await self._dispatcher.submit_and_confirm(template, "init storage"):
            case Success(signature):
                return signature
            case Failure(message) if is_already_initialized(message):
                _logger.info(f"Storage for {self.owner[:8]} already initialized")
                return None
            case Failure(message):
                _logger.error(f"Storage initialization failed: {message}")
                raise SessionCreationFailed(f"storage initialization failed: {message}")


def validate_plan(plan: SessionPlan, encoded: EncodedPayload, session_id: bytes) -> None:
    """
    Check the service plan against the local encoding.

    Structured chunk templates must carry, byte for byte, the chunk
    instruction built locally (session id, index, method tag, bytes). Opaque
    serialized templates cannot be inspected and are accepted as-is.

    Raises:
        SessionCreationFailed: on any disagreement
    """
    if plan.session_id != session_id.hex():
        raise SessionCreationFailed(
            f"service returned session id {plan.session_id}, expected {session_id.hex()}"
        )
    if plan.total_chunks != encoded.chunk_count:
        raise SessionCreationFailed(
            f"service declared {plan.total_chunks} chunks, payload has {encoded.chunk_count}"
        )
    if plan.content_digest != encoded.digest_hex:
        raise SessionCreationFailed(
            f"service digest {plan.content_digest[:16]} differs from local {encoded.digest_hex[:16]}"
        )

    for index, template in enumerate(plan.chunk_txs):
        if not template.instructions:
            continue
        expected = ChunkInstruction(
            session_id=session_id, index=index, method=encoded.method, data=encoded.chunks[index]
        ).encode()
        if not any(instruction.data == expected for instruction in template.instructions):
            raise SessionCreationFailed(
                f"chunk template {index} does not carry chunk {index} of session "
                f"{session_id.hex()} ({encoded.method.name.lower()})"
            )


__all__ = [
    "CreatedSession",
    "SessionManager",
    "is_already_initialized",
    "validate_plan",
]
