# src/chunkchain/transfer/models.py
"""Wire models for the session service and value types for ledger state."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..result import Success
from .config import Commitment
from .layout import (
    DIGEST_SIZE,
    SESSION_ID_SIZE,
    ChunkInstruction,
    SessionAccount,
    SessionStatus,
    parse_chunk_instruction,
)


_COMMITMENT_RANK: dict[str, int] = {"processed": 0, "confirmed": 1, "finalized": 2}

_WIRE_CONFIG = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


def _decode_bytes(value: object) -> object:
    """Accept base64 text, a list of byte values, or a JSON-serialized Buffer."""
    if isinstance(value, str):
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError(f"expected base64 text: {exc}") from exc
    if isinstance(value, dict) and value.get("type") == "Buffer":
        value = value.get("data")
    if isinstance(value, list):
        return bytes(value)
    return value


def _check_hex(value: str, size: int, name: str) -> str:
    try:
        raw = bytes.fromhex(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be hex: {exc}") from exc
    if len(raw) != size:
        raise ValueError(f"{name} must be {size} bytes, got {len(raw)}")
    return value.lower()


# ---------------------------------------------------------------------------
# Transaction templates (opaque signable payloads from the session service)
# ---------------------------------------------------------------------------


class InstructionAccount(BaseModel):
    pubkey: str
    is_signer: bool = Field(False, alias="isSigner")
    is_writable: bool = Field(False, alias="isWritable")

    model_config = _WIRE_CONFIG


class InstructionTemplate(BaseModel):
    program_id: str = Field(..., alias="programId")
    keys: tuple[InstructionAccount, ...] = ()
    data: bytes

    model_config = _WIRE_CONFIG

    @field_validator("data", mode="before")
    @classmethod
    def _coerce_data(cls, value: object) -> object:
        return _decode_bytes(value)


class TransactionTemplate(BaseModel):
    """
    One unsigned transaction as handed out by the session service.

    The service emits three shapes: a base64 serialized transaction, an object
    with a nested ``transaction``, or a bare ``{"instructions": [...]}``
    object. All three normalize to this model.
    """

    serialized: bytes | None = None
    instructions: tuple[InstructionTemplate, ...] = ()
    fee_payer: str | None = Field(None, alias="feePayer")

    model_config = _WIRE_CONFIG

    @model_validator(mode="before")
    @classmethod
    def _unwrap(cls, value: object) -> object:
        if isinstance(value, str):
            return {"serialized": value}
        if isinstance(value, dict) and "transaction" in value:
            inner = value["transaction"]
            return {"serialized": inner} if isinstance(inner, str) else inner
        return value

    @field_validator("serialized", mode="before")
    @classmethod
    def _coerce_serialized(cls, value: object) -> object:
        return None if value is None else _decode_bytes(value)

    @model_validator(mode="after")
    def _not_empty(self) -> TransactionTemplate:
        if self.serialized is None and not self.instructions:
            raise ValueError("transaction template carries neither bytes nor instructions")
        return self

    def chunk_instructions(self) -> list[ChunkInstruction]:
        """Chunk-post instructions found in a structured template."""
        found: list[ChunkInstruction] = []
        for instruction in self.instructions:
            match parse_chunk_instruction(instruction.data):
                case Success(chunk):
                    found.append(chunk)
                case _:
                    continue
        return found


# ---------------------------------------------------------------------------
# Session service request / responses
# ---------------------------------------------------------------------------


class SessionRequest(BaseModel):
    """Body of ``POST /api/v2/inscribe/pinocchio``."""

    pubkey: str
    session_id: str = Field(..., alias="sessionId")
    chunks: tuple[str, ...]
    chunk_size: int = Field(..., alias="chunkSize", gt=0)
    method: int = Field(0, ge=0, le=255)
    content_digest: str = Field(..., alias="contentDigest")
    description: str = Field("", alias="payloadDescription")

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")


class SessionPlan(BaseModel):
    """Response of session creation: handle, digest and every transaction to sign."""

    session_id: str = Field(..., alias="sessionId")
    session_handle: str = Field(..., alias="sessionPubkey")
    create_session_tx: TransactionTemplate = Field(..., alias="createSessionTransaction")
    init_storage_tx: TransactionTemplate | None = Field(None, alias="initStorageTransaction")
    chunk_txs: tuple[TransactionTemplate, ...] = Field(..., alias="chunkTransactions")
    finalize_tx: TransactionTemplate = Field(..., alias="finalizeTransaction")
    content_digest: str = Field(..., alias="merkleRoot")
    total_chunks: int = Field(..., alias="totalChunks", gt=0)

    model_config = _WIRE_CONFIG

    @model_validator(mode="before")
    @classmethod
    def _default_handle(cls, value: object) -> object:
        # Older service builds only return sessionId and use it as the handle.
        if isinstance(value, dict) and "sessionPubkey" not in value and "session_handle" not in value:
            return {**value, "sessionPubkey": value.get("sessionId")}
        return value

    @field_validator("session_id")
    @classmethod
    def _session_id_hex(cls, value: str) -> str:
        return _check_hex(value, SESSION_ID_SIZE, "sessionId")

    @field_validator("content_digest")
    @classmethod
    def _digest_hex(cls, value: str) -> str:
        return _check_hex(value, DIGEST_SIZE, "merkleRoot")

    @model_validator(mode="after")
    def _one_template_per_chunk(self) -> SessionPlan:
        if len(self.chunk_txs) != self.total_chunks:
            raise ValueError(
                f"{len(self.chunk_txs)} chunk transactions for {self.total_chunks} declared chunks"
            )
        return self


class SessionMetadata(BaseModel):
    """Response of ``GET /api/v2/inscribe/session/{handle}``."""

    owner: str
    session_id: str = Field(..., alias="sessionId")
    total_chunks: int = Field(..., alias="totalChunks", ge=0)
    content_digest: str = Field(..., alias="merkleRoot")
    status: Literal["active", "finalized"]

    model_config = _WIRE_CONFIG

    @field_validator("status", mode="before")
    @classmethod
    def _lower_status(cls, value: object) -> object:
        return value.lower() if isinstance(value, str) else value

    @field_validator("session_id")
    @classmethod
    def _session_id_hex(cls, value: str) -> str:
        return _check_hex(value, SESSION_ID_SIZE, "sessionId")

    @field_validator("content_digest")
    @classmethod
    def _digest_hex(cls, value: str) -> str:
        return _check_hex(value, DIGEST_SIZE, "merkleRoot")

    def snapshot(self, session_handle: str) -> SessionSnapshot:
        return SessionSnapshot(
            session_handle=session_handle,
            owner=self.owner,
            session_id=bytes.fromhex(self.session_id),
            total_chunks=self.total_chunks,
            digest=bytes.fromhex(self.content_digest),
            status=SessionStatus.FINALIZED if self.status == "finalized" else SessionStatus.ACTIVE,
        )


# ---------------------------------------------------------------------------
# Ledger-side value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionSnapshot:
    """Session metadata as observed at one point in time (from ledger or service)."""

    session_handle: str
    owner: str
    session_id: bytes
    total_chunks: int
    digest: bytes
    status: SessionStatus

    @property
    def is_finalized(self) -> bool:
        return self.status is SessionStatus.FINALIZED

    @classmethod
    def from_account(cls, session_handle: str, account: SessionAccount) -> SessionSnapshot:
        return cls(
            session_handle=session_handle,
            owner=account.owner_address,
            session_id=account.session_id,
            total_chunks=account.total_chunks,
            digest=account.digest,
            status=account.status,
        )


@dataclass(frozen=True)
class SignatureStatus:
    """One entry of a ``getSignatureStatuses`` answer (``None`` entries mean unseen)."""

    confirmation_status: str | None
    err: str | None = None

    @property
    def failed(self) -> bool:
        return self.err is not None

    def reached(self, commitment: Commitment) -> bool:
        if self.confirmation_status is None:
            return False
        rank = _COMMITMENT_RANK.get(self.confirmation_status, -1)
        return rank >= _COMMITMENT_RANK[commitment]


@dataclass(frozen=True)
class HistoryEntry:
    """A transaction that touched an account, reduced to its instruction data."""

    signature: str
    instructions: tuple[bytes, ...]


__all__ = [
    "InstructionAccount",
    "InstructionTemplate",
    "TransactionTemplate",
    "SessionRequest",
    "SessionPlan",
    "SessionMetadata",
    "SessionSnapshot",
    "SignatureStatus",
    "HistoryEntry",
]
