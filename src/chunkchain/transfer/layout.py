# src/chunkchain/transfer/layout.py
"""Binary layouts shared with the on-chain session program.

Session account (85 bytes, little-endian)::

    owner(32) | session_id(16) | total_chunks(u32) | digest(32) | status(u8)

Chunk instruction data::

    discriminator(u8 = 0x04) | session_id(16) | chunk_index(u32) | method(u8) | chunk bytes
"""

from __future__ import annotations

import struct
import uuid
from dataclasses import dataclass
from enum import IntEnum

import base58

from ..result import Failure, Result, Success
from .errors import LayoutError


POST_CHUNK_DISCRIMINATOR = 0x04

OWNER_SIZE = 32
SESSION_ID_SIZE = 16
DIGEST_SIZE = 32

_SESSION_ACCOUNT = struct.Struct("<32s16sI32sB")
_CHUNK_HEADER = struct.Struct("<B16sIB")

SESSION_ACCOUNT_SIZE = _SESSION_ACCOUNT.size  # 85
CHUNK_HEADER_SIZE = _CHUNK_HEADER.size  # 22


class SessionStatus(IntEnum):
    """On-chain session status byte. Transitions only ACTIVE -> FINALIZED."""

    ACTIVE = 0
    FINALIZED = 1


class EncodingMethod(IntEnum):
    """Method tag carried by every chunk instruction."""

    RAW = 0
    COMPRESSED = 1
    TEXT = 2


def new_session_id() -> bytes:
    """Fresh 16-byte session identifier (never reused across uploads)."""
    return uuid.uuid4().bytes


@dataclass(frozen=True)
class SessionAccount:
    """Decoded session account data."""

    owner: bytes
    session_id: bytes
    total_chunks: int
    digest: bytes
    status: SessionStatus

    @property
    def owner_address(self) -> str:
        return base58.b58encode(self.owner).decode("ascii")

    @property
    def is_finalized(self) -> bool:
        return self.status is SessionStatus.FINALIZED

    def encode(self) -> bytes:
        return _SESSION_ACCOUNT.pack(
            self.owner, self.session_id, self.total_chunks, self.digest, int(self.status)
        )

    @classmethod
    def decode(cls, data: bytes) -> SessionAccount:
        """
        Parse account bytes. Trailing bytes beyond the fixed layout are ignored.

        Raises:
            LayoutError: account is too short or carries an unknown status byte
        """
        if len(data) < SESSION_ACCOUNT_SIZE:
            raise LayoutError(
                f"Session account is {len(data)} bytes, expected at least {SESSION_ACCOUNT_SIZE}"
            )
        owner, session_id, total_chunks, digest, status = _SESSION_ACCOUNT.unpack_from(data)
        try:
            parsed_status = SessionStatus(status)
        except ValueError as exc:
            raise LayoutError(f"Unknown session status byte {status:#04x}") from exc
        return cls(
            owner=owner,
            session_id=session_id,
            total_chunks=total_chunks,
            digest=digest,
            status=parsed_status,
        )


@dataclass(frozen=True)
class ChunkInstruction:
    """One chunk as carried in transaction instruction data."""

    session_id: bytes
    index: int
    method: EncodingMethod
    data: bytes

    def encode(self) -> bytes:
        if len(self.session_id) != SESSION_ID_SIZE:
            raise LayoutError(f"session_id must be {SESSION_ID_SIZE} bytes")
        if not 0 <= self.index <= 0xFFFFFFFF:
            raise LayoutError(f"chunk index {self.index} does not fit in u32")
        header = _CHUNK_HEADER.pack(
            POST_CHUNK_DISCRIMINATOR, self.session_id, self.index, int(self.method)
        )
        return header + self.data


def parse_chunk_instruction(raw: bytes) -> Result[ChunkInstruction, str]:
    """
    Parse instruction data produced by :meth:`ChunkInstruction.encode`.

    History scans see every instruction that touched a session account, so a
    non-matching instruction is an expected Failure, not an exception.
    """
    if len(raw) <= CHUNK_HEADER_SIZE:
        return Failure(f"instruction data too short ({len(raw)} bytes)")
    discriminator, session_id, index, method = _CHUNK_HEADER.unpack_from(raw)
    if discriminator != POST_CHUNK_DISCRIMINATOR:
        return Failure(f"discriminator {discriminator:#04x} is not a chunk post")
    try:
        parsed_method = EncodingMethod(method)
    except ValueError:
        return Failure(f"unknown encoding method tag {method}")
    return Success(
        ChunkInstruction(
            session_id=session_id,
            index=index,
            method=parsed_method,
            data=raw[CHUNK_HEADER_SIZE:],
        )
    )


__all__ = [
    "POST_CHUNK_DISCRIMINATOR",
    "SESSION_ACCOUNT_SIZE",
    "CHUNK_HEADER_SIZE",
    "SESSION_ID_SIZE",
    "DIGEST_SIZE",
    "SessionStatus",
    "EncodingMethod",
    "SessionAccount",
    "ChunkInstruction",
    "parse_chunk_instruction",
    "new_session_id",
]
