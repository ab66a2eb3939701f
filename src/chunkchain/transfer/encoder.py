# src/chunkchain/transfer/encoder.py
"""
Payload encoding: envelope marker, optional compression, chunking, digest.

Every encoded stream starts with one reserved marker byte, so decoding never
has to guess. A raw payload is wrapped as ``RAW_MARKER + payload`` even when
its own first byte happens to equal a marker value.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import math
import zlib
from dataclasses import dataclass

from .errors import CorruptPayload, InvalidInput
from .layout import EncodingMethod


_logger = logging.getLogger(__name__)

RAW_MARKER = 0xC0
COMPRESSED_MARKER = 0xC1
TEXT_MARKER = 0xC2

_MARKERS = frozenset({RAW_MARKER, COMPRESSED_MARKER, TEXT_MARKER})


@dataclass(frozen=True)
class EncodedPayload:
    """
    Encoder output: the marked byte stream and its fixed-size chunks.

    ``digest`` is SHA-256 over ``stream`` (not per chunk), so it does not
    depend on the chunk size.
    """

    stream: bytes
    chunks: tuple[bytes, ...]
    digest: bytes
    method: EncodingMethod
    compressed: bool
    original_size: int

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)

    @property
    def encoded_size(self) -> int:
        return len(self.stream)

    @property
    def digest_hex(self) -> str:
        return self.digest.hex()


def content_digest(stream: bytes) -> bytes:
    """SHA-256 fingerprint of a full encoded stream."""
    return hashlib.sha256(stream).digest()


def chunk_count(length: int, chunk_size: int) -> int:
    return math.ceil(length / chunk_size)


def split_chunks(stream: bytes, chunk_size: int) -> tuple[bytes, ...]:
    """Fixed-size slices; only the last one may be shorter. Never yields empty chunks."""
    if chunk_size <= 0:
        raise InvalidInput(f"chunk_size must be positive, got {chunk_size}")
    return tuple(stream[offset : offset + chunk_size] for offset in range(0, len(stream), chunk_size))


def encode(
    payload: bytes,
    compress: bool,
    *,
    chunk_size: int,
    max_chunk_size: int | None = None,
    compression_threshold: int = 50,
    text_safe: bool = False,
) -> EncodedPayload:
    """
    Encode ``payload`` into a marked stream and split it into chunks.

    Compression is skipped silently for payloads no longer than
    ``compression_threshold`` and whenever zlib output is not smaller than the
    input. ``text_safe`` wraps the marked stream in base64 behind ``TEXT_MARKER``.

    Raises:
        InvalidInput: empty payload, or chunk size outside ``(0, max_chunk_size]``
    """
    if not payload:
        raise InvalidInput("Refusing to encode an empty payload")
    if chunk_size <= 0 or (max_chunk_size is not None and chunk_size > max_chunk_size):
        raise InvalidInput(f"Chunk size {chunk_size} outside (0, {max_chunk_size}]")

    method = EncodingMethod.RAW
    body = bytes([RAW_MARKER]) + payload
    compressed = False
    if compress and len(payload) > compression_threshold:
        squeezed = zlib.compress(payload, 9)
        if len(squeezed) < len(payload):
            body = bytes([COMPRESSED_MARKER]) + squeezed
            method = EncodingMethod.COMPRESSED
            compressed = True
        else:
            _logger.debug(
                f"Compression skipped: {len(payload)} -> {len(squeezed)} bytes would not help"
            )

    if text_safe:
        body = bytes([TEXT_MARKER]) + base64.b64encode(body)
        method = EncodingMethod.TEXT

    return EncodedPayload(
        stream=body,
        chunks=split_chunks(body, chunk_size),
        digest=content_digest(body),
        method=method,
        compressed=compressed,
        original_size=len(payload),
    )


def decode(stream: bytes) -> bytes:
    """
    Reverse :func:`encode`: text layer first, then the compression layer.

    A stream that does not start with a known marker predates the envelope
    and is returned unchanged.

    Raises:
        CorruptPayload: a marker is present but its body does not decode
    """
    if not stream or stream[0] not in _MARKERS:
        _logger.warning("Stream has no envelope marker; returning it unchanged")
        return stream

    if stream[0] == TEXT_MARKER:
        try:
            stream = base64.b64decode(stream[1:], validate=True)
        except (binascii.Error, ValueError) as exc:
            raise CorruptPayload(f"Text-safe layer is not valid base64: {exc}") from exc
        if not stream or stream[0] not in (RAW_MARKER, COMPRESSED_MARKER):
            raise CorruptPayload("Text-safe layer does not wrap a marked stream")

    if stream[0] == COMPRESSED_MARKER:
        try:
            return zlib.decompress(stream[1:])
        except zlib.error as exc:
            raise CorruptPayload(f"Compressed layer does not inflate: {exc}") from exc

    return stream[1:]


__all__ = [
    "RAW_MARKER",
    "COMPRESSED_MARKER",
    "TEXT_MARKER",
    "EncodedPayload",
    "content_digest",
    "chunk_count",
    "split_chunks",
    "encode",
    "decode",
]
