# tests/test_transfer/test_encoder.py
"""Tests for payload encoding: markers, compression gate, chunking and digest."""

from __future__ import annotations

import base64
import hashlib
import math
import os
import zlib

import pytest

from chunkchain.transfer.encoder import (
    COMPRESSED_MARKER,
    RAW_MARKER,
    TEXT_MARKER,
    chunk_count,
    decode,
    encode,
    split_chunks,
)
from chunkchain.transfer.errors import CorruptPayload, InvalidInput
from chunkchain.transfer.layout import EncodingMethod


def test_fifty_byte_payload_is_one_raw_chunk() -> None:
    payload = bytes(range(50))
    encoded = encode(payload, True, chunk_size=675)

    assert encoded.chunk_count == 1
    assert not encoded.compressed
    assert encoded.method is EncodingMethod.RAW
    assert encoded.stream[0] == RAW_MARKER
    assert decode(encoded.stream) == payload


def test_compressible_payload_starts_with_compression_marker() -> None:
    payload = (b"ledger chunk payload " * 250)[:5000]
    encoded = encode(payload, True, chunk_size=675)

    assert encoded.compressed
    assert encoded.method is EncodingMethod.COMPRESSED
    assert encoded.encoded_size < len(payload)
    assert encoded.stream[0] == COMPRESSED_MARKER
    assert decode(encoded.stream) == payload
    assert len(decode(encoded.stream)) == 5000


def test_compression_skipped_when_it_does_not_help() -> None:
    payload = os.urandom(2000)
    encoded = encode(payload, True, chunk_size=675)

    assert not encoded.compressed
    assert encoded.stream == bytes([RAW_MARKER]) + payload


def test_compression_not_requested() -> None:
    payload = b"a" * 1000
    encoded = encode(payload, False, chunk_size=675)

    assert not encoded.compressed
    assert encoded.stream[0] == RAW_MARKER


@pytest.mark.parametrize("size", [1, 49, 50, 51, 674, 675, 676, 1349, 1350, 10_000])
def test_chunk_count_matches_ceiling(size: int) -> None:
    encoded = encode(os.urandom(size), True, chunk_size=675)

    assert encoded.chunk_count == math.ceil(encoded.encoded_size / 675)
    assert encoded.chunk_count == chunk_count(encoded.encoded_size, 675)
    assert all(0 < len(chunk) <= 675 for chunk in encoded.chunks)
    assert all(len(chunk) == 675 for chunk in encoded.chunks[:-1])
    assert b"".join(encoded.chunks) == encoded.stream


def test_digest_covers_full_stream_and_ignores_chunk_size() -> None:
    payload = b"digest me " * 300
    small = encode(payload, False, chunk_size=100)
    large = encode(payload, False, chunk_size=675)

    assert small.digest == large.digest
    assert small.digest == hashlib.sha256(small.stream).digest()
    assert (small.chunk_count, large.chunk_count) == (31, 5)


def test_empty_payload_rejected() -> None:
    with pytest.raises(InvalidInput):
        encode(b"", True, chunk_size=675)


def test_chunk_size_above_ceiling_rejected() -> None:
    with pytest.raises(InvalidInput):
        encode(b"payload", False, chunk_size=1000, max_chunk_size=900)


def test_non_positive_chunk_size_rejected() -> None:
    with pytest.raises(InvalidInput):
        encode(b"payload", False, chunk_size=0)
    with pytest.raises(InvalidInput):
        split_chunks(b"payload", -1)


@pytest.mark.parametrize("first_byte", [RAW_MARKER, COMPRESSED_MARKER, TEXT_MARKER])
def test_raw_payload_starting_with_marker_value_survives(first_byte: int) -> None:
    payload = bytes([first_byte]) + b"looks like a marker but is data"
    encoded = encode(payload, False, chunk_size=675)

    assert decode(encoded.stream) == payload


def test_text_safe_layer_wraps_compressed_stream() -> None:
    payload = b'{"memory": "text"}' * 100
    encoded = encode(payload, True, chunk_size=675, text_safe=True)

    assert encoded.method is EncodingMethod.TEXT
    assert encoded.compressed
    assert encoded.stream[0] == TEXT_MARKER
    inner = base64.b64decode(encoded.stream[1:])
    assert inner[0] == COMPRESSED_MARKER
    assert decode(encoded.stream) == payload


def test_text_safe_payload_that_looks_like_base64_stays_raw() -> None:
    payload = base64.b64encode(b"binary-looking text")
    encoded = encode(payload, False, chunk_size=675)

    assert decode(encoded.stream) == payload


def test_unmarked_stream_returned_unchanged() -> None:
    legacy = b"plain legacy bytes"
    assert decode(legacy) == legacy
    assert decode(b"") == b""


def test_corrupt_compressed_body_raises() -> None:
    with pytest.raises(CorruptPayload):
        decode(bytes([COMPRESSED_MARKER]) + b"not zlib at all")


def test_corrupt_text_layer_raises() -> None:
    with pytest.raises(CorruptPayload):
        decode(bytes([TEXT_MARKER]) + b"!!!not base64!!!")
    with pytest.raises(CorruptPayload):
        decode(bytes([TEXT_MARKER]) + base64.b64encode(b"unmarked inner"))


def test_compressed_marker_body_is_zlib() -> None:
    payload = b"z" * 500
    encoded = encode(payload, True, chunk_size=675)

    assert zlib.decompress(encoded.stream[1:]) == payload
