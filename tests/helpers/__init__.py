# tests/helpers/__init__.py
"""Shared test utilities: Result unwrapping and in-memory boundary fakes.

Usage:
    >>> from tests.helpers import expect_success, FakeLedger, FakeSigner
    >>>
    >>> signer = FakeSigner()
    >>> ledger = FakeLedger(signer, behaviour=lambda label, attempt: "confirmed")
"""

from __future__ import annotations

from tests.helpers.fakes import (
    OWNER,
    OWNER_BYTES,
    PROGRAM_ID,
    FakeLedger,
    FakeSessionService,
    FakeSigner,
    RecordingIndex,
    chunk_template,
    handle_for,
    session_account,
    template_label,
)
from tests.helpers.result_utils import expect_failure, expect_success


__all__ = [
    "OWNER",
    "OWNER_BYTES",
    "PROGRAM_ID",
    "FakeLedger",
    "FakeSessionService",
    "FakeSigner",
    "RecordingIndex",
    "chunk_template",
    "handle_for",
    "session_account",
    "template_label",
    "expect_failure",
    "expect_success",
]
