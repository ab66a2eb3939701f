# src/chunkchain/transfer/__init__.py
"""
Chunked ledger transfer.

Upload: encode -> create session -> dispatch chunk transactions -> batched
confirmation with bounded retry rounds -> finalize -> index.

Download: session metadata (must be finalized) -> service download or
transaction-history scan -> order by chunk index -> digest check -> decode.
"""

from __future__ import annotations

from .config import TransferConfig
from .confirmation import ConfirmationReport, ConfirmationTracker
from .dispatch import (
    BatchedParallel,
    Dispatcher,
    DispatchLog,
    DispatchOutcome,
    DispatchRecord,
    DispatchStrategy,
    FireAndForget,
    Sequential,
)
from .encoder import EncodedPayload, decode, encode
from .errors import (
    ChunkCountMismatch,
    ChunkDispatchFailed,
    ConfirmationTimeout,
    CorruptPayload,
    DigestMismatch,
    FinalizationFailed,
    InvalidInput,
    LayoutError,
    RetrievalFailed,
    SessionCreationFailed,
    SessionIndexError,
    SessionNotFinalized,
    TransferError,
    UploadFailed,
)
from .finalize import Finalizer
from .index import LocalSessionIndex, S3SessionIndex
from .layout import ChunkInstruction, EncodingMethod, SessionAccount, SessionStatus
from .models import SessionMetadata, SessionPlan, SessionSnapshot, TransactionTemplate
from .protocols import LedgerClient, MetadataIndex, SessionService, TransactionSigner
from .retrieval import (
    ChunkSource,
    HistoryScan,
    PayloadCache,
    Reconstructor,
    RetrievalResult,
    Retriever,
    ServiceDownload,
    SessionProgress,
)
from .rounds import ChunkRetryLoop, TransferState
from .rpc import JsonRpcLedgerClient
from .service import SessionServiceClient
from .session import SessionManager
from .uploader import ChunkUploader, StorageResult


__all__ = [
    # Configuration
    "TransferConfig",
    # Encoding and layouts
    "EncodedPayload",
    "encode",
    "decode",
    "EncodingMethod",
    "SessionStatus",
    "SessionAccount",
    "ChunkInstruction",
    # Wire models
    "TransactionTemplate",
    "SessionPlan",
    "SessionMetadata",
    "SessionSnapshot",
    # Boundaries
    "LedgerClient",
    "SessionService",
    "TransactionSigner",
    "MetadataIndex",
    "JsonRpcLedgerClient",
    "SessionServiceClient",
    "LocalSessionIndex",
    "S3SessionIndex",
    # Upload
    "ChunkUploader",
    "StorageResult",
    "SessionManager",
    "Dispatcher",
    "DispatchLog",
    "DispatchRecord",
    "DispatchOutcome",
    "DispatchStrategy",
    "BatchedParallel",
    "Sequential",
    "FireAndForget",
    "ConfirmationTracker",
    "ConfirmationReport",
    "ChunkRetryLoop",
    "TransferState",
    "Finalizer",
    # Download
    "Retriever",
    "RetrievalResult",
    "SessionProgress",
    "Reconstructor",
    "PayloadCache",
    "ChunkSource",
    "ServiceDownload",
    "HistoryScan",
    # Errors
    "TransferError",
    "InvalidInput",
    "LayoutError",
    "CorruptPayload",
    "SessionCreationFailed",
    "ChunkDispatchFailed",
    "ConfirmationTimeout",
    "UploadFailed",
    "FinalizationFailed",
    "SessionNotFinalized",
    "RetrievalFailed",
    "ChunkCountMismatch",
    "DigestMismatch",
    "SessionIndexError",
]
