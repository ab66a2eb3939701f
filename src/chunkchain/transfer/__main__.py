# src/chunkchain/transfer/__main__.py
"""CLI tool for chunked ledger transfers.

Usage:
    python -m chunkchain.transfer status <session-handle> [--history]
    python -m chunkchain.transfer download <session-handle> [-o FILE] [--history]
    python -m chunkchain.transfer lookup <logical-id> --index FILE

Examples:
    # Show status and chunk progress of a session (read from the ledger)
    python -m chunkchain.transfer status 7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU --history

    # Download through the session service into a file
    python -m chunkchain.transfer download 7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU -o out.bin

    # Resolve a logical id recorded in a local index
    python -m chunkchain.transfer lookup notes-2024 --index ~/.chunkchain/index.json

Connection settings come from CHUNKCHAIN_* environment variables
(CHUNKCHAIN_SERVICE_URL, CHUNKCHAIN_RPC_URL, CHUNKCHAIN_METADATA_RETRIES, ...).
Uploading needs a wallet signer and is only available through the library API.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import NoReturn

from pydantic import ValidationError

from .config import TransferConfig
from .errors import (
    ChunkCountMismatch,
    DigestMismatch,
    SessionIndexError,
    SessionNotFinalized,
    TransferError,
)
from .index import LocalSessionIndex
from .retrieval import HistoryScan, Retriever, ServiceDownload
from .rpc import JsonRpcLedgerClient
from .service import SessionServiceClient


@asynccontextmanager
async def open_retriever(config: TransferConfig, history: bool) -> AsyncIterator[Retriever]:
    """Retriever over the ledger history (`history`) or the session service."""
    if history:
        async with JsonRpcLedgerClient(
            config.rpc_url,
            commitment=config.commitment,
            timeout_seconds=config.http_timeout_seconds,
        ) as ledger:
            yield Retriever(HistoryScan(ledger), config)
    else:
        async with SessionServiceClient(
            config.service_url, timeout_seconds=config.http_timeout_seconds
        ) as service:
            yield Retriever(ServiceDownload(service), config)


async def cmd_status(config: TransferConfig, session_handle: str, history: bool) -> int:
    """
    Print session status and progress as JSON.

    Returns:
        Exit code:
            0: Session is finalized
            1: Session is still active
            2: Operational error
    """
    try:
        async with open_retriever(config, history) as retriever:
            progress = await retriever.progress(session_handle)
    except TransferError as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        return 2

    snapshot = progress.snapshot
    print(
        json.dumps(
            {
                "session_handle": snapshot.session_handle,
                "owner": snapshot.owner,
                "session_id": snapshot.session_id.hex(),
                "status": snapshot.status.name.lower(),
                "total_chunks": snapshot.total_chunks,
                "observed_chunks": progress.observed_chunks,
                "digest": snapshot.digest.hex(),
            },
            indent=2,
        )
    )
    return 0 if progress.is_finalized else 1


async def cmd_download(
    config: TransferConfig, session_handle: str, output: str | None, history: bool
) -> int:
    """
    Reconstruct a session payload to a file or stdout.

    Returns:
        Exit code:
            0: Payload written
            1: Integrity failure (chunk count or digest mismatch) or session not finalized
            2: Operational error
    """
    try:
        async with open_retriever(config, history) as retriever:
            result = await retriever.retrieve(session_handle)
    except SessionNotFinalized as e:
        print(f"✗ Session not finalized: {e}", file=sys.stderr)
        return 1
    except (ChunkCountMismatch, DigestMismatch) as e:
        print(f"✗ Integrity failure: {e}", file=sys.stderr)
        return 1
    except TransferError as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        return 2

    if output is None:
        sys.stdout.buffer.write(result.data)
        sys.stdout.buffer.flush()
    else:
        Path(output).write_bytes(result.data)
        print(
            f"✓ {result.size} bytes from {session_handle} written to {output}",
            file=sys.stderr,
        )
    return 0


async def cmd_lookup(index_path: str, logical_id: str) -> int:
    """
    Returns:
        Exit code:
            0: Found (handle printed)
            1: Not indexed
            2: Index unreadable
    """
    try:
        handle = await LocalSessionIndex(index_path).lookup(logical_id)
    except SessionIndexError as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        return 2
    if handle is None:
        print(f"✗ {logical_id} is not in {index_path}", file=sys.stderr)
        return 1
    print(handle)
    return 0


def main(argv: list[str] | None = None) -> NoReturn:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="chunkchain transfer CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # status command
    status_parser = subparsers.add_parser("status", help="Show session status and progress")
    status_parser.add_argument("session_handle", help="Session account address")
    status_parser.add_argument(
        "--history", action="store_true", help="Read from the ledger instead of the service"
    )

    # download command
    download_parser = subparsers.add_parser("download", help="Reconstruct a session payload")
    download_parser.add_argument("session_handle", help="Session account address")
    download_parser.add_argument("-o", "--output", default=None, help="Output file (default: stdout)")
    download_parser.add_argument(
        "--history",
        action="store_true",
        help="Rebuild from the session's transaction history instead of the download endpoint",
    )

    # lookup command
    lookup_parser = subparsers.add_parser("lookup", help="Resolve a logical id to a session handle")
    lookup_parser.add_argument("logical_id", help="Logical identifier recorded at upload")
    lookup_parser.add_argument("--index", required=True, help="Path to a local index JSON file")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.command == "lookup":
        sys.exit(asyncio.run(cmd_lookup(args.index, args.logical_id)))

    try:
        config = TransferConfig.from_env()
    except ValidationError as e:
        print(f"✗ Invalid CHUNKCHAIN_* configuration:\n{e}", file=sys.stderr)
        sys.exit(2)

    if args.command == "status":
        exit_code = asyncio.run(cmd_status(config, args.session_handle, args.history))
    elif args.command == "download":
        exit_code = asyncio.run(
            cmd_download(config, args.session_handle, args.output, args.history)
        )
    else:
        parser.print_help()
        sys.exit(2)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
