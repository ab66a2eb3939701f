# tests/test_transfer/test_cli.py
"""Tests for the transfer CLI commands."""

from __future__ import annotations

import json
import subprocess
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import pytest

from chunkchain.result import Success
from chunkchain.transfer import __main__ as cli
from chunkchain.transfer.config import TransferConfig
from chunkchain.transfer.index import LocalSessionIndex
from chunkchain.transfer.retrieval import Retriever, ServiceDownload
from chunkchain.transfer.uploader import ChunkUploader
from tests.helpers import FakeLedger, FakeSessionService, FakeSigner


def run_cli(*args: str, env: dict[str, str] | None = None) -> subprocess.CompletedProcess[str]:
    """Run ``python -m chunkchain.transfer`` and capture its output."""
    cmd = [sys.executable, "-m", "chunkchain.transfer", *args]
    return subprocess.run(
        cmd,
        check=False,
        capture_output=True,
        text=True,
        timeout=30,
        encoding="utf-8",
        env=env,
    )


@pytest.fixture
def fake_retriever(
    monkeypatch: pytest.MonkeyPatch, service: FakeSessionService
) -> FakeSessionService:
    """Route the CLI's retriever to the in-memory service."""

    @asynccontextmanager
    async def open_fake(config: TransferConfig, history: bool) -> AsyncIterator[Retriever]:
        yield Retriever(ServiceDownload(service), config)

    monkeypatch.setattr(cli, "open_retriever", open_fake)
    return service


async def _upload(
    service: FakeSessionService, config: TransferConfig, payload: bytes
) -> str:
    signer = FakeSigner()
    result = await ChunkUploader(FakeLedger(signer), service, signer, config).upload(payload)
    return result.session_handle


@pytest.mark.asyncio
async def test_download_to_file(
    fake_retriever: FakeSessionService, config: TransferConfig, tmp_path: Path
) -> None:
    handle = await _upload(fake_retriever, config, b"cli payload " * 30)
    output = tmp_path / "out.bin"

    assert await cli.cmd_download(config, handle, str(output), history=False) == 0
    assert output.read_bytes() == b"cli payload " * 30


@pytest.mark.asyncio
async def test_download_not_finalized(
    fake_retriever: FakeSessionService, config: TransferConfig, tmp_path: Path
) -> None:
    handle = await _upload(fake_retriever, config, b"unfinished")
    fake_retriever.metadata_script.extend([Success("active")] * config.metadata_retries)

    code = await cli.cmd_download(config, handle, str(tmp_path / "out.bin"), history=False)

    assert code == 1
    assert not (tmp_path / "out.bin").exists()


@pytest.mark.asyncio
async def test_download_unknown_session(
    fake_retriever: FakeSessionService, config: TransferConfig, capsys: pytest.CaptureFixture[str]
) -> None:
    code = await cli.cmd_download(config, "unknown", None, history=False)

    assert code == 2
    assert "Error" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_status_reports_json(
    fake_retriever: FakeSessionService, config: TransferConfig, capsys: pytest.CaptureFixture[str]
) -> None:
    handle = await _upload(fake_retriever, config, b"status payload")
    fake_retriever.metadata_script.append(Success("active"))

    code = await cli.cmd_status(config, handle, history=False)

    assert code == 1
    report = json.loads(capsys.readouterr().out)
    assert report["status"] == "active"
    assert report["session_handle"] == handle
    assert report["observed_chunks"] is None


@pytest.mark.asyncio
async def test_lookup(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "index.json"
    await LocalSessionIndex(path).record("notes", "handle-7")

    assert await cli.cmd_lookup(str(path), "notes") == 0
    assert capsys.readouterr().out.strip() == "handle-7"
    assert await cli.cmd_lookup(str(path), "other") == 1

    path.write_text("garbage")
    assert await cli.cmd_lookup(str(path), "notes") == 2


def test_main_lookup_subprocess(tmp_path: Path) -> None:
    path = tmp_path / "index.json"
    path.write_text(
        json.dumps({"version": 1, "entries": {"notes": {"sessionHandle": "handle-9"}}})
    )

    result = run_cli("lookup", "notes", "--index", str(path))

    assert result.returncode == 0
    assert result.stdout.strip() == "handle-9"


def test_main_requires_command() -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main([])
    assert excinfo.value.code == 2


def test_main_rejects_invalid_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHUNKCHAIN_BATCH_SIZE", "zero")
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["status", "handle"])
    assert excinfo.value.code == 2
