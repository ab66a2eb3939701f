# src/chunkchain/transfer/config.py
"""Transfer configuration schema."""

from __future__ import annotations

import os
from typing import Annotated, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, model_validator


PosFloat = Annotated[float, Field(gt=0)]
NonNegFloat = Annotated[float, Field(ge=0)]

Commitment: TypeAlias = Literal["processed", "confirmed", "finalized"]

ENV_PREFIX = "CHUNKCHAIN_"

DEFAULT_SERVICE_URL = "https://api.iqlabs.dev"
DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"


class TransferConfig(BaseModel):
    """Immutable knobs shared by the upload and download pipelines."""

    chunk_size: int = Field(675, gt=0)
    max_chunk_size: int = Field(900, gt=0)
    compression_threshold: int = Field(50, ge=0)

    batch_size: int = Field(5, gt=0)
    submit_stagger_seconds: NonNegFloat = 0.1

    poll_interval_seconds: PosFloat = 1.0
    confirm_wait_seconds: PosFloat = 30.0
    retry_wait_seconds: PosFloat = 20.0
    retry_rounds: int = Field(2, ge=0)
    submit_attempts: int = Field(3, gt=0)
    commitment: Commitment = "confirmed"
    simulate_before_submit: bool = True

    metadata_retries: int = Field(5, gt=0)
    metadata_retry_delay_seconds: NonNegFloat = 2.0
    strict_integrity: bool = True

    service_url: str = DEFAULT_SERVICE_URL
    rpc_url: str = DEFAULT_RPC_URL
    http_timeout_seconds: PosFloat = 60.0

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _chunk_size_within_ceiling(self) -> TransferConfig:
        if self.chunk_size > self.max_chunk_size:
            raise ValueError(
                f"chunk_size {self.chunk_size} exceeds max_chunk_size {self.max_chunk_size}"
            )
        return self

    @classmethod
    def from_env(cls, **overrides: object) -> TransferConfig:
        """
        Build a config from ``CHUNKCHAIN_*`` environment variables.

        Every field can be set as ``CHUNKCHAIN_<FIELD_NAME>`` (upper case).
        Explicit keyword overrides win over the environment.
        """
        values: dict[str, object] = {}
        for name in cls.model_fields:
            raw = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None:
                values[name] = raw
        values.update(overrides)
        return cls.model_validate(values)


__all__ = ["TransferConfig", "Commitment", "DEFAULT_SERVICE_URL", "DEFAULT_RPC_URL"]
