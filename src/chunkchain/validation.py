"""Result-based Pydantic validation of wire payloads."""

from __future__ import annotations

from typing import TypeVar

from pydantic import BaseModel, ValidationError

from chunkchain.result import Failure, Result, Success


TModel = TypeVar("TModel", bound=BaseModel)

__all__: list[str] = ["validate_payload"]


def validate_payload(model_cls: type[TModel], payload: object) -> Result[TModel, ValidationError]:
    """
    Validate an already-decoded JSON document (any shape) against ``model_cls``.

    Pydantic still raises internally; the exception is caught at this boundary
    and returned as a Failure so that response parsing stays expression-oriented.
    """
    try:
        return Success(model_cls.model_validate(payload))
    except ValidationError as exc:
        return Failure(exc)
