"""Transport error ADTs for ledger RPC and session-service failures.

Frozen dataclasses describing every way a boundary call can fail, so that
callers can match exhaustively and decide what is transient.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class RpcUnavailable:
    """Ledger RPC endpoint unreachable, rate-limited or returning 5xx.

    Attributes:
        method: JSON-RPC method that was being called
        message: Transport error description
        retry_count: Number of retries attempted before giving up
    """

    method: str
    message: str
    retry_count: int = 0


@dataclass(frozen=True)
class RpcRejected:
    """JSON-RPC error object returned by the node.

    Attributes:
        method: JSON-RPC method that was rejected
        code: JSON-RPC error code
        message: Error message from the node
        data: Raw ``error.data`` member rendered as text (may be empty)
    """

    method: str
    code: int
    message: str
    data: str = ""


@dataclass(frozen=True)
class RpcTransactionFailed:
    """Transaction executed (or simulated) and the program returned an error.

    Attributes:
        signature: Signature of the failed transaction ("" for simulations)
        detail: The ``err`` value rendered as JSON text
    """

    signature: str
    detail: str


@dataclass(frozen=True)
class RpcInvalidResponse:
    """Response did not have the expected shape."""

    method: str
    message: str


@dataclass(frozen=True)
class ServiceUnavailable:
    """Session service unreachable or returning 5xx / 429."""

    endpoint: str
    message: str
    retry_count: int = 0


@dataclass(frozen=True)
class ServiceRejected:
    """Session service answered with a 4xx status.

    Attributes:
        endpoint: Request path
        status_code: HTTP status code
        message: Response body or ``detail`` field
    """

    endpoint: str
    status_code: int
    message: str


@dataclass(frozen=True)
class ServiceInvalidResponse:
    """Session service answered 2xx with a body that failed validation."""

    endpoint: str
    message: str


RpcError = RpcUnavailable | RpcRejected | RpcTransactionFailed | RpcInvalidResponse

ServiceError = ServiceUnavailable | ServiceRejected | ServiceInvalidResponse

TransportError = RpcError | ServiceError


def describe(error: TransportError) -> str:
    """One-line human readable rendering for logs and exception messages."""
    match error:
        case RpcUnavailable(method=method, message=message, retry_count=retries):
            return f"{method} unavailable after {retries} retries: {message}"
        case RpcRejected(method=method, code=code, message=message):
            return f"{method} rejected ({code}): {message}"
        case RpcTransactionFailed(signature=signature, detail=detail):
            label = signature[:16] if signature else "simulation"
            return f"transaction {label} failed: {detail}"
        case RpcInvalidResponse(method=method, message=message):
            return f"{method} returned an invalid response: {message}"
        case ServiceUnavailable(endpoint=endpoint, message=message, retry_count=retries):
            return f"{endpoint} unavailable after {retries} retries: {message}"
        case ServiceRejected(endpoint=endpoint, status_code=status, message=message):
            return f"{endpoint} rejected ({status}): {message}"
        case ServiceInvalidResponse(endpoint=endpoint, message=message):
            return f"{endpoint} returned an invalid response: {message}"


def is_transient(error: TransportError) -> bool:
    """True for failures that a bounded retry may fix."""
    return isinstance(error, (RpcUnavailable, ServiceUnavailable))
