# MIT License
# Copyright (c) 2025 Hashborn

from enum import Enum, IntEnum
from typing import Dict, Type


class ErrorKind(str, Enum):
    PERMISSION_DENIED = "PERMISSION_DENIED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INVALID_INPUT = "INVALID_INPUT"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    INTEGRITY_FAILURE = "INTEGRITY_FAILURE"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    TRANSIENT = "TRANSIENT"
    NONCE_NOT_INCREASED = "NONCE_NOT_INCREASED"
    RETRY_LIMIT = "RETRY_LIMIT"
    NOT_DEPLOYED = "NOT_DEPLOYED"
    UNKNOWN = "UNKNOWN"


class Operation(IntEnum):
    CALL = 0
    DELEGATE_CALL = 1


class ProtocolError(Exception):
    kind = ErrorKind.UNKNOWN

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind.value, "message": self.message}


class PermissionDenied(ProtocolError):
    kind = ErrorKind.PERMISSION_DENIED


class NotFound(ProtocolError):
    kind = ErrorKind.NOT_FOUND


class Conflict(ProtocolError):
    kind = ErrorKind.CONFLICT


class InvalidInput(ProtocolError):
    kind = ErrorKind.INVALID_INPUT


class CapacityExceeded(ProtocolError):
    kind = ErrorKind.CAPACITY_EXCEEDED


class IntegrityFailure(ProtocolError):
    kind = ErrorKind.INTEGRITY_FAILURE


class ConcurrencyConflict(ProtocolError):
    kind = ErrorKind.CONCURRENCY_CONFLICT


class NotDeployed(ProtocolError):
    """Expected code is absent at an address (as opposed to wrong code)."""
    kind = ErrorKind.NOT_DEPLOYED


class TransientError(ProtocolError):
    """Network-level failure that is safe to retry."""
    kind = ErrorKind.TRANSIENT


class NonceNotIncreased(TransientError):
    kind = ErrorKind.NONCE_NOT_INCREASED


class RetryLimitExceeded(ProtocolError):
    kind = ErrorKind.RETRY_LIMIT


ERRORS_BY_KIND: Dict[str, Type[ProtocolError]] = {
    cls.kind.value: cls
    for cls in (
        ProtocolError,
        PermissionDenied,
        NotFound,
        Conflict,
        InvalidInput,
        CapacityExceeded,
        IntegrityFailure,
        ConcurrencyConflict,
        NotDeployed,
        TransientError,
        NonceNotIncreased,
        RetryLimitExceeded,
    )
}


def error_from_dict(data: Dict[str, str]) -> ProtocolError:
    """Rebuilds a protocol error serialized with ProtocolError.to_dict()."""
    cls = ERRORS_BY_KIND.get(data.get("kind", ""), ProtocolError)
    return cls(data.get("message", ""))
