# results.py — Discriminated operation results and their HTTP mapping
"""
Core components (certificate lifecycle, conversations, message channel,
notifications, accounts) return a ServiceResult instead of raising across
component boundaries. Routers call ``unwrap`` at the system boundary, which
raises ServiceError; main.py renders it with the catalogue below.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION = "validation_error"
    AUTHENTICATION = "authentication_error"
    AUTHORIZATION = "authorization_error"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    SERVER = "server_error"


# Stable status code per error kind
ERROR_CATALOGUE = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.SERVER: 500,
}


@dataclass(frozen=True)
class ServiceResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[ErrorKind] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any = None) -> "ServiceResult":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "ServiceResult":
        return cls(error=kind, message=message)


def validation_error(message: str) -> ServiceResult:
    return ServiceResult.failure(ErrorKind.VALIDATION, message)


def authentication_error(message: str) -> ServiceResult:
    return ServiceResult.failure(ErrorKind.AUTHENTICATION, message)


def authorization_error(message: str) -> ServiceResult:
    return ServiceResult.failure(ErrorKind.AUTHORIZATION, message)


def not_found(message: str) -> ServiceResult:
    return ServiceResult.failure(ErrorKind.NOT_FOUND, message)


def conflict(message: str) -> ServiceResult:
    return ServiceResult.failure(ErrorKind.CONFLICT, message)


def server_error(message: str = "Server error") -> ServiceResult:
    return ServiceResult.failure(ErrorKind.SERVER, message)


class ServiceError(Exception):
    """Boundary exception carrying an ErrorKind; rendered by main.py."""

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def status_code(self) -> int:
        return ERROR_CATALOGUE[self.kind]


def unwrap(result: ServiceResult):
    if not result.ok:
        raise ServiceError(result.error, result.message)
    return result.value
