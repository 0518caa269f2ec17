"""
Error kinds raised by the store handlers.

Every failure a handler can report is a StoreError carrying one ErrorKind.
main.py turns them into the JSON envelope {"success": false, "message": ...}.
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    BAD_REQUEST = "bad_request"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_FAILURE = "upstream_failure"
    INTERNAL = "internal"


DEFAULT_STATUS = {
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.UPSTREAM_FAILURE: 502,
    ErrorKind.INTERNAL: 500,
}


class StoreError(Exception):
    def __init__(self, kind: ErrorKind, message: str, status_code: Optional[int] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code or DEFAULT_STATUS[kind]
        self.details = details


def not_found(what: str) -> StoreError:
    return StoreError(ErrorKind.NOT_FOUND, f"{what} not found")
