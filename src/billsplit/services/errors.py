from __future__ import annotations


class BillSplitError(Exception):
    """Base for errors reported back to the user with a readable reason."""

    code = "error"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class InvalidRequest(BillSplitError, ValueError):
    code = "invalid_request"


class NotFound(BillSplitError, LookupError):
    code = "not_found"


class Conflict(BillSplitError):
    code = "conflict"


class InvalidState(BillSplitError):
    code = "invalid_state"


class StorageFailure(BillSplitError):
    code = "storage_failure"


class Forbidden(BillSplitError, PermissionError):
    code = "forbidden"
