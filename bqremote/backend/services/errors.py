"""Errors raised while serving a remote function batch.

Every error carries the HTTP status returned to BigQuery. BigQuery retries
the whole batch for 408, 429, 500, 503 and 504; any other status fails the
query, so deterministic failures (bad input, unknown function) use 400.
"""

from __future__ import annotations

from typing import Optional

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 503, 504})


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS_CODES


class RemoteFunctionError(Exception):
    status_code = 400

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return is_retryable_status(self.status_code)


class InvalidRequestError(RemoteFunctionError):
    pass


class UnknownFunctionError(RemoteFunctionError):
    pass


class UnsupportedTypeError(RemoteFunctionError):
    pass


class ValueDecodeError(RemoteFunctionError):
    pass


class ValueEncodeError(RemoteFunctionError):
    pass


class ArityError(RemoteFunctionError):
    pass


class BatchTooLargeError(RemoteFunctionError):
    pass


class RowEvaluationError(RemoteFunctionError):
    """A single row failed; BigQuery fails the whole batch with it."""

    def __init__(self, row_index: int, cause: Exception, *, status_code: int = 400):
        super().__init__(f"row {row_index}: {cause}", status_code=status_code)
        self.row_index = row_index
        self.cause = cause
