"""Error taxonomy for the transfer workflow."""
from __future__ import annotations

from typing import Optional, Sequence


class SmatchError(RuntimeError):
    """Base class for fatal transfer errors."""


class ColumnNotFound(SmatchError):
    """A column token does not resolve against a table's header row."""

    def __init__(
        self,
        token: str,
        headers: Sequence[str],
        context: str = "",
        index: Optional[int] = None,
        column_range: Optional[str] = None,
        ref: Optional[str] = None,
    ) -> None:
        self.token = token
        self.headers = list(headers)
        self.context = context
        self.index = index
        self.column_range = column_range
        self.ref = ref
        label = f"{context} column" if context else "Column"
        where = f" in {ref}" if ref else ""
        if index is not None:
            message = (
                f"{label} '{token}' (index {index}) not found{where}. "
                f"Table only has {len(self.headers)} columns ({column_range}). "
                f"Available headers: {', '.join(self.headers)}"
            )
        else:
            message = (
                f"{label} '{token}' not found{where}. "
                f"Available headers: {', '.join(self.headers)}"
            )
        super().__init__(message)


class SourceUnavailable(SmatchError):
    """A table could not be read."""

    def __init__(self, ref: str, reason: str) -> None:
        self.ref = ref
        self.reason = reason
        super().__init__(f"Failed to read table {ref}: {reason}")


class SourceEmpty(SourceUnavailable):
    """A table was readable but holds no header or data rows."""

    def __init__(self, ref: str, reason: str = "table is empty") -> None:
        super().__init__(ref, reason)


class OracleFailure(SmatchError):
    """A matching batch errored or returned malformed output."""

    def __init__(
        self,
        message: str,
        *,
        chunk_index: Optional[int] = None,
        first_row: Optional[int] = None,
        last_row: Optional[int] = None,
    ) -> None:
        self.chunk_index = chunk_index
        self.first_row = first_row
        self.last_row = last_row
        if chunk_index is not None:
            rows = ""
            if first_row is not None and last_row is not None:
                rows = f", source rows {first_row}-{last_row}"
            message = f"Batch {chunk_index + 1}{rows}: {message}"
        super().__init__(message)


class WriteRejected(SmatchError):
    """The table sink refused a batch of cell writes."""

    def __init__(self, ref: str, reason: str, update_count: int = 0) -> None:
        self.ref = ref
        self.reason = reason
        self.update_count = update_count
        super().__init__(f"Failed to write {update_count} cells to {ref}: {reason}")


class WriteUnauthorized(WriteRejected):
    """The sink denied write access."""
