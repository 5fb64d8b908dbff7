"""
Error taxonomy for the aggregation pipeline.

Row-level problems are recoverable (the row is skipped and counted).
Stream-level problems are fatal and abort the run.
"""

from typing import Optional, Sequence


class RowDecodeError(ValueError):
    """A single input row failed validation and must be skipped."""

    FIELD_COUNT = 'field_count'
    EMPTY_CAMPAIGN_ID = 'empty_campaign_id'
    EMPTY_DATE = 'empty_date'
    INVALID_NUMBER = 'invalid_number'
    NEGATIVE_VALUE = 'negative_value'

    REASONS = (FIELD_COUNT, EMPTY_CAMPAIGN_ID, EMPTY_DATE, INVALID_NUMBER, NEGATIVE_VALUE)

    def __init__(self, reason: str, fields: Sequence[str], column: Optional[str] = None):
        self.reason = reason
        self.fields = list(fields)
        self.column = column
        detail = f" in column '{column}'" if column else ''
        super().__init__(f"{reason}{detail}: {self.fields!r}")


class StreamError(OSError):
    """Base class for fatal I/O failures on the input stream or output sinks."""


class StreamReadError(StreamError):
    """
    The input stream could not be read to the end.

    ``line`` is the number of complete input lines read before the failure
    (header and blank lines included).
    """

    def __init__(self, message: str, line: int):
        self.line = line
        super().__init__(f"{message} (after input line {line:,})")


class ReportWriteError(StreamError):
    """A report could not be written to its sink."""

    def __init__(self, message: str, report: str):
        self.report = report
        super().__init__(f"{report} report: {message}")
