"""
Record decoder for the six-column campaign metrics CSV.

Input is read incrementally with pandas (``chunksize``), validated in
vectorized form, and handed on one chunk at a time. Rows that fail
validation are counted per reason and dropped; they never abort a run.

The same rules are available for a single row through
``RecordDecoder.decode_row``. The chunk validator only accepts rows on its
own when they are plainly valid; everything else goes through
``decode_row``, so both paths classify rows identically.
"""

import io
import logging
import re
import warnings
from collections import Counter
from decimal import Decimal
from typing import IO, Iterator, List, NamedTuple, Optional, Sequence, Union

import numpy as np
import pandas as pd

from errors import RowDecodeError, StreamReadError

logger = logging.getLogger(__name__)

COLUMNS = ['campaign_id', 'date', 'impressions', 'clicks', 'spend', 'conversions']
INT_COLUMNS = ['impressions', 'clicks', 'conversions']
NUMERIC_COLUMNS = ['impressions', 'clicks', 'spend', 'conversions']

# Every line is read with one extra END_MARK field. A six-field row has it in
# END_COLUMN; a 7th field pushes it into OVERFLOW_COLUMN, and anything wider
# is dropped by the parser with a warning.
END_MARK = '\x1e'
END_COLUMN = '_end'
OVERFLOW_COLUMN = '_overflow'
PARSED_COLUMNS = COLUMNS + [END_COLUMN, OVERFLOW_COLUMN]

# At most 18 significant digits keeps every value inside int64.
INT_PATTERN = r'0*[0-9]{1,18}'
# Exponent is capped at three digits so exact spend totals stay small.
DECIMAL_PATTERN = r'(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]{1,3})?'

_PATTERNS = {
    'impressions': INT_PATTERN,
    'clicks': INT_PATTERN,
    'spend': DECIMAL_PATTERN,
    'conversions': INT_PATTERN,
}
_MATCHERS = {col: re.compile(pattern).fullmatch for col, pattern in _PATTERNS.items()}

_BAD_LINE = re.compile(r'Skipping line \d+')
_PLAIN_INT_WIDTH = 18


class RawRecord(NamedTuple):
    """One validated input row."""

    campaign_id: str
    date: str
    impressions: int
    clicks: int
    spend: Decimal
    conversions: int


def is_header(fields: Sequence) -> bool:
    """True if ``fields`` is the column-name header row."""
    if len(fields) != len(COLUMNS):
        return False
    return [str(f).strip().lower() for f in fields] == COLUMNS


def _is_header_row(row: pd.Series) -> bool:
    return row[END_COLUMN] == END_MARK and is_header(row[COLUMNS].tolist())


def _is_binary(stream) -> bool:
    return isinstance(stream, (io.RawIOBase, io.BufferedIOBase)) or 'b' in getattr(stream, 'mode', '')


def _classify_number(value: str, column: str) -> Optional[str]:
    matcher = _MATCHERS[column]
    if matcher(value):
        return None
    if value.startswith('-') and matcher(value[1:]):
        return RowDecodeError.NEGATIVE_VALUE
    return RowDecodeError.INVALID_NUMBER


def _plainly_valid(values: pd.Series, column: str) -> pd.Series:
    """
    Cheap vectorized check for the common case.

    Accepts ASCII digit strings (at most 18 of them for counts, one optional
    decimal point for spend). Anything it rejects is re-checked row by row.
    """
    digits = values.str.replace('.', '', n=1, regex=False) if column == 'spend' else values
    ok = digits.str.isdigit().astype(bool) & digits.map(str.isascii).astype(bool)
    if column != 'spend':
        ok &= values.str.len() <= _PLAIN_INT_WIDTH
    return ok


class _LineReader:
    """
    Text stream wrapper handed to the parser.

    Counts the lines it passes on and ends every non-blank line with an
    extra ``END_MARK`` field. The column the mark lands in tells how many
    fields the row really had, however the parser pads short rows.
    """

    def __init__(self, stream: IO[str]):
        self._stream = stream
        self.lines = 0

    def readline(self) -> str:
        line = self._stream.readline()
        if not line:
            return line
        self.lines += 1
        body = line.rstrip('\r\n')
        if not body:
            return line
        ending = line[len(body):] or '\n'
        return body + ',' + END_MARK + ending

    def read(self, size: int = -1) -> str:
        # Whole lines only, so a failed read leaves ``lines`` exact.
        parts: List[str] = []
        remaining = size
        while size < 0 or remaining > 0:
            line = self.readline()
            if not line:
                break
            parts.append(line)
            remaining -= len(line)
        return ''.join(parts)

    def __iter__(self):
        return self

    def __next__(self) -> str:
        line = self.readline()
        if not line:
            raise StopIteration
        return line

    def failed_at(self, exc: Exception) -> int:
        """Number of complete input lines before the one that failed."""
        if isinstance(exc, UnicodeDecodeError) and isinstance(exc.object, bytes):
            return self.lines + exc.object[:exc.start].count(b'\n')
        return self.lines


class RecordDecoder:
    """
    Streaming decoder for campaign metric rows.

    Counters are kept on the instance and accumulate across calls:

    - ``rows_read``: data rows seen (header and blank lines excluded)
    - ``rows_skipped``: rows that failed validation
    - ``skip_reasons``: ``Counter`` of failure reason codes
    """

    def __init__(self, chunksize: int = 1_000_000, encoding: str = 'utf-8'):
        """
        Args:
            chunksize: Number of rows parsed per chunk
            encoding: Encoding used when the input stream yields bytes
        """
        self.chunksize = chunksize
        self.encoding = encoding
        self.rows_read = 0
        self.rows_skipped = 0
        self.skip_reasons: Counter = Counter()

    # ------------------------------------------------------------------
    # Single-row contract
    # ------------------------------------------------------------------

    def decode_row(self, fields: Sequence[str]) -> RawRecord:
        """
        Validate one row of raw string fields.

        Does not touch the instance counters.

        Raises:
            RowDecodeError: if the row must be skipped
        """
        if len(fields) != len(COLUMNS):
            raise RowDecodeError(RowDecodeError.FIELD_COUNT, fields)

        values = dict(zip(COLUMNS, (('' if f is None else str(f)).strip() for f in fields)))

        if not values['campaign_id']:
            raise RowDecodeError(RowDecodeError.EMPTY_CAMPAIGN_ID, fields, 'campaign_id')
        if not values['date']:
            raise RowDecodeError(RowDecodeError.EMPTY_DATE, fields, 'date')

        for col in NUMERIC_COLUMNS:
            reason = _classify_number(values[col], col)
            if reason:
                raise RowDecodeError(reason, fields, col)

        return RawRecord(
            campaign_id=values['campaign_id'],
            date=values['date'],
            impressions=int(values['impressions']),
            clicks=int(values['clicks']),
            spend=Decimal(values['spend']),
            conversions=int(values['conversions']),
        )

    # ------------------------------------------------------------------
    # Streaming contract
    # ------------------------------------------------------------------

    def iter_chunks(self, stream: Union[IO[str], IO[bytes]]) -> Iterator[pd.DataFrame]:
        """
        Read ``stream`` front to back and yield validated chunks.

        Each yielded frame has columns ``campaign_id`` and ``date`` (str),
        ``impressions``/``clicks``/``conversions`` (int64) and ``spend``
        (``Decimal`` objects). Frames are never empty.

        Raises:
            StreamReadError: if the stream cannot be read or tokenized
        """
        text = io.TextIOWrapper(stream, encoding=self.encoding, newline='') if _is_binary(stream) else None
        source = _LineReader(text if text is not None else stream)
        try:
            yield from self._read_chunks(source)
        except pd.errors.EmptyDataError:
            return
        except (OSError, UnicodeDecodeError, pd.errors.ParserError) as exc:
            raise StreamReadError(f"Failed to read input: {exc}", source.failed_at(exc)) from exc
        finally:
            # Leave the caller's binary stream open.
            if text is not None:
                text.detach()

    def iter_records(self, stream: Union[IO[str], IO[bytes]]) -> Iterator[RawRecord]:
        """Yield validated records one at a time."""
        for chunk in self.iter_chunks(stream):
            for row in chunk.itertuples(index=False):
                yield RawRecord(
                    campaign_id=row.campaign_id,
                    date=row.date,
                    impressions=int(row.impressions),
                    clicks=int(row.clicks),
                    spend=row.spend,
                    conversions=int(row.conversions),
                )

    def _read_chunks(self, source: _LineReader) -> Iterator[pd.DataFrame]:
        reader = pd.read_csv(
            source,
            header=None,
            names=PARSED_COLUMNS,
            index_col=False,
            dtype=str,
            chunksize=self.chunksize,
            low_memory=False,
            engine='c',
            keep_default_na=False,
            skip_blank_lines=True,
            on_bad_lines='warn',
        )
        first_chunk = True
        while True:
            with warnings.catch_warnings(record=True) as caught:
                warnings.simplefilter('always')
                chunk = next(reader, None)
            self._count_dropped_lines(caught)
            if chunk is None:
                return

            if first_chunk:
                first_chunk = False
                if len(chunk) and _is_header_row(chunk.iloc[0]):
                    chunk = chunk.iloc[1:]

            valid = self._validate_chunk(chunk)
            if len(valid):
                yield valid

    def _count_dropped_lines(self, caught: List[warnings.WarningMessage]) -> None:
        """Rows wider than the overflow column never reach a chunk."""
        for warning in caught:
            dropped = len(_BAD_LINE.findall(str(warning.message)))
            if not dropped:
                warnings.warn_explicit(warning.message, warning.category, warning.filename, warning.lineno)
                continue
            self.rows_read += dropped
            self._skip(RowDecodeError.FIELD_COUNT, dropped)
            logger.debug(f"Skipping rows ({RowDecodeError.FIELD_COUNT}): {str(warning.message).strip()}")

    def _skip(self, reason: str, count: int) -> None:
        self.rows_skipped += count
        self.skip_reasons[reason] += count

    def _validate_chunk(self, chunk: pd.DataFrame) -> pd.DataFrame:
        """Apply the row rules to a raw string chunk; keep only valid rows."""
        self.rows_read += len(chunk)

        wrong_width = chunk[END_COLUMN] != END_MARK
        fields = pd.DataFrame(
            {col: chunk[col].fillna('').astype(str).str.strip() for col in COLUMNS},
            index=chunk.index,
        )

        valid_mask = ~wrong_width & (fields['campaign_id'] != '') & (fields['date'] != '')
        for col in NUMERIC_COLUMNS:
            valid_mask &= _plainly_valid(fields[col], col)

        suspects = fields[~valid_mask]
        if len(suspects):
            reasons = {}
            for idx, *values in suspects.itertuples(name=None):
                if wrong_width[idx]:
                    reasons[idx] = RowDecodeError.FIELD_COUNT
                    continue
                try:
                    self.decode_row(values)
                except RowDecodeError as exc:
                    reasons[idx] = exc.reason
                else:
                    valid_mask[idx] = True

            for reason, count in Counter(reasons.values()).items():
                self._skip(reason, count)
            if logger.isEnabledFor(logging.DEBUG):
                for idx, reason in reasons.items():
                    logger.debug(f"Skipping row ({reason}): {chunk.loc[idx, COLUMNS].tolist()!r}")

        good = fields[valid_mask]
        return pd.DataFrame({
            'campaign_id': good['campaign_id'],
            'date': good['date'],
            'impressions': pd.to_numeric(good['impressions']).astype(np.int64),
            'clicks': pd.to_numeric(good['clicks']).astype(np.int64),
            'spend': good['spend'].map(Decimal).astype(object),
            'conversions': pd.to_numeric(good['conversions']).astype(np.int64),
        })
