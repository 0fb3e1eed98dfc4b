"""
Decoding of exported spreadsheet and delimited-text payloads.

A binary spreadsheet is decoded by trying strategies in order until one
yields rows:

    1. FrameStrategy          pandas.read_excel, first sheet, values only
    2. PermissiveFrameStrategy pandas.read_excel, every sheet, first non-empty
    3. StreamingStrategy      openpyxl read-only, one row at a time

Delimited text skips straight to ``DelimitedTextStrategy``. Every strategy
only produces raw rows; turning rows into ``{column: value}`` records is
shared (``rows_to_records``) so downstream code sees one record shape no
matter which decoder succeeded.
"""

import io
import logging
import math
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd
from openpyxl import load_workbook

from core.config import settings
from core.exceptions import ParseError

logger = logging.getLogger(__name__)

Record = Dict[str, Optional[str]]

SPREADSHEET_SIGNATURE = b"PK\x03\x04"
SPREADSHEET_CONTENT_TYPES = ("spreadsheet", "excel", "officedocument")


def is_spreadsheet(content: bytes, content_type: str = "") -> bool:
    content_type = (content_type or "").lower()
    if any(marker in content_type for marker in SPREADSHEET_CONTENT_TYPES):
        return True
    return content[:4] == SPREADSHEET_SIGNATURE


# ============================================================================
# Row -> record conversion
# ============================================================================

def cell_to_text(value: Any) -> Optional[str]:
    """Render one cell as text; blanks and NaN become None, dates YYYY-MM-DD."""
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if value.is_integer():
            return str(int(value))
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return value.isoformat()

    text = str(value).strip()
    return text or None


@dataclass
class RecordBuilder:
    """Turns raw rows (header first) into records, truncating long cells."""

    cell_max_length: int
    header_max_length: int
    truncated_cells: int = 0
    header: Optional[List[str]] = field(default=None)

    def _truncate(self, text: Optional[str], limit: int) -> Optional[str]:
        if text is not None and len(text) > limit:
            self.truncated_cells += 1
            return text[:limit]
        return text

    def _set_header(self, row: Sequence[Any]) -> None:
        names = [self._truncate(cell_to_text(value), self.header_max_length) for value in row]
        while names and names[-1] is None:
            names.pop()

        header: List[str] = []
        seen: Dict[str, int] = {}
        for index, name in enumerate(names):
            name = name or f"column_{index + 1}"
            if name in seen:
                seen[name] += 1
                name = f"{name}_{seen[name]}"
            else:
                seen[name] = 1
            header.append(name)
        self.header = header

    def feed(self, row: Sequence[Any]) -> Optional[Record]:
        if self.header is None:
            if any(cell_to_text(value) is not None for value in row):
                self._set_header(row)
            return None

        values = [cell_to_text(value) for value in row[:len(self.header)]]
        if all(value is None for value in values):
            return None

        return {
            name: self._truncate(values[index], self.cell_max_length) if index < len(values) else None
            for index, name in enumerate(self.header)
        }


def rows_to_records(
    rows: Iterable[Sequence[Any]],
    cell_max_length: Optional[int] = None,
    header_max_length: Optional[int] = None,
) -> Tuple[List[Record], int]:
    """Returns the records and how many cells were truncated."""
    builder = RecordBuilder(
        cell_max_length=cell_max_length or settings.SPREADSHEET_CELL_MAX_LENGTH,
        header_max_length=header_max_length or settings.SPREADSHEET_HEADER_MAX_LENGTH,
    )
    records = []
    for row in rows:
        record = builder.feed(row)
        if record is not None:
            records.append(record)
    return records, builder.truncated_cells


# ============================================================================
# Strategies
# ============================================================================

class DecodeStrategy(ABC):
    """Reads raw rows out of a payload."""

    name = "base"
    # An empty result from a final strategy is an empty dataset, not a failure
    final = False
    # Strategies that build a whole in-memory table
    materializes = False

    @abstractmethod
    def read_rows(self, content: bytes) -> Iterable[Sequence[Any]]:
        pass


class FrameStrategy(DecodeStrategy):
    name = "frame"
    materializes = True

    def read_rows(self, content: bytes) -> Iterable[Sequence[Any]]:
        frame = pd.read_excel(
            io.BytesIO(content),
            sheet_name=0,
            header=None,
            dtype=object,
            engine="openpyxl",
        )
        return frame.itertuples(index=False, name=None)


class PermissiveFrameStrategy(DecodeStrategy):
    name = "frame_all_sheets"
    materializes = True

    def read_rows(self, content: bytes) -> Iterable[Sequence[Any]]:
        sheets = pd.read_excel(
            io.BytesIO(content),
            sheet_name=None,
            header=None,
            dtype=object,
            engine="openpyxl",
        )
        for sheet_name, frame in sheets.items():
            frame = frame.dropna(how="all")
            if not frame.empty:
                logger.debug(f"Using sheet '{sheet_name}'")
                return frame.itertuples(index=False, name=None)
        return []


class StreamingStrategy(DecodeStrategy):
    name = "streaming"
    final = True

    def read_rows(self, content: bytes) -> Iterable[Sequence[Any]]:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
        try:
            for sheet in workbook.worksheets:
                # Exports often carry a stale dimension tag
                sheet.reset_dimensions()
                found = False
                for row in sheet.iter_rows(values_only=True):
                    found = True
                    yield row
                if found:
                    return
        finally:
            workbook.close()


class DelimitedTextStrategy(DecodeStrategy):
    """CSV with optional BOM, ragged rows and backslash-escaped separators."""

    name = "delimited"
    final = True

    def read_rows(self, content: bytes) -> Iterable[Sequence[Any]]:
        long_rows = 0

        def keep_leading_fields(fields: List[str]) -> List[str]:
            nonlocal long_rows
            long_rows += 1
            return fields

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", pd.errors.ParserWarning)
            frame = pd.read_csv(
                io.BytesIO(content),
                header=None,
                dtype=str,
                keep_default_na=False,
                encoding="utf-8-sig",
                engine="python",
                escapechar="\\",
                skip_blank_lines=True,
                on_bad_lines=keep_leading_fields,
            )

        if long_rows:
            logger.warning(f"{long_rows} row(s) had more fields than the header; extra fields dropped")
        return frame.itertuples(index=False, name=None)


# ============================================================================
# Decoder chain
# ============================================================================

@dataclass(frozen=True)
class DecodeResult:
    records: List[Record]
    strategy: str
    truncated_cells: int = 0


class PayloadDecoder:
    """Runs the strategy chain that fits the payload's format."""

    def __init__(
        self,
        spreadsheet_strategies: Optional[Sequence[DecodeStrategy]] = None,
        delimited_strategy: Optional[DecodeStrategy] = None,
        frame_limit_bytes: Optional[int] = None,
        cell_max_length: Optional[int] = None,
        header_max_length: Optional[int] = None,
    ):
        self.spreadsheet_strategies = list(
            spreadsheet_strategies or (FrameStrategy(), PermissiveFrameStrategy(), StreamingStrategy())
        )
        self.delimited_strategy = delimited_strategy or DelimitedTextStrategy()
        self.frame_limit_bytes = frame_limit_bytes or settings.SPREADSHEET_FRAME_LIMIT_BYTES
        self.cell_max_length = cell_max_length
        self.header_max_length = header_max_length

    def strategies_for(self, content: bytes, content_type: str) -> List[DecodeStrategy]:
        if not is_spreadsheet(content, content_type):
            return [self.delimited_strategy]

        if len(content) > self.frame_limit_bytes:
            logger.info(
                f"Payload of {len(content)} bytes exceeds frame limit; using streaming decode only"
            )
            return [s for s in self.spreadsheet_strategies if not s.materializes]
        return self.spreadsheet_strategies

    def decode(self, content: bytes, content_type: str = "") -> DecodeResult:
        """
        Decode a payload into records.

        Raises:
            ParseError: No strategy produced a usable result
        """
        if not content:
            return DecodeResult(records=[], strategy="empty")

        failures: Dict[str, str] = {}
        for strategy in self.strategies_for(content, content_type):
            try:
                records, truncated = rows_to_records(
                    strategy.read_rows(content),
                    cell_max_length=self.cell_max_length,
                    header_max_length=self.header_max_length,
                )
            except MemoryError:
                failures[strategy.name] = "MemoryError"
                logger.warning(f"Decode strategy '{strategy.name}' ran out of memory")
                continue
            except Exception as e:
                failures[strategy.name] = f"{type(e).__name__}: {e}"
                logger.warning(f"Decode strategy '{strategy.name}' failed: {type(e).__name__}: {e}")
                continue

            if records or strategy.final:
                if truncated:
                    logger.warning(f"Truncated {truncated} over-long cell(s) while decoding")
                if failures:
                    logger.info(f"Decoded {len(records)} records with fallback strategy '{strategy.name}'")
                return DecodeResult(records=records, strategy=strategy.name, truncated_cells=truncated)

            failures[strategy.name] = "decoded zero rows"
            logger.warning(f"Decode strategy '{strategy.name}' produced no rows; trying next strategy")

        raise ParseError(
            "No decode strategy could read the payload",
            context={
                "content_type": content_type,
                "size_bytes": len(content),
                "strategies": failures,
            }
        )
