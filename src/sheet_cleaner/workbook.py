"""Dataclasses representing a workbook and its chunks in memory."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Protocol

from sheet_cleaner.utils.exceptions import InvalidInputError

CellValue = str | int | float | bool | date | datetime | time | None


def default_column_name(index: int) -> str:
    """Name used for a blank header cell at zero-based ``index``."""
    return f"Column_{index + 1}"


def is_empty(value: Any) -> bool:
    """True for None, the empty string and whitespace-only strings."""
    if value is None:
        return True
    return isinstance(value, str) and value.strip() == ""


def row_signature(row: list[Any]) -> str:
    """Canonical serialization used for structural row equality."""
    return json.dumps(row, default=str, ensure_ascii=False)


class Grid(Protocol):
    """Anything with a header row and positionally aligned data rows."""

    header: list[str]
    rows: list[list[Any]]


def column_index(header: list[str], column: str) -> int | None:
    """Position of ``column`` in ``header``; the first match wins."""
    for index, name in enumerate(header):
        if name == column:
            return index
    return None


def pad_row(row: list[Any], width: int) -> list[Any]:
    if len(row) >= width:
        return row
    return row + [None] * (width - len(row))


@dataclass
class Sheet:
    """A named grid: header row plus data rows of the same width."""

    name: str
    header: list[str]
    rows: list[list[Any]] = field(default_factory=list)

    @classmethod
    def from_grid(cls, name: str, grid: list[list[Any]]) -> Sheet:
        """Build a sheet from raw rows where row 0 is the header.

        Blank header cells become ``Column_N``. Short data rows are padded
        with None to the header width; longer rows widen the header.
        """
        if not grid:
            return cls(name=name, header=[], rows=[])

        width = max(len(r) for r in grid)
        raw_header = pad_row(list(grid[0]), width)
        header = [
            default_column_name(i) if is_empty(v) else str(v)
            for i, v in enumerate(raw_header)
        ]
        rows = [pad_row(list(r), width) for r in grid[1:]]
        return cls(name=name, header=header, rows=rows)

    @property
    def data_row_count(self) -> int:
        return len(self.rows)

    def column_index(self, column: str) -> int | None:
        return column_index(self.header, column)

    def to_grid(self) -> list[list[Any]]:
        return [list(self.header), *[list(r) for r in self.rows]]


@dataclass
class Workbook:
    """Ordered collection of uniquely named sheets."""

    sheets: list[Sheet] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        names = [s.name for s in self.sheets]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise InvalidInputError(
                f"Duplicate sheet names: {', '.join(sorted(duplicates))}",
                field="sheets",
            )

    @property
    def sheet_names(self) -> list[str]:
        return [s.name for s in self.sheets]

    @property
    def total_data_rows(self) -> int:
        return sum(s.data_row_count for s in self.sheets)

    def get_sheet(self, name: str) -> Sheet | None:
        for sheet in self.sheets:
            if sheet.name == name:
                return sheet
        return None

    def add_sheet(self, sheet: Sheet) -> None:
        if self.get_sheet(sheet.name) is not None:
            raise InvalidInputError(
                f"Sheet '{sheet.name}' already exists in workbook",
                field="sheets",
            )
        self.sheets.append(sheet)


@dataclass
class ChunkMetadata:
    """A contiguous range of data rows ``[start_row, end_row]`` of one sheet.

    Rows are numbered as in the source sheet, so the header is row 0 and the
    first data row is row 1. ``headers`` is a copy of the sheet header taken at
    partition time and is updated only when a transformation reshapes columns.
    """

    chunk_id: str
    sheet_name: str
    index: int
    start_row: int
    end_row: int
    headers: list[str]
    processed: bool = False

    @property
    def row_count(self) -> int:
        return self.end_row - self.start_row + 1

    def has_columns(self, columns: list[str]) -> bool:
        return all(c in self.headers for c in columns)


@dataclass
class ChunkPayload:
    """Materialized header + data rows for one chunk."""

    chunk_id: str
    sheet_name: str
    header: list[str]
    rows: list[list[Any]]

    def to_grid(self) -> list[list[Any]]:
        return [list(self.header), *[list(r) for r in self.rows]]
