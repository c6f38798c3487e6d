"""Read and write workbook byte buffers.

XLSX containers go through openpyxl. CSV buffers are tokenized with the csv
module, typed cell by cell and treated as a single-sheet workbook. Output is
written in the same container format the input arrived in.
"""

from __future__ import annotations

import csv
import io
import re
import zipfile
from enum import Enum
from typing import Any

import pandas as pd
from openpyxl import Workbook as OpenpyxlWorkbook
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from sheet_cleaner.services.transformation_engine import parse_number
from sheet_cleaner.utils.exceptions import UnreadableDocumentError
from sheet_cleaner.utils.logging import get_logger
from sheet_cleaner.workbook import Sheet, Workbook

logger = get_logger(__name__)

_ZIP_MAGIC = b"PK\x03\x04"
_INVALID_TITLE_CHARS = re.compile(r"[\[\]:*?/\\]")
_MAX_TITLE_LENGTH = 31

PLACEHOLDER_SHEET_NAME = "Error"

_BOOLEANS = {"true": True, "false": False}
_LEADING_ZERO = re.compile(r"^[+-]?0\d")


class DocumentFormat(str, Enum):
    XLSX = "xlsx"
    CSV = "csv"


def detect_format(data: bytes, filename: str | None = None) -> DocumentFormat:
    """Pick the container format from the file extension, then magic bytes."""
    if filename:
        lowered = filename.lower()
        if lowered.endswith((".xlsx", ".xlsm")):
            return DocumentFormat.XLSX
        if lowered.endswith(".csv"):
            return DocumentFormat.CSV
    if data.startswith(_ZIP_MAGIC):
        return DocumentFormat.XLSX
    return DocumentFormat.CSV


class WorkbookReader:
    """Parse a document buffer into a :class:`Workbook`."""

    def read(self, data: bytes, filename: str | None = None) -> Workbook:
        """Read every sheet of the document.

        Raises:
            UnreadableDocumentError: If the buffer is empty, corrupt, or not a
                supported container.
        """
        if not data:
            raise UnreadableDocumentError("Document buffer is empty", filename=filename)

        fmt = detect_format(data, filename)
        if fmt is DocumentFormat.XLSX:
            workbook = self._read_xlsx(data, filename)
        else:
            workbook = self._read_csv(data, filename)

        workbook.metadata.update(
            {
                "format": fmt.value,
                "filename": filename,
                "file_size": len(data),
                "sheet_names": workbook.sheet_names,
            }
        )
        logger.info(
            "Workbook parsed",
            format=fmt.value,
            sheets=len(workbook.sheets),
            data_rows=workbook.total_data_rows,
        )
        return workbook

    def _read_xlsx(self, data: bytes, filename: str | None) -> Workbook:
        try:
            wb = load_workbook(io.BytesIO(data), data_only=True, read_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
            raise UnreadableDocumentError(
                f"Failed to parse spreadsheet: {e}",
                filename=filename,
                details={"reason": type(e).__name__},
            ) from e

        try:
            sheets = []
            for ws in wb.worksheets:
                grid = [list(row) for row in ws.iter_rows(values_only=True)]
                sheets.append(Sheet.from_grid(ws.title, _strip_trailing_empty(grid)))
        finally:
            wb.close()
        return Workbook(sheets=sheets)

    def _read_csv(self, data: bytes, filename: str | None) -> Workbook:
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise UnreadableDocumentError(
                "Document is neither an XLSX container nor UTF-8 text",
                filename=filename,
                details={"reason": "UnicodeDecodeError"},
            ) from e

        # Rows may differ in width; Sheet.from_grid pads them.
        try:
            grid = [
                [infer_cell(v) for v in row] for row in csv.reader(io.StringIO(text))
            ]
        except csv.Error as e:
            raise UnreadableDocumentError(
                f"Failed to parse CSV: {e}",
                filename=filename,
                details={"reason": "csv.Error"},
            ) from e

        name = _sheet_name_from_filename(filename)
        return Workbook(sheets=[Sheet.from_grid(name, _strip_trailing_empty(grid))])


class WorkbookWriter:
    """Serialize a :class:`Workbook` back to bytes."""

    def write(
        self,
        workbook: Workbook,
        fmt: DocumentFormat = DocumentFormat.XLSX,
    ) -> bytes:
        if fmt is DocumentFormat.CSV:
            return self._write_csv(workbook)
        return self._write_xlsx(workbook)

    def _write_xlsx(self, workbook: Workbook) -> bytes:
        wb = OpenpyxlWorkbook()
        wb.remove(wb.active)
        used: set[str] = set()
        for sheet in workbook.sheets:
            ws = wb.create_sheet(title=_safe_title(sheet.name, used))
            if sheet.header:
                ws.append(list(sheet.header))
            for row in sheet.rows:
                ws.append(list(row))
                if any(_looks_like_formula(v) for v in row):
                    for cell in ws[ws.max_row]:
                        if _looks_like_formula(cell.value):
                            cell.data_type = "s"
        if not wb.worksheets:
            wb.create_sheet(title="Sheet1")

        buffer = io.BytesIO()
        wb.save(buffer)
        return buffer.getvalue()

    def _write_csv(self, workbook: Workbook) -> bytes:
        # A CSV container holds one sheet; auxiliary sheets are only kept in XLSX.
        if not workbook.sheets:
            return b""
        sheet = workbook.sheets[0]
        if len(workbook.sheets) > 1:
            logger.warning(
                "CSV output keeps only the first sheet",
                kept=sheet.name,
                dropped=len(workbook.sheets) - 1,
            )
        frame = pd.DataFrame(sheet.rows, columns=sheet.header, dtype=object)
        return frame.to_csv(index=False).encode("utf-8")


def build_placeholder_workbook(source_name: str) -> Workbook:
    """Marked stand-in returned when a session's source cannot be retrieved."""
    return Workbook(
        sheets=[
            Sheet(
                name=PLACEHOLDER_SHEET_NAME,
                header=["Error", "Message"],
                rows=[
                    [
                        "File Not Found",
                        f"Original file {source_name} could not be retrieved",
                    ]
                ],
            )
        ],
        metadata={"placeholder": True, "source_name": source_name},
    )


def _strip_trailing_empty(grid: list[list[Any]]) -> list[list[Any]]:
    end = len(grid)
    while end > 0 and all(v is None or v == "" for v in grid[end - 1]):
        end -= 1
    return grid[:end]


def _sheet_name_from_filename(filename: str | None) -> str:
    if not filename:
        return "Sheet1"
    stem = filename.rsplit("/", 1)[-1].rsplit(".", 1)[0]
    return stem or "Sheet1"


def _safe_title(name: str, used: set[str]) -> str:
    """Make ``name`` a legal, unique worksheet title."""
    base = _INVALID_TITLE_CHARS.sub("_", name).strip("'") or "Sheet"
    base = base[:_MAX_TITLE_LENGTH]
    title = base
    counter = 2
    while title.lower() in used:
        suffix = f"_{counter}"
        title = f"{base[: _MAX_TITLE_LENGTH - len(suffix)]}{suffix}"
        counter += 1
    used.add(title.lower())
    return title


def _looks_like_formula(value: Any) -> bool:
    # openpyxl stores any string starting with "=" as a formula
    return isinstance(value, str) and value.startswith("=")


def infer_cell(text: str) -> Any:
    """Type a CSV field the way a spreadsheet would on import.

    Empty fields become None; integers, decimals and true/false become
    numbers and booleans. Fields with surrounding whitespace or a leading
    zero (``"007"``) stay text.
    """
    if text == "":
        return None
    if text != text.strip() or _LEADING_ZERO.match(text):
        return text
    boolean = _BOOLEANS.get(text.lower())
    if boolean is not None:
        return boolean
    number = parse_number(text)
    return text if number is None else number
