from __future__ import annotations

import io
from collections.abc import Callable
from typing import Any

import pytest
from openpyxl import Workbook as OpenpyxlWorkbook

from sheet_cleaner.services.chunk_manager import ChunkManager
from sheet_cleaner.workbook import Sheet, Workbook


def xlsx_bytes(sheets: dict[str, list[list[Any]]]) -> bytes:
    """Build an in-memory XLSX document; row 0 of each grid is the header."""
    wb = OpenpyxlWorkbook()
    wb.remove(wb.active)
    for name, grid in sheets.items():
        ws = wb.create_sheet(title=name)
        for row in grid:
            ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def numbered_sheet(name: str, rows: int) -> Sheet:
    return Sheet(
        name=name,
        header=["ID", "Name", "Email"],
        rows=[[i, f"User {i}", f"user{i}@example.com"] for i in range(1, rows + 1)],
    )


@pytest.fixture
def people_grid() -> list[list[Any]]:
    """10 data rows: 2 missing ages, row 10 duplicates row 1."""
    return [
        ["Name", "Age", "City"],
        ["Alice", 30, "Boston"],
        ["Bob", None, "Denver"],
        ["Carol", 41, "Austin"],
        ["Dave", 25, "Boston"],
        ["Erin", None, "Seattle"],
        ["Frank", 52, "Denver"],
        ["Grace", 37, "Austin"],
        ["Heidi", 29, "Chicago"],
        ["Ivan", 44, "Miami"],
        ["Alice", 30, "Boston"],
    ]


@pytest.fixture
def people_xlsx(people_grid: list[list[Any]]) -> bytes:
    return xlsx_bytes({"People": people_grid})


@pytest.fixture
def two_sheet_workbook() -> Workbook:
    return Workbook(
        sheets=[
            numbered_sheet("Customers", 25),
            Sheet(
                name="Orders",
                header=["Order", "Status", "Amount"],
                rows=[
                    [1, "open", 10.5],
                    [2, "closed", 20],
                    [3, "open", None],
                    [4, "pending", 7],
                ],
            ),
        ],
        metadata={"format": "xlsx", "filename": "crm.xlsx"},
    )


@pytest.fixture
def manager(two_sheet_workbook: Workbook) -> ChunkManager:
    """Manager over ``two_sheet_workbook`` with chunks of 10 rows."""
    chunk_manager = ChunkManager(two_sheet_workbook, "s1", parallel_batch_size=2)
    chunk_manager.partition_all(10)
    return chunk_manager


@pytest.fixture
def make_xlsx() -> Callable[[dict[str, list[list[Any]]]], bytes]:
    """Factory for in-memory XLSX documents."""
    return xlsx_bytes
