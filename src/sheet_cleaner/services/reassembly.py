"""Rebuild one output document from chunk payloads and auxiliary sheets."""

from __future__ import annotations

from typing import Any

from sheet_cleaner.services.chunk_manager import ChunkManager
from sheet_cleaner.services.workbook_io import DocumentFormat, WorkbookWriter
from sheet_cleaner.utils.logging import get_logger, timed_operation
from sheet_cleaner.workbook import ChunkPayload, Sheet, Workbook, column_index

logger = get_logger(__name__)


class Reassembler:
    """Walk a manager's chunks in row order and produce a :class:`Workbook`.

    Sheets keep their source order. A sheet's rows are the concatenation of
    its chunks' payloads ordered by ``start_row``; chunks that are not
    materialized are read back from the source. Sheets without data rows are
    copied header-only. Auxiliary sheets follow the source sheets.
    """

    def __init__(self, writer: WorkbookWriter | None = None) -> None:
        self._writer = writer or WorkbookWriter()

    def reassemble(self, manager: ChunkManager) -> Workbook:
        with timed_operation(logger, "reassemble") as metrics:
            output = Workbook(metadata=dict(manager.source.metadata))
            for source_sheet in manager.source.sheets:
                chunks = sorted(
                    manager.chunks_for_sheet(source_sheet.name), key=lambda m: m.start_row
                )
                if not chunks:
                    output.add_sheet(
                        Sheet(
                            name=source_sheet.name,
                            header=list(source_sheet.header),
                            rows=[list(r) for r in source_sheet.rows],
                        )
                    )
                    continue

                payloads = []
                for meta in chunks:
                    payload = manager.payload(meta.chunk_id)
                    if payload is None:
                        payload = manager.materialize(meta.chunk_id)
                    payloads.append(payload)
                sheet = merge_payloads(source_sheet.name, payloads)
                output.add_sheet(sheet)
                metrics.chunks_processed += len(payloads)
                metrics.rows_processed += sheet.data_row_count

            for aux in manager.auxiliary_sheets:
                name = _unique_name(aux.name, output)
                if name != aux.name:
                    logger.warning("Auxiliary sheet renamed", original=aux.name, name=name)
                output.add_sheet(
                    Sheet(name=name, header=list(aux.header), rows=[list(r) for r in aux.rows])
                )
        return output

    def export(self, manager: ChunkManager, fmt: DocumentFormat | None = None) -> bytes:
        """Reassemble and serialize in ``fmt`` (default: the source's format)."""
        if fmt is None:
            fmt = DocumentFormat(manager.source.metadata.get("format", DocumentFormat.XLSX.value))
        return self._writer.write(self.reassemble(manager), fmt)


def merge_payloads(sheet_name: str, payloads: list[ChunkPayload]) -> Sheet:
    """Concatenate payload rows under one header.

    When chunks disagree on their header (a column-structure transformation
    reached only some of them) the header is the ordered union of the chunk
    headers and each row is realigned by column name.
    """
    header: list[str] = list(payloads[0].header) if payloads else []
    if any(p.header != header for p in payloads):
        header = []
        for payload in payloads:
            for name in payload.header:
                if name not in header:
                    header.append(name)

    rows: list[list[Any]] = []
    for payload in payloads:
        if payload.header == header:
            rows.extend(list(r) for r in payload.rows)
            continue
        positions = [column_index(payload.header, name) for name in header]
        for row in payload.rows:
            rows.append([None if p is None else row[p] for p in positions])
    return Sheet(name=sheet_name, header=header, rows=rows)


def _unique_name(name: str, workbook: Workbook) -> str:
    candidate = name
    counter = 2
    while workbook.get_sheet(candidate) is not None:
        candidate = f"{name}_{counter}"
        counter += 1
    return candidate
