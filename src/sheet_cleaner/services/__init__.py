"""Services for the chunked spreadsheet cleaning engine."""

from sheet_cleaner.services.chunk_manager import ChunkManager
from sheet_cleaner.services.issue_aggregator import IssueAggregator
from sheet_cleaner.services.quality_analyzer import QualityAnalyzer
from sheet_cleaner.services.reassembly import Reassembler
from sheet_cleaner.services.transformation_engine import TransformationEngine
from sheet_cleaner.services.workbook_io import (
    DocumentFormat,
    WorkbookReader,
    WorkbookWriter,
)

__all__ = [
    "ChunkManager",
    "DocumentFormat",
    "IssueAggregator",
    "QualityAnalyzer",
    "Reassembler",
    "TransformationEngine",
    "WorkbookReader",
    "WorkbookWriter",
]
