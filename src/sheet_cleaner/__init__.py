"""Sheet Cleaner - chunked spreadsheet cleaning engine."""

from sheet_cleaner.services.cleaning_session import CleaningService, CleaningSession

__all__ = ["CleaningService", "CleaningSession"]
__version__ = "0.1.0"
