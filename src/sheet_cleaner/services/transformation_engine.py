"""Apply transformation descriptors to grids, in place.

Each descriptor variant maps to one handler through an exhaustive ``match``.
Application is not transactional: a structural failure part way through a
call propagates and leaves the grid partially mutated.

Per-cell coercion failures (a value that is not a number, a string that is
not a date) are expected with real spreadsheets and leave the cell as it
was. Structural problems (a target column that does not exist) raise.

Transformations that need to see every chunk of a sheet take an explicit
accumulator, created by :meth:`TransformationEngine.prepare` and threaded
through the chunks in order:

- ``remove_duplicates_global``: :class:`DedupState` (seen row signatures)
- ``create_lookup_table_global``: :class:`LookupState` (key -> id map and one
  monotonic id counter for the whole sheet)
- ``remove_empty_columns``: :class:`ColumnPresence` (columns holding data in
  any chunk)
"""

from __future__ import annotations

import math
import re
import warnings
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, assert_never

import pandas as pd

from sheet_cleaner.models import (
    CreateLookupTable,
    CreateLookupTableGlobal,
    FillMissing,
    FixDataTypes,
    NormalizeData,
    RemoveDuplicates,
    RemoveDuplicatesGlobal,
    RemoveEmptyColumns,
    RemoveEmptyRows,
    RemoveTransitiveDependencies,
    ReorderColumns,
    SplitMultiValue,
    SplitRepeatingGroups,
    StandardizeFormat,
    Transformation,
    TrimWhitespace,
    ValidateConstraints,
)
from sheet_cleaner.utils.exceptions import ColumnNotFoundError
from sheet_cleaner.workbook import Grid, Sheet, column_index, is_empty, row_signature

DEFAULT_DELIMITER = re.compile(r"[,;|]")
_WORD = re.compile(r"\w\S*")
_NON_DIGIT = re.compile(r"\D")
_WHITESPACE_RUN = re.compile(r"\s+")


# =============================================================================
# Cell-level helpers
# =============================================================================


def parse_number(value: Any) -> int | float | None:
    """Numeric value of a cell, or None when it is not numeric."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text or "_" in text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def parse_date(value: Any) -> str | None:
    """ISO ``YYYY-MM-DD`` for dates and date-like strings, else None."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str) or not value.strip():
        return None
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        try:
            parsed = pd.to_datetime(value.strip(), errors="coerce")
        except (ValueError, OverflowError, TypeError):
            return None
    if pd.isna(parsed):
        return None
    return parsed.date().isoformat()


def to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value)


def title_case(value: str) -> str:
    return _WORD.sub(lambda m: m.group(0)[0].upper() + m.group(0)[1:].lower(), value)


def format_phone(value: str) -> str:
    digits = _NON_DIGIT.sub("", value)
    if len(digits) != 10:
        return value
    return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"


def collapse_whitespace(value: str) -> str:
    return _WHITESPACE_RUN.sub(" ", value.strip())


def upper_median(numbers: list[int | float]) -> int | float:
    ordered = sorted(numbers)
    return ordered[len(ordered) // 2]


def scoped_id(scope_id: str | None, counter: int) -> int | str:
    """Synthesized reference id; chunk-scoped ids carry the chunk id."""
    if scope_id is None:
        return counter
    return f"{scope_id}_{counter}"


# =============================================================================
# Results and accumulators
# =============================================================================


@dataclass
class TransformationOutcome:
    """What one application did to one grid."""

    rows_before: int
    rows_after: int
    cells_changed: int = 0
    header_changed: bool = False
    auxiliary_sheets: list[Sheet] = field(default_factory=list)
    detail: list[str] = field(default_factory=list)


@dataclass
class DedupState:
    seen: set[str] = field(default_factory=set)


@dataclass
class LookupState:
    columns: list[str]
    key_to_id: dict[str, int] = field(default_factory=dict)
    entries: list[list[Any]] = field(default_factory=list)
    next_id: int = 1

    def id_for(self, values: list[Any]) -> int:
        key = row_signature(values)
        existing = self.key_to_id.get(key)
        if existing is not None:
            return existing
        new_id = self.next_id
        self.next_id += 1
        self.key_to_id[key] = new_id
        self.entries.append([new_id, *values])
        return new_id

    def to_sheet(self, name: str) -> Sheet:
        return Sheet(name=name, header=["ID", *self.columns], rows=list(self.entries))


@dataclass
class ColumnPresence:
    non_empty: set[str] = field(default_factory=set)

    def observe(self, grid: Grid) -> None:
        for index, name in enumerate(grid.header):
            if name in self.non_empty:
                continue
            if any(index < len(row) and not is_empty(row[index]) for row in grid.rows):
                self.non_empty.add(name)


CoordinationState = DedupState | LookupState | ColumnPresence


# =============================================================================
# Engine
# =============================================================================


class TransformationEngine:
    """Apply one descriptor to one grid, deterministically and in place."""

    def prepare(
        self, transformation: Transformation, grids: Iterable[Grid] = ()
    ) -> CoordinationState | None:
        """Create the accumulator for a coordinated pass.

        ``grids`` must be every grid the pass will touch, in order; it is only
        read for transformations that need a pre-scan.
        """
        match transformation:
            case RemoveDuplicatesGlobal():
                return DedupState()
            case CreateLookupTableGlobal():
                return LookupState(columns=list(transformation.columns))
            case RemoveEmptyColumns():
                presence = ColumnPresence()
                for grid in grids:
                    presence.observe(grid)
                return presence
            case _:
                return None

    def finalize(
        self, transformation: Transformation, state: CoordinationState | None
    ) -> list[Sheet]:
        """Auxiliary sheets produced once a coordinated pass has finished."""
        if isinstance(transformation, CreateLookupTableGlobal) and isinstance(
            state, LookupState
        ):
            return [state.to_sheet(transformation.table_name)]
        return []

    def apply(
        self,
        grid: Grid,
        transformation: Transformation,
        *,
        scope_id: str | None = None,
        state: CoordinationState | None = None,
        row_offset: int = 0,
    ) -> TransformationOutcome:
        """Mutate ``grid`` according to ``transformation``.

        Args:
            grid: Header and rows to mutate in place.
            transformation: Descriptor to apply.
            scope_id: Chunk id when applying to a chunk; prefixes synthesized ids.
            state: Accumulator for coordinated transformations. A fresh one is
                used when omitted, which scopes the operation to this grid.
            row_offset: Source row number of the row before ``grid.rows[0]``,
                used in constraint violation messages.

        Raises:
            ColumnNotFoundError: If a target column is missing from the header.
        """
        outcome = TransformationOutcome(
            rows_before=len(grid.rows), rows_after=len(grid.rows)
        )
        if state is None and transformation.requires_cross_chunk_coordination:
            state = self.prepare(transformation, [grid])

        try:
            self._dispatch(grid, transformation, scope_id, state, row_offset, outcome)
        except ColumnNotFoundError as e:
            if e.chunk_id == scope_id and e.transformation_type == transformation.type:
                raise
            raise ColumnNotFoundError(
                e.column,
                chunk_id=scope_id,
                transformation_type=transformation.type,
            ) from e

        outcome.rows_after = len(grid.rows)
        return outcome

    def _dispatch(
        self,
        grid: Grid,
        transformation: Transformation,
        scope_id: str | None,
        state: CoordinationState | None,
        row_offset: int,
        outcome: TransformationOutcome,
    ) -> None:
        match transformation:
            case FillMissing():
                self._fill_missing(grid, transformation, outcome)
            case RemoveDuplicates():
                self._remove_duplicates(grid, DedupState(), outcome)
            case RemoveDuplicatesGlobal():
                assert isinstance(state, DedupState)
                self._remove_duplicates(grid, state, outcome)
            case StandardizeFormat():
                self._standardize_format(grid, transformation, outcome)
            case FixDataTypes():
                self._fix_data_types(grid, transformation, outcome)
            case TrimWhitespace():
                self._trim_whitespace(grid, transformation, outcome)
            case SplitMultiValue():
                self._split_multi_value(grid, transformation, outcome)
            case CreateLookupTable():
                lookup = LookupState(columns=list(transformation.columns))
                self._replace_with_lookup(grid, transformation.columns, lookup, scope_id, outcome)
                outcome.auxiliary_sheets.append(
                    self._scoped_lookup_sheet(lookup, transformation.lookup_table_name, scope_id)
                )
            case RemoveTransitiveDependencies():
                lookup = LookupState(columns=list(transformation.columns))
                self._replace_with_lookup(grid, transformation.columns, lookup, scope_id, outcome)
                outcome.auxiliary_sheets.append(
                    self._scoped_lookup_sheet(lookup, transformation.reference_table, scope_id)
                )
            case CreateLookupTableGlobal():
                assert isinstance(state, LookupState)
                self._replace_with_lookup(grid, transformation.columns, state, None, outcome)
            case NormalizeData():
                self._normalize_data(grid, transformation, scope_id, outcome)
            case SplitRepeatingGroups():
                self._split_repeating_groups(grid, transformation, scope_id, outcome)
            case RemoveEmptyRows():
                self._remove_empty_rows(grid, outcome)
            case RemoveEmptyColumns():
                assert isinstance(state, ColumnPresence)
                self._remove_empty_columns(grid, state, outcome)
            case ReorderColumns():
                self._reorder_columns(grid, transformation, outcome)
            case ValidateConstraints():
                self._validate_constraints(grid, transformation, row_offset, outcome)
            case _:
                assert_never(transformation)

    # ------------------------------------------------------------------ #
    # Column value rewrites
    # ------------------------------------------------------------------ #

    def _fill_missing(
        self, grid: Grid, t: FillMissing, outcome: TransformationOutcome
    ) -> None:
        index = self._require_column(grid, t.column, t.type)
        present = [row[index] for row in grid.rows if not is_empty(row[index])]

        fill_value: Any
        if t.method == "fixed":
            fill_value = t.value
        elif t.method == "mode":
            if not present:
                outcome.detail.append(f"No values in '{t.column}' to take the mode of")
                return
            counts = Counter(to_text(v) for v in present)
            best = max(counts.values())
            fill_value = next(v for v in present if counts[to_text(v)] == best)
        else:
            numbers = [n for n in (parse_number(v) for v in present) if n is not None]
            if not numbers:
                fill_value = 0
            elif t.method == "median":
                fill_value = upper_median(numbers)
            else:
                fill_value = sum(numbers) / len(numbers)

        for row in grid.rows:
            if is_empty(row[index]):
                row[index] = fill_value
                outcome.cells_changed += 1

    def _standardize_format(
        self, grid: Grid, t: StandardizeFormat, outcome: TransformationOutcome
    ) -> None:
        index = self._require_column(grid, t.column, t.type)
        for row in grid.rows:
            cell = row[index]
            if not isinstance(cell, str):
                continue
            match t.format:
                case "lowercase":
                    new = cell.lower()
                case "uppercase":
                    new = cell.upper()
                case "title_case":
                    new = title_case(cell)
                case "email":
                    new = cell.lower().strip()
                case "phone":
                    new = format_phone(cell)
                case _:
                    assert_never(t.format)
            if new != cell:
                row[index] = new
                outcome.cells_changed += 1

    def _fix_data_types(
        self, grid: Grid, t: FixDataTypes, outcome: TransformationOutcome
    ) -> None:
        index = self._require_column(grid, t.column, t.type)
        for row in grid.rows:
            cell = row[index]
            if is_empty(cell):
                continue
            converted: Any
            if t.target_type == "number":
                converted = parse_number(cell)
            elif t.target_type == "date":
                converted = parse_date(cell)
            else:
                converted = to_text(cell)
            if converted is None or (converted == cell and type(converted) is type(cell)):
                continue
            row[index] = converted
            outcome.cells_changed += 1

    def _trim_whitespace(
        self, grid: Grid, t: TrimWhitespace, outcome: TransformationOutcome
    ) -> None:
        index = self._require_column(grid, t.column, t.type)
        for row in grid.rows:
            cell = row[index]
            if isinstance(cell, str):
                new = collapse_whitespace(cell)
                if new != cell:
                    row[index] = new
                    outcome.cells_changed += 1

    # ------------------------------------------------------------------ #
    # Row-count changing operations
    # ------------------------------------------------------------------ #

    def _remove_duplicates(
        self, grid: Grid, state: DedupState, outcome: TransformationOutcome
    ) -> None:
        kept = []
        for row in grid.rows:
            signature = row_signature(row)
            if signature in state.seen:
                continue
            state.seen.add(signature)
            kept.append(row)
        removed = len(grid.rows) - len(kept)
        grid.rows[:] = kept
        if removed:
            outcome.detail.append(f"Removed {removed} duplicate rows")

    def _split_multi_value(
        self, grid: Grid, t: SplitMultiValue, outcome: TransformationOutcome
    ) -> None:
        index = self._require_column(grid, t.column, t.type)
        pattern = re.compile(t.delimiter) if t.delimiter else DEFAULT_DELIMITER
        expanded: list[list[Any]] = []
        for row in grid.rows:
            cell = row[index]
            if not isinstance(cell, str) or not pattern.search(cell):
                expanded.append(row)
                continue
            tokens = [tok.strip() for tok in pattern.split(cell) if tok.strip()]
            if not tokens:
                expanded.append(row)
                continue
            for token in tokens:
                new_row = list(row)
                new_row[index] = token
                expanded.append(new_row)
            outcome.cells_changed += 1
        grid.rows[:] = expanded

    def _remove_empty_rows(self, grid: Grid, outcome: TransformationOutcome) -> None:
        kept = [row for row in grid.rows if not all(is_empty(v) for v in row)]
        removed = len(grid.rows) - len(kept)
        grid.rows[:] = kept
        if removed:
            outcome.detail.append(f"Removed {removed} empty rows")

    # ------------------------------------------------------------------ #
    # Column-structure operations
    # ------------------------------------------------------------------ #

    def _replace_with_lookup(
        self,
        grid: Grid,
        columns: list[str],
        lookup: LookupState,
        scope_id: str | None,
        outcome: TransformationOutcome,
    ) -> None:
        """Swap ``columns`` for one ``<first>_ID`` reference column."""
        indices = [self._require_column(grid, c, "lookup") for c in columns]
        for row in grid.rows:
            values = [row[i] for i in indices]
            row[indices[0]] = scoped_id(scope_id, lookup.id_for(values))
        self._drop_columns(grid, indices[1:])
        grid.header[indices[0]] = f"{columns[0]}_ID"
        outcome.header_changed = True

    def _scoped_lookup_sheet(
        self, lookup: LookupState, name: str, scope_id: str | None
    ) -> Sheet:
        sheet = lookup.to_sheet(name)
        for entry in sheet.rows:
            entry[0] = scoped_id(scope_id, entry[0])
        return sheet

    def _normalize_data(
        self,
        grid: Grid,
        t: NormalizeData,
        scope_id: str | None,
        outcome: TransformationOutcome,
    ) -> None:
        """Extract distinct column combinations keyed by their first row id."""
        indices = [self._require_column(grid, c, t.type) for c in t.columns]
        first_seen: dict[str, int | str] = {}
        table: list[list[Any]] = []
        for position, row in enumerate(grid.rows, start=1):
            values = [row[i] for i in indices]
            key = row_signature(values)
            if key not in first_seen:
                first_seen[key] = scoped_id(scope_id, position)
                table.append([first_seen[key], *values])
            row[indices[0]] = first_seen[key]
        self._drop_columns(grid, indices[1:])
        grid.header[indices[0]] = f"{t.columns[0]}_ID"
        outcome.header_changed = True
        outcome.auxiliary_sheets.append(
            Sheet(name=t.new_table_name, header=["ID", *t.columns], rows=table)
        )

    def _split_repeating_groups(
        self,
        grid: Grid,
        t: SplitRepeatingGroups,
        scope_id: str | None,
        outcome: TransformationOutcome,
    ) -> None:
        indices = [self._require_column(grid, c, t.type) for c in t.columns]
        detail: list[list[Any]] = []
        for position, row in enumerate(grid.rows, start=1):
            for sequence, i in enumerate(indices, start=1):
                if not is_empty(row[i]):
                    detail.append([scoped_id(scope_id, position), sequence, row[i]])
        self._drop_columns(grid, indices)
        outcome.header_changed = True
        outcome.auxiliary_sheets.append(
            Sheet(
                name=t.new_table_name,
                header=["ParentID", "Sequence", "Value"],
                rows=detail,
            )
        )

    def _remove_empty_columns(
        self, grid: Grid, presence: ColumnPresence, outcome: TransformationOutcome
    ) -> None:
        empty = [i for i, name in enumerate(grid.header) if name not in presence.non_empty]
        if not empty:
            return
        removed = [grid.header[i] for i in empty]
        self._drop_columns(grid, empty)
        outcome.header_changed = True
        outcome.detail.append(f"Removed empty columns: {', '.join(removed)}")

    def _reorder_columns(
        self, grid: Grid, t: ReorderColumns, outcome: TransformationOutcome
    ) -> None:
        leading = []
        for name in t.order:
            index = column_index(grid.header, name)
            if index is not None and index not in leading:
                leading.append(index)
        order = leading + [i for i in range(len(grid.header)) if i not in leading]
        if order == list(range(len(grid.header))):
            return
        grid.header[:] = [grid.header[i] for i in order]
        for row in grid.rows:
            row[:] = [row[i] for i in order]
        outcome.header_changed = True

    # ------------------------------------------------------------------ #
    # Checks
    # ------------------------------------------------------------------ #

    def _validate_constraints(
        self,
        grid: Grid,
        t: ValidateConstraints,
        row_offset: int,
        outcome: TransformationOutcome,
    ) -> None:
        """Record violations without touching any cell."""
        for constraint in t.constraints:
            indices = [
                self._require_column(grid, c, t.type) for c in constraint.target_columns
            ]
            label = ", ".join(constraint.target_columns)
            if constraint.type == "not_null":
                for index, name in zip(indices, constraint.target_columns, strict=True):
                    for position, row in enumerate(grid.rows):
                        if is_empty(row[index]):
                            outcome.detail.append(
                                f"NOT NULL violation in {name} at row {row_offset + position + 2}"
                            )
            elif constraint.type == "unique":
                seen: set[str] = set()
                for position, row in enumerate(grid.rows):
                    key = row_signature([row[i] for i in indices])
                    if key in seen:
                        outcome.detail.append(
                            f"UNIQUE violation in {label} at row {row_offset + position + 2}"
                        )
                    seen.add(key)
            else:
                low = constraint.min if constraint.min is not None else -math.inf
                high = constraint.max if constraint.max is not None else math.inf
                for position, row in enumerate(grid.rows):
                    number = parse_number(row[indices[0]])
                    if number is not None and not low <= number <= high:
                        outcome.detail.append(
                            f"RANGE violation in {label} at row {row_offset + position + 2}: "
                            f"{number} not in [{low}, {high}]"
                        )

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _require_column(grid: Grid, column: str, transformation_type: str) -> int:
        index = column_index(grid.header, column)
        if index is None:
            raise ColumnNotFoundError(column, transformation_type=transformation_type)
        return index

    @staticmethod
    def _drop_columns(grid: Grid, indices: list[int]) -> None:
        for index in sorted(set(indices), reverse=True):
            del grid.header[index]
            for row in grid.rows:
                del row[index]
