"""Pydantic models exchanged with the surrounding application.

Transformation descriptors form a discriminated union keyed on ``type``:
an unknown tag or a missing parameter fails when the descriptor is built,
never when it is applied.
"""

import re
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, ClassVar, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from sheet_cleaner.utils.exceptions import ErrorCode, InvalidTransformationError


class Severity(str, Enum):
    """Severity of a data-quality finding."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.HIGH: 3, Severity.MEDIUM: 2, Severity.LOW: 1}


class IssueType(str, Enum):
    """Kinds of defects the quality analyzer reports."""

    MISSING_VALUES = "missing_values"
    DUPLICATES = "duplicates"
    INCONSISTENT_FORMAT = "inconsistent_format"
    DATA_TYPE_MISMATCH = "data_type_mismatch"
    WHITESPACE = "whitespace"


class DataQualityIssue(BaseModel):
    """One finding for a (type, sheet, column) at chunk or sheet granularity."""

    type: IssueType
    severity: Severity
    sheet: str
    column: str | None = None
    count: int = Field(..., ge=0)
    description: str
    examples: list[str] = Field(default_factory=list)
    scope: str | None = Field(default=None, exclude=True)
    """Chunk id the finding was computed over; its label ends the description."""

    @property
    def key(self) -> tuple[str, str, str]:
        """Aggregation key: (type, sheet, column or "global")."""
        return (self.type.value, self.sheet, self.column or "global")


# =============================================================================
# Transformation descriptors
# =============================================================================


class _Descriptor(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    sheet: str = Field(..., min_length=1)

    #: Run as one sequential pass threading an accumulator across chunks.
    coordinated: ClassVar[bool] = False

    @property
    def requires_cross_chunk_coordination(self) -> bool:
        return self.coordinated

    @property
    def target_columns(self) -> list[str]:
        """Columns a chunk's header must contain for the descriptor to apply."""
        return []


class _ColumnDescriptor(_Descriptor):
    column: str = Field(..., min_length=1)

    @property
    def target_columns(self) -> list[str]:
        return [self.column]


class _MultiColumnDescriptor(_Descriptor):
    columns: list[str] = Field(..., min_length=1)

    @field_validator("columns")
    @classmethod
    def validate_unique_columns(cls, v: list[str]) -> list[str]:
        repeated = sorted({c for c in v if v.count(c) > 1})
        if repeated:
            raise ValueError(f"columns must be distinct, repeated: {', '.join(repeated)}")
        return v

    @property
    def target_columns(self) -> list[str]:
        return list(self.columns)


class FillMissing(_ColumnDescriptor):
    type: Literal["fill_missing"] = "fill_missing"
    method: Literal["median", "mean", "mode", "fixed"] = "median"
    value: Any = None

    @model_validator(mode="after")
    def validate_fixed_value(self) -> "FillMissing":
        if self.method == "fixed" and self.value is None:
            raise ValueError("method 'fixed' requires a value")
        return self


class RemoveDuplicates(_Descriptor):
    type: Literal["remove_duplicates"] = "remove_duplicates"


class RemoveDuplicatesGlobal(_Descriptor):
    type: Literal["remove_duplicates_global"] = "remove_duplicates_global"
    coordinated: ClassVar[bool] = True


class StandardizeFormat(_ColumnDescriptor):
    type: Literal["standardize_format"] = "standardize_format"
    format: Literal["lowercase", "uppercase", "title_case", "email", "phone"]


class FixDataTypes(_ColumnDescriptor):
    type: Literal["fix_data_types"] = "fix_data_types"
    target_type: Literal["number", "date", "string"] = Field(
        default="string",
        validation_alias=AliasChoices("target_type", "targetType"),
    )


class TrimWhitespace(_ColumnDescriptor):
    type: Literal["trim_whitespace"] = "trim_whitespace"


class SplitMultiValue(_ColumnDescriptor):
    type: Literal["split_multi_value"] = "split_multi_value"
    delimiter: str | None = None
    """Regular expression; defaults to the comma/semicolon/pipe class."""

    @field_validator("delimiter")
    @classmethod
    def validate_delimiter(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"delimiter is not a valid pattern: {e}") from e
        return v


class CreateLookupTable(_MultiColumnDescriptor):
    type: Literal["create_lookup_table"] = "create_lookup_table"
    lookup_table_name: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("lookup_table_name", "lookupTableName"),
    )


class CreateLookupTableGlobal(_MultiColumnDescriptor):
    type: Literal["create_lookup_table_global"] = "create_lookup_table_global"
    lookup_table_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("lookup_table_name", "lookupTableName"),
    )
    coordinated: ClassVar[bool] = True

    @property
    def table_name(self) -> str:
        return self.lookup_table_name or f"{self.columns[0]}_Lookup"


class NormalizeData(_MultiColumnDescriptor):
    type: Literal["normalize_data"] = "normalize_data"
    new_table_name: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("new_table_name", "newTableName"),
    )


class RemoveTransitiveDependencies(_MultiColumnDescriptor):
    type: Literal["remove_transitive_dependencies"] = "remove_transitive_dependencies"
    reference_table: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("reference_table", "referenceTable"),
    )


class SplitRepeatingGroups(_MultiColumnDescriptor):
    type: Literal["split_repeating_groups"] = "split_repeating_groups"
    new_table_name: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("new_table_name", "newTableName"),
    )


class RemoveEmptyRows(_Descriptor):
    type: Literal["remove_empty_rows"] = "remove_empty_rows"


class RemoveEmptyColumns(_Descriptor):
    type: Literal["remove_empty_columns"] = "remove_empty_columns"
    coordinated: ClassVar[bool] = True


class ReorderColumns(_Descriptor):
    type: Literal["reorder_columns"] = "reorder_columns"
    order: list[str] = Field(..., min_length=1)


class Constraint(BaseModel):
    """A single check run by ``validate_constraints``."""

    model_config = ConfigDict(frozen=True)

    type: Literal["not_null", "unique", "range"]
    columns: list[str] = Field(default_factory=list)
    column: str | None = None
    min: float | None = None
    max: float | None = None

    @property
    def target_columns(self) -> list[str]:
        if self.type == "range":
            return [self.column] if self.column else []
        return list(self.columns)


class ValidateConstraints(_Descriptor):
    type: Literal["validate_constraints"] = "validate_constraints"
    constraints: list[Constraint] = Field(..., min_length=1)


Transformation = Annotated[
    FillMissing
    | RemoveDuplicates
    | RemoveDuplicatesGlobal
    | StandardizeFormat
    | FixDataTypes
    | TrimWhitespace
    | SplitMultiValue
    | CreateLookupTable
    | CreateLookupTableGlobal
    | NormalizeData
    | RemoveTransitiveDependencies
    | SplitRepeatingGroups
    | RemoveEmptyRows
    | RemoveEmptyColumns
    | ReorderColumns
    | ValidateConstraints,
    Field(discriminator="type"),
]

_transformation_adapter: TypeAdapter[Transformation] = TypeAdapter(Transformation)


def parse_transformation(data: dict[str, Any]) -> Transformation:
    """Build a descriptor from a loosely-typed mapping.

    Raises:
        InvalidTransformationError: If the ``type`` tag is unknown or a
            required parameter is missing.
    """
    try:
        return _transformation_adapter.validate_python(data)
    except ValidationError as e:
        raise InvalidTransformationError(
            f"Malformed transformation descriptor: {data.get('type', '<missing type>')}",
            transformation_type=str(data.get("type")) if data.get("type") else None,
            errors=[
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ],
        ) from e


# =============================================================================
# Recommendations and decisions
# =============================================================================


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RecommendationCategory(str, Enum):
    NORMALIZATION = "normalization"
    CLEANING = "cleaning"
    OPTIMIZATION = "optimization"
    VALIDATION = "validation"


class Recommendation(BaseModel):
    """A proposed action, consumed by the engine when the user accepts it.

    An empty ``affected_chunks`` list means "every chunk of the target sheet".
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    step: int = 1
    message: str = ""
    transformation: Transformation
    affected_chunks: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("affected_chunks", "affectedChunks"),
    )
    can_process_in_parallel: bool = Field(
        default=True,
        validation_alias=AliasChoices("can_process_in_parallel", "canProcessInParallel"),
    )
    priority: Priority = Priority.MEDIUM
    category: RecommendationCategory = RecommendationCategory.CLEANING
    reasoning: str = ""
    impact: str = ""
    confidence: int = Field(default=75, ge=0, le=100)
    source: str = "rules"

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> int:
        """LLM output occasionally leaves the 0-100 range or uses floats."""
        try:
            value = int(round(float(v)))
        except (TypeError, ValueError):
            return 75
        return max(0, min(100, value))

    @property
    def runs_in_parallel(self) -> bool:
        """Whether the apply step may start a batch of chunks concurrently."""
        return (
            self.can_process_in_parallel
            and not self.transformation.requires_cross_chunk_coordination
        )


class Decision(str, Enum):
    ACCEPT = "accept"
    SKIP = "skip"


class TransformationStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class TransformationLogEntry(BaseModel):
    """Append-only audit record of one attempted chunk transformation."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    chunk_id: str
    transformation: Transformation
    status: TransformationStatus = TransformationStatus.COMPLETED
    rows_before: int = 0
    rows_after: int = 0
    detail: list[str] = Field(default_factory=list)
    error_code: ErrorCode | None = None


class ProgressSnapshot(BaseModel):
    """Chunk processing progress, queryable at any time."""

    total_chunks: int
    processed_chunks: int
    current_chunk: str = ""
    percentage: int
    estimated_time_remaining: str = ""


class ChunkSample(BaseModel):
    """Small preview of a chunk handed to recommendation generators."""

    chunk_id: str
    sheet: str
    header: list[str]
    rows: list[list[Any]]


class AnalysisResult(BaseModel):
    """Output of the analysis phase of a cleaning session."""

    session_id: str
    issues: list[DataQualityIssue]
    samples: list[ChunkSample]
    recommendations: list[Recommendation] = Field(default_factory=list)
    progress: ProgressSnapshot
    total_rows: int = 0
    sheet_names: list[str] = Field(default_factory=list)
