"""
Query Models

Structured intent produced by the interpreter, the SQL statement produced by
the synthesizer, and the guard's accept/reject decision.
"""

from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from askdash.models.catalog import SchemaCatalog
from askdash.models.errors import GuardRejectionReason

ROW_COUNT_METRIC = "row_count"

FilterOperator = Literal["=", "!=", "<", "<=", ">", ">=", "in", "not_in", "like"]


def _as_naive_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    return datetime.combine(value, datetime.min.time())


class VisualizationKind(str, Enum):
    """Presentation forms the selector can produce."""

    TABLE = "table"
    BAR = "bar"
    LINE = "line"
    PIE = "pie"


class Filter(BaseModel):
    """Single predicate on a catalog column."""

    column: str = Field(..., description="Column name, bare or 'table.column'")
    operator: FilterOperator = Field(default="=", description="Comparison operator")
    value: Any = Field(..., description="Literal bound as a query parameter")

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def validate_value_shape(self) -> "Filter":
        if self.operator in ("in", "not_in"):
            if not isinstance(self.value, (list, tuple)) or not self.value:
                raise ValueError(f"Operator '{self.operator}' requires a non-empty list value")
        elif isinstance(self.value, (list, tuple, dict)):
            raise ValueError(f"Operator '{self.operator}' requires a scalar value")
        return self


class TimeRange(BaseModel):
    """Half-open time window [start, end)."""

    start: date | datetime
    end: date | datetime
    column: str | None = Field(
        None, description="Column the window applies to (defaults to the first temporal column)"
    )

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def validate_bounds(self) -> "TimeRange":
        if _as_naive_datetime(self.start) >= _as_naive_datetime(self.end):
            raise ValueError("time_range.start must be before time_range.end")
        return self


class Intent(BaseModel):
    """
    Structured interpretation of one question.

    ``metrics`` names what to compute. A metric that also appears in
    ``derived_metrics`` is a glossary formula to be expanded by the
    synthesizer; otherwise it is a numeric column (summed) or
    ``row_count``.
    """

    database: str = Field(..., description="Target database name from the catalog")
    tables: frozenset[str] = Field(..., min_length=1, description="Tables the query may touch")
    metrics: list[str] = Field(default_factory=list, description="Requested metrics, in order")
    dimensions: list[str] = Field(default_factory=list, description="Group-by columns, in order")
    derived_metrics: dict[str, str] = Field(
        default_factory=dict, description="Derived metric name -> glossary formula"
    )
    filters: list[Filter] = Field(default_factory=list, description="Predicates, in order")
    time_range: TimeRange | None = Field(None, description="Optional time window")
    order_by: str | None = Field(None, description="Metric to sort by, descending")
    suggested_visualization: VisualizationKind = Field(
        default=VisualizationKind.TABLE, description="Interpreter's suggested presentation"
    )
    explanation: str = Field(default="", description="Plain-language summary of the intent")

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "database": "ads",
                "tables": ["advertisers", "campaigns", "performance_metrics"],
                "metrics": ["roas"],
                "derived_metrics": {"roas": "revenue / cost"},
                "filters": [{"column": "advertiser_name", "operator": "=", "value": "Toyota"}],
                "suggested_visualization": "table",
            }
        },
    )

    @field_validator("metrics", "dimensions")
    @classmethod
    def validate_unique(cls, v: list[str]) -> list[str]:
        if len(set(v)) != len(v):
            raise ValueError("Duplicate entries are not allowed")
        return v

    @model_validator(mode="after")
    def validate_shape(self) -> "Intent":
        if not self.metrics and not self.dimensions:
            raise ValueError("Intent requires at least one metric or dimension")
        unknown = set(self.derived_metrics) - set(self.metrics)
        if unknown:
            raise ValueError(f"Derived metrics not requested: {sorted(unknown)}")
        if self.order_by is not None and self.order_by not in self.metrics:
            raise ValueError("order_by must name a requested metric")
        return self

    def catalog_violations(self, catalog: SchemaCatalog) -> list[str]:
        """Return the invariant violations of this intent against a catalog."""
        schema = catalog.get(self.database)
        if schema is None:
            return [f"unknown database '{self.database}'"]
        return [
            f"unknown table '{table}' in database '{self.database}'"
            for table in sorted(self.tables)
            if not schema.has_table(table)
        ]


class SqlStatement(BaseModel):
    """A single rendered statement bound to one database."""

    database: str
    text: str
    referenced_tables: frozenset[str] = Field(default_factory=frozenset)
    is_read_only: bool = False
    parameters: list[Any] = Field(
        default_factory=list, description="Positional parameters for $1..$n"
    )

    model_config = ConfigDict(frozen=True)


class Accepted(BaseModel):
    """Guard accepted the (possibly rewritten) statement."""

    status: Literal["accepted"] = "accepted"
    statement: SqlStatement
    applied_row_filters: list[str] = Field(
        default_factory=list, description="Row-security predicates injected by the guard"
    )

    model_config = ConfigDict(frozen=True)


class Rejected(BaseModel):
    """Guard refused the statement."""

    status: Literal["rejected"] = "rejected"
    reason: GuardRejectionReason
    message: str = ""

    model_config = ConfigDict(frozen=True)


GuardDecision = Annotated[Accepted | Rejected, Field(discriminator="status")]


class Turn(BaseModel):
    """Summary of one successful turn kept as interpretation context."""

    question: str
    resolved_intent: Intent
    result_summary: str

    model_config = ConfigDict(frozen=True)
