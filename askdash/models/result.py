"""
Result Models

Tabular result sets returned by the execution router, the visualization
descriptor chosen for them, and the response envelope returned per turn.
"""

import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from askdash.models.query import VisualizationKind

ColumnType = Literal[
    "integer", "float", "decimal", "text", "boolean", "date", "timestamp", "time", "unknown"
]

NUMERIC_TYPES: frozenset[str] = frozenset({"integer", "float", "decimal"})
TEMPORAL_TYPES: frozenset[str] = frozenset({"date", "timestamp", "time"})

# Base type words; the first word of a declaration found here decides its family
_TYPE_WORDS: dict[str, str] = {
    **dict.fromkeys(
        ("timestamp", "timestamptz", "datetime", "smalldatetime", "datetimeoffset"), "timestamp"
    ),
    "date": "date",
    **dict.fromkeys(("time", "timetz"), "time"),
    **dict.fromkeys(("bool", "boolean"), "boolean"),
    **dict.fromkeys(
        (
            "int", "integer", "tinyint", "smallint", "mediumint", "bigint",
            "serial", "smallserial", "bigserial",
        ),
        "integer",
    ),
    **dict.fromkeys(("numeric", "decimal", "dec", "number", "money", "smallmoney"), "decimal"),
    **dict.fromkeys(("float", "double", "real"), "float"),
    **dict.fromkeys(
        (
            "char", "character", "nchar", "varchar", "nvarchar", "bpchar", "varying",
            "text", "tinytext", "mediumtext", "longtext", "ntext", "citext", "clob",
            "uuid", "string", "name", "enum",
        ),
        "text",
    ),
}


def normalize_type(declared: str | None) -> ColumnType:
    """Map a declared or driver type name to its column type family."""
    if not declared:
        return "unknown"
    for word in re.findall(r"[a-z]+", declared.lower()):
        family = _TYPE_WORDS.get(word)
        if family is not None:
            return family  # type: ignore[return-value]
    return "unknown"


class ResultColumn(BaseModel):
    """Column name and normalized type family."""

    name: str
    type: ColumnType = "unknown"

    model_config = ConfigDict(frozen=True)


class ResultSet(BaseModel):
    """Rows returned by one statement."""

    columns: list[ResultColumn] = Field(default_factory=list)
    rows: list[list[Any]] = Field(default_factory=list)
    row_count: int = Field(default=0, ge=0)
    truncated: bool = Field(default=False, description="True when the row cap was reached")
    execution_time_ms: float = Field(default=0.0, ge=0.0)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def validate_shape(self) -> "ResultSet":
        width = len(self.columns)
        for index, row in enumerate(self.rows):
            if len(row) != width:
                raise ValueError(f"Row {index} has {len(row)} values, expected {width}")
        if self.row_count != len(self.rows):
            raise ValueError("row_count must equal the number of rows")
        return self

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]

    def column_values(self, index: int) -> list[Any]:
        return [row[index] for row in self.rows]

    def summary(self) -> str:
        """Short description kept in conversation context."""
        text = f"{self.row_count} row(s) with columns {', '.join(self.column_names) or '(none)'}"
        if self.truncated:
            text += " (truncated)"
        return text


class AxisMapping(BaseModel):
    """Column-to-channel mapping for charts."""

    x: str
    y: str
    series: str | None = None

    model_config = ConfigDict(frozen=True)


class VisualizationSpec(BaseModel):
    """Presentation chosen for a result set."""

    kind: VisualizationKind
    axis_mapping: AxisMapping | None = None
    rendering_payload: dict[str, Any] = Field(
        default_factory=dict, description="Opaque descriptor produced by the chart renderer"
    )

    model_config = ConfigDict(frozen=True)


class ResponseEnvelope(BaseModel):
    """Unit returned to the caller for a successful turn."""

    explanation: str
    sql_generated: str
    data: ResultSet
    visualization: VisualizationSpec
    elapsed_ms: int = Field(..., ge=0)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "explanation": "Showing roas for advertiser_name = Toyota.",
                "sql_generated": "SELECT SUM(performance_metrics.revenue) / ...",
                "data": {
                    "columns": [{"name": "roas", "type": "float"}],
                    "rows": [[3.2]],
                    "row_count": 1,
                    "truncated": False,
                },
                "visualization": {"kind": "table", "axis_mapping": None, "rendering_payload": {}},
                "elapsed_ms": 412,
            }
        }
    )
