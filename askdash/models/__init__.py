"""
askdash Models Module

Pydantic models for type-safe data validation throughout the pipeline.

Available Models:
    Catalog Models:
        - SchemaCatalog: database name -> DatabaseSchema
        - DatabaseSchema: tables, relationships, glossary, row security
        - Relationship, RowSecurityRule

    Query Models:
        - Intent, Filter, TimeRange, VisualizationKind
        - SqlStatement
        - Accepted, Rejected, GuardDecision
        - Turn: conversation context entry

    Result Models:
        - ResultSet, ResultColumn
        - VisualizationSpec, AxisMapping
        - ResponseEnvelope

    Errors:
        - AgentError: base exception
        - InterpretationError, SynthesisError, GuardRejection, ExecutionError

Usage:
    from askdash.models import Intent, SchemaCatalog, ResultSet
    from askdash.models.errors import InterpretationError, InterpretationReason
"""

from askdash.models.catalog import (
    DatabaseSchema,
    Relationship,
    RowSecurityRule,
    SchemaCatalog,
)
from askdash.models.errors import (
    AgentError,
    ExecutionError,
    ExecutionReason,
    GuardRejection,
    GuardRejectionReason,
    InterpretationError,
    InterpretationReason,
    StageError,
    SynthesisError,
    SynthesisReason,
)
from askdash.models.query import (
    ROW_COUNT_METRIC,
    Accepted,
    Filter,
    GuardDecision,
    Intent,
    Rejected,
    SqlStatement,
    TimeRange,
    Turn,
    VisualizationKind,
)
from askdash.models.result import (
    AxisMapping,
    ResponseEnvelope,
    ResultColumn,
    ResultSet,
    VisualizationSpec,
)

__all__ = [
    "Accepted",
    "AgentError",
    "AxisMapping",
    "DatabaseSchema",
    "ExecutionError",
    "ExecutionReason",
    "Filter",
    "GuardDecision",
    "GuardRejection",
    "GuardRejectionReason",
    "Intent",
    "InterpretationError",
    "InterpretationReason",
    "ROW_COUNT_METRIC",
    "Rejected",
    "Relationship",
    "ResponseEnvelope",
    "ResultColumn",
    "ResultSet",
    "RowSecurityRule",
    "SchemaCatalog",
    "SqlStatement",
    "StageError",
    "SynthesisError",
    "SynthesisReason",
    "TimeRange",
    "Turn",
    "VisualizationKind",
    "VisualizationSpec",
]
