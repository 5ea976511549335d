"""
QueryInterpreterAgent

Turns a natural-language question into a validated Intent.

Builds a grounding payload from the schema catalog (tables, columns,
relationships and the glossary terms the question mentions) plus the
bounded conversation context, asks the language model for a JSON intent
candidate, and validates every name in the candidate against the catalog.
The model's output is untrusted: unknown databases, tables, columns or
filter values are rejected, never repaired.

Usage:
    interpreter = QueryInterpreterAgent(llm_provider=provider)
    intent = await interpreter.interpret(question, context, catalog)
"""

import asyncio
import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from askdash.agents.base import BaseAgent
from askdash.catalog.glossary import formula_columns, metric_alias, parse_formula
from askdash.catalog.graph import JoinGraph
from askdash.catalog.resolver import AmbiguousColumn, ColumnNotFound, ColumnRef, resolve_column_ref
from askdash.config import get_settings
from askdash.llm.base import BaseLLMProvider
from askdash.llm.factory import LLMProviderFactory
from askdash.llm.models import LLMMessage, LLMRequest
from askdash.models.agent import InterpreterAgentInput, InterpreterAgentOutput
from askdash.models.catalog import DatabaseSchema, SchemaCatalog
from askdash.models.errors import (
    InterpretationError,
    InterpretationReason,
    SynthesisError,
)
from askdash.models.query import (
    ROW_COUNT_METRIC,
    Filter,
    Intent,
    TimeRange,
    Turn,
    VisualizationKind,
)
from askdash.models.result import NUMERIC_TYPES, TEMPORAL_TYPES, normalize_type
from askdash.prompts.loader import PromptLoader

logger = logging.getLogger(__name__)

_MODEL_ERRORS = {
    "ambiguous": InterpretationReason.AMBIGUOUS,
    "unknown_entity": InterpretationReason.UNKNOWN_ENTITY,
    "unsupported_metric": InterpretationReason.UNSUPPORTED_METRIC,
}

_MODEL_ERROR_MESSAGES = {
    InterpretationReason.AMBIGUOUS: "The question is ambiguous; please say which data you mean.",
    InterpretationReason.UNKNOWN_ENTITY: "The question refers to data that is not in the catalog.",
    InterpretationReason.UNSUPPORTED_METRIC: "The requested metric is not defined in the catalog.",
}

_OPERATOR_ALIASES = {
    "==": "=",
    "eq": "=",
    "<>": "!=",
    "ne": "!=",
    "not in": "not_in",
    "notin": "not_in",
}

_ROW_COUNT_ALIASES = {ROW_COUNT_METRIC, "count", "count(*)", "rows"}

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)

_MISSING = object()


def _safe_name(value: Any) -> str:
    text = str(value)
    return text if len(text) <= 64 else text[:61] + "..."


def parse_intent_candidate(content: str) -> dict[str, Any]:
    """
    Extract the JSON object from a model response.

    Raises:
        InterpretationError: MalformedResponse when no JSON object is found
    """
    text = _CODE_FENCE.sub("", content.strip())
    start_idx = text.find("{")
    end_idx = text.rfind("}") + 1
    if start_idx == -1 or end_idx == 0:
        raise InterpretationError(
            InterpretationReason.MALFORMED_RESPONSE,
            "The language model did not return a structured intent.",
        )
    try:
        data = json.loads(text[start_idx:end_idx])
    except json.JSONDecodeError as e:
        raise InterpretationError(
            InterpretationReason.MALFORMED_RESPONSE,
            "The language model returned an unreadable intent.",
            context={"position": e.pos},
        ) from e
    if not isinstance(data, dict):
        raise InterpretationError(
            InterpretationReason.MALFORMED_RESPONSE,
            "The language model did not return a structured intent.",
        )
    return data


def describe_intent(intent: Intent) -> str:
    """Deterministic plain-language summary of an intent."""
    parts = []
    if intent.metrics:
        parts.append(", ".join(m.rsplit(".", 1)[-1] for m in intent.metrics))
    else:
        parts.append("rows")
    if intent.dimensions:
        parts.append("by " + ", ".join(d.rsplit(".", 1)[-1] for d in intent.dimensions))
    if intent.filters:
        conditions = [
            f"{f.column.rsplit('.', 1)[-1]} {f.operator.replace('_', ' ')} {f.value!r}"
            for f in intent.filters
        ]
        parts.append("where " + " and ".join(conditions))
    if intent.time_range:
        parts.append(
            f"from {intent.time_range.start.isoformat()} to {intent.time_range.end.isoformat()}"
        )
    summary = " ".join(parts)
    return f"Showing {summary} in database '{intent.database}'."


class QueryInterpreterAgent(BaseAgent):
    """
    Language-model backed interpreter.

    The model call is bounded by a timeout; a timeout or provider failure
    surfaces as ModelUnavailable and is never retried here. Re-prompting on
    an ambiguous answer is the orchestrator's decision.
    """

    def __init__(
        self,
        llm_provider: BaseLLMProvider | None = None,
        prompts: PromptLoader | None = None,
        timeout_seconds: float | None = None,
    ):
        if llm_provider is None or timeout_seconds is None:
            settings = get_settings()
            if llm_provider is None:
                llm_provider = LLMProviderFactory.create_agent_provider("interpreter", settings.llm)
            if timeout_seconds is None:
                timeout_seconds = float(settings.llm.timeout)

        super().__init__(name="QueryInterpreterAgent", timeout_seconds=timeout_seconds)
        self.llm = llm_provider
        self.prompts = prompts or PromptLoader()

    async def interpret(
        self,
        question: str,
        context: list[Turn] | Any,
        catalog: SchemaCatalog,
        retry_hint: str | None = None,
        session_id: str | None = None,
    ) -> Intent:
        """Interpret one question; ``context`` is any iterable of prior turns."""
        output = await self(
            InterpreterAgentInput(
                query=question,
                catalog=catalog,
                history=list(context),
                retry_hint=retry_hint,
                context={"session_id": session_id} if session_id else {},
            )
        )
        return output.intent

    async def execute(self, input: InterpreterAgentInput) -> InterpreterAgentOutput:
        """
        Ask the language model for an intent and validate it.

        Raises:
            InterpretationError: When the question cannot be grounded in the catalog
        """
        if not input.catalog.databases:
            raise InterpretationError(
                InterpretationReason.UNKNOWN_ENTITY,
                "No databases are available in the schema catalog.",
            )

        request = self._build_request(input)

        try:
            response = await asyncio.wait_for(
                self.llm.generate(request), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise InterpretationError(
                InterpretationReason.MODEL_UNAVAILABLE,
                "The language model did not respond in time.",
                context={"timeout_seconds": self.timeout_seconds},
            ) from e
        except Exception as e:
            logger.error(
                f"[{self.name}] Language model call failed: {type(e).__name__}",
                extra={"agent": self.name, "error_type": type(e).__name__},
            )
            raise InterpretationError(
                InterpretationReason.MODEL_UNAVAILABLE,
                "The language model is unavailable.",
                context={"error_type": type(e).__name__},
            ) from e

        self._track_llm_call(response.usage.total_tokens)
        logger.debug(f"[{self.name}] Raw model response: {response.content[:2000]}")

        candidate = parse_intent_candidate(response.content)
        intent = self.build_intent(candidate, input.catalog)

        logger.info(
            f"[{self.name}] Resolved intent for database '{intent.database}'",
            extra={
                "agent": self.name,
                "tables": sorted(intent.tables),
                "metrics": intent.metrics,
                "filters": len(intent.filters),
            },
        )

        return InterpreterAgentOutput(success=True, intent=intent, metadata=self._metadata)

    # ------------------------------------------------------------------
    # Prompt construction
    # ------------------------------------------------------------------

    def _build_request(self, input: InterpreterAgentInput) -> LLMRequest:
        system_prompt = self.prompts.load("system/interpreter.md")
        user_prompt = self.prompts.render(
            "agents/query_interpreter.md",
            question=input.query,
            retry_hint=input.retry_hint,
            **self._grounding(input),
        )
        return LLMRequest(
            messages=[
                LLMMessage(role="system", content=system_prompt),
                LLMMessage(role="user", content=user_prompt),
            ],
            json_mode=True,
        )

    def _grounding(self, input: InterpreterAgentInput) -> dict[str, Any]:
        catalog = input.catalog
        databases = []
        for name in catalog.database_names:
            schema = catalog.databases[name]
            databases.append(
                {
                    "name": name,
                    "tables": [
                        {
                            "name": table,
                            "columns": [
                                {"name": column, "type": declared}
                                for column, declared in schema.tables[table].items()
                            ],
                        }
                        for table in sorted(schema.tables)
                    ],
                    "relationships": [
                        f"{r.from_table}.{r.from_column} = {r.to_table}.{r.to_column}"
                        for r in schema.relationships
                    ],
                }
            )

        # Glossary entries whose term appears in the question or recent turns
        texts = [input.query] + [turn.question for turn in input.history]
        haystack = "\n".join(texts).lower()
        relevant: dict[str, str] = {}
        others: set[str] = set()
        for name in catalog.database_names:
            for term, definition in catalog.databases[name].glossary.items():
                if re.search(rf"\b{re.escape(term.lower())}\b", haystack):
                    relevant.setdefault(term, definition)
                else:
                    others.add(term)

        history = [
            {
                "question": turn.question,
                "intent_json": turn.resolved_intent.model_dump_json(exclude={"explanation"}),
                "result_summary": turn.result_summary,
            }
            for turn in input.history
        ]

        return {
            "databases": databases,
            "glossary": sorted(relevant.items()),
            "other_terms": sorted(others - set(relevant)),
            "history": history,
        }

    # ------------------------------------------------------------------
    # Candidate validation
    # ------------------------------------------------------------------

    def build_intent(self, candidate: dict[str, Any], catalog: SchemaCatalog) -> Intent:
        """
        Validate a model candidate against the catalog and build the Intent.

        Raises:
            InterpretationError: Ambiguous, UnknownEntity, UnsupportedMetric
                or MalformedResponse
        """
        if "error" in candidate:
            reason = _MODEL_ERRORS.get(
                str(candidate.get("error")).strip().lower(), InterpretationReason.AMBIGUOUS
            )
            raise InterpretationError(
                reason,
                _MODEL_ERROR_MESSAGES[reason],
                context={"model_reason": _safe_name(candidate.get("reason", ""))},
            )

        database = self._resolve_database(candidate.get("database"), catalog)
        schema = catalog.databases[database]
        tables = self._resolve_tables(candidate.get("tables"), schema, database)

        metrics: list[str] = []
        derived: dict[str, str] = {}
        for raw in self._string_list(candidate.get("metrics"), "metrics"):
            name, formula = self._resolve_metric(raw, schema, tables)
            if name not in metrics:
                metrics.append(name)
                if formula is not None:
                    derived[name] = formula

        dimensions: list[str] = []
        for raw in self._string_list(candidate.get("dimensions"), "dimensions"):
            qualified = self._resolve_column(raw, schema, tables).qualified
            if qualified not in dimensions:
                dimensions.append(qualified)

        raw_filters = candidate.get("filters") or []
        if not isinstance(raw_filters, list):
            raise self._malformed("filters must be a list")
        filters = [self._resolve_filter(raw, schema, tables) for raw in raw_filters]

        time_range = self._resolve_time_range(candidate.get("time_range"), schema, tables)
        order_by = self._resolve_order_by(candidate.get("order_by"), metrics, schema, tables)

        if not metrics and not dimensions:
            raise InterpretationError(
                InterpretationReason.AMBIGUOUS,
                "The question does not say what to measure or list.",
            )
        if not tables:
            raise InterpretationError(
                InterpretationReason.AMBIGUOUS,
                "The question does not identify any table.",
            )

        try:
            tables |= JoinGraph(schema).bridge_tables(tables)
        except SynthesisError:
            # Left to the synthesizer, which reports MissingJoinPath
            logger.debug(f"[{self.name}] Tables {sorted(tables)} are not connected")

        try:
            suggested = VisualizationKind(
                str(candidate.get("suggested_visualization") or "table").strip().lower()
            )
        except ValueError:
            suggested = VisualizationKind.TABLE

        try:
            intent = Intent(
                database=database,
                tables=frozenset(tables),
                metrics=metrics,
                dimensions=dimensions,
                derived_metrics=derived,
                filters=filters,
                time_range=time_range,
                order_by=order_by,
                suggested_visualization=suggested,
            )
        except ValidationError as e:
            raise self._malformed(f"{e.error_count()} validation error(s)") from e

        violations = intent.catalog_violations(catalog)
        if violations:
            raise InterpretationError(
                InterpretationReason.UNKNOWN_ENTITY,
                "The question refers to data that is not in the catalog.",
                context={"violations": violations},
            )

        return intent.model_copy(update={"explanation": describe_intent(intent)})

    def _malformed(self, detail: str) -> InterpretationError:
        return InterpretationError(
            InterpretationReason.MALFORMED_RESPONSE,
            "The language model returned an invalid intent.",
            context={"detail": detail},
        )

    def _string_list(self, value: Any, field: str) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise self._malformed(f"{field} must be a list of strings")
        return [v for v in value if v.strip()]

    def _resolve_database(self, value: Any, catalog: SchemaCatalog) -> str:
        if not value:
            if len(catalog.databases) == 1:
                return catalog.database_names[0]
            raise InterpretationError(
                InterpretationReason.AMBIGUOUS,
                "The question does not say which database to use.",
            )
        name = str(value).strip()
        if name in catalog.databases:
            return name
        for candidate in catalog.database_names:
            if candidate.lower() == name.lower():
                return candidate
        raise InterpretationError(
            InterpretationReason.UNKNOWN_ENTITY,
            f"Database '{_safe_name(name)}' is not in the catalog.",
        )

    def _resolve_tables(self, value: Any, schema: DatabaseSchema, database: str) -> set[str]:
        tables = set()
        for name in self._string_list(value, "tables"):
            canonical = schema.resolve_table(name.strip())
            if canonical is None:
                raise InterpretationError(
                    InterpretationReason.UNKNOWN_ENTITY,
                    f"Table '{_safe_name(name)}' is not in database '{database}'.",
                )
            tables.add(canonical)
        return tables

    def _resolve_column(self, reference: str, schema: DatabaseSchema, tables: set[str]) -> ColumnRef:
        """Resolve a column and add its table to ``tables``."""
        try:
            ref = resolve_column_ref(schema, reference, tables)
        except AmbiguousColumn as e:
            raise InterpretationError(
                InterpretationReason.AMBIGUOUS,
                f"Column '{_safe_name(reference)}' could belong to {', '.join(e.candidates)}.",
                context={"candidates": e.candidates},
            ) from e
        except ColumnNotFound as e:
            raise InterpretationError(
                InterpretationReason.UNKNOWN_ENTITY,
                f"Column '{_safe_name(reference)}' is not in the catalog.",
            ) from e
        tables.add(ref.table)
        return ref

    def _resolve_metric(
        self, raw: str, schema: DatabaseSchema, tables: set[str]
    ) -> tuple[str, str | None]:
        name = raw.strip()
        if name.lower() in _ROW_COUNT_ALIASES:
            return ROW_COUNT_METRIC, None

        term = schema.glossary_term(name)
        if term is not None:
            definition = schema.glossary[term]
            expr = parse_formula(definition)
            if expr is None:
                raise InterpretationError(
                    InterpretationReason.UNSUPPORTED_METRIC,
                    f"'{term}' is described in the glossary but has no computable formula.",
                )
            for column in formula_columns(expr):
                try:
                    self._resolve_column(column, schema, tables)
                except InterpretationError as e:
                    if e.reason is InterpretationReason.AMBIGUOUS:
                        raise
                    raise InterpretationError(
                        InterpretationReason.UNSUPPORTED_METRIC,
                        f"The formula for '{term}' uses a column that is not in the catalog.",
                    ) from e
            return metric_alias(term), definition

        try:
            ref = self._resolve_column(name, schema, tables)
        except InterpretationError as e:
            if e.reason is InterpretationReason.AMBIGUOUS:
                raise
            raise InterpretationError(
                InterpretationReason.UNSUPPORTED_METRIC,
                f"'{_safe_name(name)}' is neither a glossary term nor a column.",
            ) from e

        if normalize_type(schema.column_type(ref.table, ref.column)) not in NUMERIC_TYPES:
            raise InterpretationError(
                InterpretationReason.UNSUPPORTED_METRIC,
                f"Column '{ref.qualified}' is not numeric and cannot be aggregated.",
            )
        return ref.qualified, None

    def _resolve_filter(self, raw: Any, schema: DatabaseSchema, tables: set[str]) -> Filter:
        if not isinstance(raw, dict) or "column" not in raw or "value" not in raw:
            raise self._malformed("filters need column and value")
        ref = self._resolve_column(str(raw["column"]), schema, tables)

        operator = str(raw.get("operator") or "=").strip().lower()
        operator = _OPERATOR_ALIASES.get(operator, operator)
        value = raw["value"]

        known = schema.known_values_for(ref.table, ref.column)
        if known is not None and operator in ("=", "in"):
            values = value if isinstance(value, list) else [value]
            matched = []
            for item in values:
                match = self._match_known_value(item, known)
                if match is _MISSING:
                    raise InterpretationError(
                        InterpretationReason.UNKNOWN_ENTITY,
                        f"No {ref.column} '{_safe_name(item)}' exists in the catalog.",
                        context={"column": ref.qualified},
                    )
                matched.append(match)
            value = matched if isinstance(value, list) else matched[0]

        try:
            return Filter(column=ref.qualified, operator=operator, value=value)
        except ValidationError as e:
            raise self._malformed(f"invalid filter on {ref.qualified}") from e

    @staticmethod
    def _match_known_value(value: Any, known: list[Any]) -> Any:
        if value in known:
            return value
        if isinstance(value, str):
            folded = value.strip().casefold()
            for candidate in known:
                if isinstance(candidate, str) and candidate.casefold() == folded:
                    return candidate
        return _MISSING

    def _resolve_time_range(
        self, raw: Any, schema: DatabaseSchema, tables: set[str]
    ) -> TimeRange | None:
        if raw is None:
            return None
        if not isinstance(raw, dict):
            raise self._malformed("time_range must be an object")

        column = None
        if raw.get("column"):
            ref = self._resolve_column(str(raw["column"]), schema, tables)
            if normalize_type(schema.column_type(ref.table, ref.column)) not in TEMPORAL_TYPES:
                raise InterpretationError(
                    InterpretationReason.UNKNOWN_ENTITY,
                    f"Column '{ref.qualified}' is not a date or time column.",
                )
            column = ref.qualified

        try:
            return TimeRange(start=raw.get("start"), end=raw.get("end"), column=column)
        except ValidationError as e:
            raise self._malformed("invalid time_range") from e

    def _resolve_order_by(
        self, raw: Any, metrics: list[str], schema: DatabaseSchema, tables: set[str]
    ) -> str | None:
        if not raw:
            return None
        name = str(raw).strip()
        if name in metrics:
            return name
        if metric_alias(name) in metrics:
            return metric_alias(name)
        if name.lower() in _ROW_COUNT_ALIASES and ROW_COUNT_METRIC in metrics:
            return ROW_COUNT_METRIC
        try:
            qualified = resolve_column_ref(schema, name, tables, search_schema=False).qualified
        except LookupError:
            qualified = None
        if qualified in metrics:
            return qualified
        raise self._malformed("order_by must name a requested metric")
