"""
Visualization Selector

Deterministically picks a presentation form for a result set.

Column roles come from the result's type families: numeric (integer,
float, decimal), temporal (date, timestamp, time) and categorical
(everything else). Decision table, first match wins:

1. A non-table suggestion that is structurally compatible is honored.
2. One temporal + one numeric column (plus an optional categorical
   series column) -> line.
3. One categorical + one numeric column, at most ``pie_max_rows`` rows of
   non-negative values summing to 1 within ``pie_tolerance`` -> pie.
4. One categorical + one numeric column, at most ``bar_max_rows`` rows
   -> bar.
5. Otherwise -> table.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any

from askdash.config import get_settings
from askdash.models.query import VisualizationKind
from askdash.models.result import (
    NUMERIC_TYPES,
    TEMPORAL_TYPES,
    AxisMapping,
    ResultSet,
    VisualizationSpec,
)
from askdash.visualization.renderer import ChartRenderer, VegaLiteRenderer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Shape:
    numeric: list[str]
    temporal: list[str]
    categorical: list[str]
    row_count: int


def _shape(result: ResultSet) -> _Shape:
    numeric, temporal, categorical = [], [], []
    for column in result.columns:
        if column.type in NUMERIC_TYPES:
            numeric.append(column.name)
        elif column.type in TEMPORAL_TYPES:
            temporal.append(column.name)
        else:
            categorical.append(column.name)
    return _Shape(numeric, temporal, categorical, result.row_count)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class VisualizationSelector:
    """
    Chooses a chart kind and axis mapping, then asks the renderer for the
    payload. ``select`` never raises.
    """

    def __init__(
        self,
        renderer: ChartRenderer | None = None,
        bar_max_rows: int | None = None,
        pie_max_rows: int | None = None,
        pie_tolerance: float | None = None,
    ):
        if bar_max_rows is None or pie_max_rows is None or pie_tolerance is None:
            settings = get_settings().pipeline
            if bar_max_rows is None:
                bar_max_rows = settings.bar_max_rows
            if pie_max_rows is None:
                pie_max_rows = settings.pie_max_rows
            if pie_tolerance is None:
                pie_tolerance = settings.pie_tolerance

        self.renderer = renderer or VegaLiteRenderer()
        self.bar_max_rows = bar_max_rows
        self.pie_max_rows = pie_max_rows
        self.pie_tolerance = pie_tolerance

    def select(
        self, result: ResultSet, suggested: VisualizationKind = VisualizationKind.TABLE
    ) -> VisualizationSpec:
        try:
            kind, axis = self.choose(result, suggested)
        except Exception as e:
            logger.error(
                f"Visualization choice failed, using table: {type(e).__name__}", exc_info=True
            )
            kind, axis = VisualizationKind.TABLE, None

        try:
            payload = self.renderer.render(kind, axis, result)
        except Exception as e:
            logger.error(f"Chart rendering failed, using table: {type(e).__name__}", exc_info=True)
            kind, axis = VisualizationKind.TABLE, None
            payload = {"type": "table", "columns": [c.name for c in result.columns]}

        logger.debug(
            f"Selected {kind.value} visualization",
            extra={"kind": kind.value, "suggested": suggested.value, "rows": result.row_count},
        )
        return VisualizationSpec(kind=kind, axis_mapping=axis, rendering_payload=payload)

    def choose(
        self, result: ResultSet, suggested: VisualizationKind
    ) -> tuple[VisualizationKind, AxisMapping | None]:
        """Apply the decision table; returns the kind and its axis mapping."""
        shape = _shape(result)
        if shape.row_count == 0:
            return VisualizationKind.TABLE, None

        candidates = {
            VisualizationKind.LINE: self._line_axes(shape),
            VisualizationKind.BAR: self._bar_axes(shape),
            VisualizationKind.PIE: self._pie_axes(shape, result),
        }

        if suggested is not VisualizationKind.TABLE and candidates.get(suggested) is not None:
            return suggested, candidates[suggested]

        line = candidates[VisualizationKind.LINE]
        if line is not None:
            return VisualizationKind.LINE, line

        pie = candidates[VisualizationKind.PIE]
        if pie is not None and self._is_composition(result, pie.y):
            return VisualizationKind.PIE, pie

        bar = candidates[VisualizationKind.BAR]
        if bar is not None:
            return VisualizationKind.BAR, bar

        return VisualizationKind.TABLE, None

    def _line_axes(self, shape: _Shape) -> AxisMapping | None:
        if len(shape.temporal) != 1 or len(shape.numeric) != 1 or len(shape.categorical) > 1:
            return None
        series = shape.categorical[0] if shape.categorical else None
        return AxisMapping(x=shape.temporal[0], y=shape.numeric[0], series=series)

    def _bar_axes(self, shape: _Shape) -> AxisMapping | None:
        if shape.temporal or len(shape.categorical) != 1 or len(shape.numeric) != 1:
            return None
        if shape.row_count > self.bar_max_rows:
            return None
        return AxisMapping(x=shape.categorical[0], y=shape.numeric[0])

    def _pie_axes(self, shape: _Shape, result: ResultSet) -> AxisMapping | None:
        axes = self._bar_axes(shape)
        if axes is None or shape.row_count > self.pie_max_rows:
            return None
        values = self._numbers(result, axes.y)
        if values is None or any(v < 0 for v in values) or sum(values) <= 0:
            return None
        return axes

    def _is_composition(self, result: ResultSet, column: str) -> bool:
        values = self._numbers(result, column)
        return values is not None and abs(sum(values) - 1.0) <= self.pie_tolerance

    @staticmethod
    def _numbers(result: ResultSet, column: str) -> list[float] | None:
        index = result.column_names.index(column)
        numbers = [_as_number(v) for v in result.column_values(index)]
        if any(n is None for n in numbers):
            return None
        return numbers
