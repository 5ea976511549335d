"""
Chart Rendering

The rendering capability turns a chosen chart kind and axis mapping into
the opaque ``rendering_payload`` of a VisualizationSpec. The default
renderer emits Vega-Lite v5 specifications; any other chart library or
dashboard service can be plugged in by implementing ``ChartRenderer``.
"""

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Protocol

from askdash.models.query import VisualizationKind
from askdash.models.result import AxisMapping, ResultSet

VEGA_LITE_SCHEMA = "https://vega.github.io/schema/vega-lite/v5.json"


class ChartRenderer(Protocol):
    """Rendering capability: one method."""

    def render(
        self, kind: VisualizationKind, axis_mapping: AxisMapping | None, result: ResultSet
    ) -> dict[str, Any]: ...


def _json_value(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


class VegaLiteRenderer:
    """Vega-Lite v5 specs for charts; a column listing for tables."""

    def __init__(self, max_points: int = 5000):
        self.max_points = max_points

    def render(
        self, kind: VisualizationKind, axis_mapping: AxisMapping | None, result: ResultSet
    ) -> dict[str, Any]:
        if kind is VisualizationKind.TABLE or axis_mapping is None:
            return {
                "type": "table",
                "columns": [{"field": c.name, "type": c.type} for c in result.columns],
            }

        names = result.column_names
        values = [
            {name: _json_value(value) for name, value in zip(names, row)}
            for row in result.rows[: self.max_points]
        ]
        x, y = axis_mapping.x, axis_mapping.y
        spec: dict[str, Any] = {"$schema": VEGA_LITE_SCHEMA, "data": {"values": values}}

        if kind is VisualizationKind.LINE:
            encoding: dict[str, Any] = {
                "x": {"field": x, "type": "temporal", "sort": "ascending"},
                "y": {"field": y, "type": "quantitative"},
                "tooltip": [{"field": x}, {"field": y}],
            }
            if axis_mapping.series:
                encoding["color"] = {"field": axis_mapping.series, "type": "nominal"}
                encoding["tooltip"].append({"field": axis_mapping.series})
            spec.update({"mark": {"type": "line", "point": True}, "encoding": encoding})
        elif kind is VisualizationKind.BAR:
            spec.update(
                {
                    "mark": "bar",
                    "encoding": {
                        "x": {"field": x, "type": "nominal", "sort": "-y"},
                        "y": {"field": y, "type": "quantitative"},
                        "tooltip": [{"field": x}, {"field": y}],
                    },
                }
            )
        else:
            spec.update(
                {
                    "mark": {"type": "arc"},
                    "encoding": {
                        "theta": {"field": y, "type": "quantitative"},
                        "color": {"field": x, "type": "nominal"},
                        "tooltip": [{"field": x}, {"field": y}],
                    },
                }
            )
        return spec
