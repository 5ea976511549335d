"""
askdash Visualization Module

Chart-kind selection and the pluggable rendering capability.
"""

from askdash.visualization.renderer import ChartRenderer, VegaLiteRenderer
from askdash.visualization.selector import VisualizationSelector

__all__ = ["ChartRenderer", "VegaLiteRenderer", "VisualizationSelector"]
