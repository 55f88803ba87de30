"""
Utilities package.

Provides shared utilities for the spatial linkage pipeline:
- cache: On-disk cache for downloaded bytes
- demo_data: Synthetic layers for offline runs
- figure_style: Matplotlib styling for maps and diagnostic plots
- helpers: Common utility functions
"""
from .figure_style import apply_style, get_figure_single, get_map_axes, plot_choropleth
