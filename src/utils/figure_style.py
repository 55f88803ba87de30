#!/usr/bin/env python3
"""
Figure styling for maps and diagnostic plots.

This module sets matplotlib defaults shared by every figure the pipeline
writes. Import it at the start of any stage that generates figures.

Usage
-----
from utils.figure_style import apply_style, get_map_axes
fig, ax = get_map_axes()
msoa.plot(column='no2', ax=ax, legend=True)
"""
from pathlib import Path

import matplotlib

matplotlib.use('Agg')

import matplotlib.pyplot as plt

FONT_FAMILY = 'serif'
FONT_SIZE = 10
TITLE_SIZE = 11
LABEL_SIZE = 10
TICK_SIZE = 9
LEGEND_SIZE = 9

# Figure dimensions (inches)
FIG_WIDTH_SINGLE = 6.5
FIG_HEIGHT_SINGLE = 4.5
FIG_WIDTH_MAP = 6.5
FIG_HEIGHT_MAP = 5.5

# Sequential palette for choropleths
MAP_CMAP = 'viridis'
MAP_EDGE_COLOR = 'white'
MAP_EDGE_WIDTH = 0.2

# DPI for saved figures
DPI = 300


def apply_style():
    """Apply consistent figure styling."""
    plt.rcParams.update({
        # Font settings
        'font.family': FONT_FAMILY,
        'font.size': FONT_SIZE,

        # Title and labels
        'axes.titlesize': TITLE_SIZE,
        'axes.labelsize': LABEL_SIZE,

        # Ticks
        'xtick.labelsize': TICK_SIZE,
        'ytick.labelsize': TICK_SIZE,

        # Legend
        'legend.fontsize': LEGEND_SIZE,
        'legend.framealpha': 0.9,

        'figure.figsize': (FIG_WIDTH_SINGLE, FIG_HEIGHT_SINGLE),
        'figure.dpi': 100,
        'savefig.dpi': DPI,

        'axes.grid': True,
        'grid.alpha': 0.3,

        'axes.spines.top': False,
        'axes.spines.right': False,

        'figure.constrained_layout.use': True,
    })


def get_figure_single():
    """Create a single-panel figure with standard dimensions."""
    apply_style()
    return plt.figure(figsize=(FIG_WIDTH_SINGLE, FIG_HEIGHT_SINGLE))


def get_map_axes():
    """Create a figure and axes for a map: equal aspect, no grid or ticks."""
    apply_style()
    fig, ax = plt.subplots(figsize=(FIG_WIDTH_MAP, FIG_HEIGHT_MAP))
    ax.set_aspect('equal')
    ax.grid(False)
    ax.set_axis_off()
    return fig, ax


def plot_choropleth(gdf, column, title=None, ax=None, cmap=MAP_CMAP):
    """
    Draw a choropleth of ``column``; features with missing values are hatched grey.

    Returns the figure.
    """
    if ax is None:
        fig, ax = get_map_axes()
    else:
        fig = ax.figure

    gdf.plot(
        column=column,
        ax=ax,
        cmap=cmap,
        legend=True,
        edgecolor=MAP_EDGE_COLOR,
        linewidth=MAP_EDGE_WIDTH,
        missing_kwds={'color': 'lightgrey', 'hatch': '///', 'label': 'Missing'},
    )
    ax.set_title(title or column)
    return fig


def save_figure(fig, path, formats=('png',)):
    """
    Save a figure in each format and close it.

    Returns the path of the first file written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    written = []
    for fmt in formats:
        out = path.with_suffix(f'.{fmt}')
        fig.savefig(out, dpi=DPI, bbox_inches='tight')
        written.append(out)
    plt.close(fig)
    return written[0]
