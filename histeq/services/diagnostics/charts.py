from typing import Tuple

import numpy as np
from matplotlib.backends.backend_agg import FigureCanvasAgg
from matplotlib.figure import Figure

from histeq.domain.models import EqualizationResult
from histeq.domain.types import NUM_BINS


def plot_equalization(
    result: EqualizationResult, figsize: Tuple[float, float] = (9, 2.6), dpi: int = 150
) -> Figure:
    """
    Histogram, cumulative histogram and tone curve of one run side by side.
    """
    fig = Figure(figsize=figsize, dpi=dpi)
    FigureCanvasAgg(fig)
    axes = fig.subplots(1, 3)
    bins = np.arange(NUM_BINS)

    ax_hist, ax_cum, ax_lut = axes
    ax_hist.bar(bins, result.histogram, width=1.0, color="#3182ce")
    ax_hist.set_title("Histogram", fontsize=8)

    ax_cum.plot(bins, result.cumulative, color="#28df99", lw=1.2)
    ax_cum.fill_between(bins, result.cumulative, color="#28df99", alpha=0.1)
    ax_cum.set_title("Cumulative Histogram", fontsize=8)

    ax_lut.plot(bins, result.lut, color="#ff4b4b", lw=1.2)
    ax_lut.plot(bins, bins, color="#7d7d7d", lw=0.8, ls="--", alpha=0.5)
    ax_lut.set_ylim(0, 256)
    ax_lut.set_title("LUT", fontsize=8)

    for ax in axes:
        ax.set_xlim(0, NUM_BINS)
        ax.tick_params(labelsize=6)
        ax.spines["top"].set_visible(False)
        ax.spines["right"].set_visible(False)

    fig.tight_layout()
    return fig


def render_equalization_chart(result: EqualizationResult, path: str) -> None:
    fig = plot_equalization(result)
    fig.savefig(path)
