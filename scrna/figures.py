#!/usr/bin/env python3
"""
Figure output helpers shared by the plotting functions
"""

from pathlib import Path

import matplotlib.pyplot as plt

from scrna.parameters import PLOT_PARAMS


def finish_figure(fig, save_dir=None, filename=None, size=None):
    """Save a figure at fixed size and dpi, or show it

    Args:
        fig: Matplotlib figure
        save_dir: Directory to save into (optional). If provided, the figure is saved and closed.
        filename: Output file name inside save_dir
        size: Key into PLOT_PARAMS["sizes"] or an explicit (width, height) tuple

    Returns:
        Path of the saved file, or None when the figure was shown
    """
    if size is not None:
        if isinstance(size, str):
            size = PLOT_PARAMS["sizes"][size]
        fig.set_size_inches(*size)

    if save_dir is None:
        plt.show()
        return None

    save_dir = Path(save_dir)
    save_dir.mkdir(parents=True, exist_ok=True)
    out_path = save_dir / filename
    fig.savefig(out_path, dpi=PLOT_PARAMS["dpi"], bbox_inches="tight")
    print(f"  Saved: {out_path}")
    plt.close(fig)
    return out_path
