from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping

import matplotlib.pyplot as plt
import numpy as np

logger = logging.getLogger(__name__)


def plot_class_counts(
    *,
    strong: Mapping[str, int],
    combined: Mapping[str, int],
    out_png: str | Path,
    title: str = "Fragment classes",
) -> None:
    """Grouped bar chart of fragment classes for both tallies.

    ``strong`` and ``combined`` map class labels to counts; bars follow the
    key order of ``strong``.
    """
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels = list(strong)
    x = np.arange(len(labels))
    width = 0.4

    plt.figure()
    plt.bar(x - width / 2, [int(strong.get(k, 0)) for k in labels], width=width, label="strong positions")
    plt.bar(x + width / 2, [int(combined.get(k, 0)) for k in labels], width=width, label="effective positions")
    plt.xticks(x, labels, rotation=15, ha="right")
    plt.ylabel("Fragment count")
    plt.title(title)
    plt.legend()
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
