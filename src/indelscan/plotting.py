from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List

import matplotlib.pyplot as plt
import numpy as np

logger = logging.getLogger(__name__)


def length_histogram(counts_by_length: Dict[int, int], *, max_bin: int = 50) -> Dict[str, List[int]]:
    """Collapse ``{length: count}`` into bins ``1..max_bin`` plus one tail bin for longer indels."""
    counts = np.zeros(max_bin + 1, dtype=np.int64)
    for length, n in counts_by_length.items():
        idx = min(max(int(length), 1), max_bin + 1) - 1
        counts[idx] += int(n)
    return {
        "lengths": list(range(1, max_bin + 2)),
        "counts": counts.tolist(),
    }


def plot_indel_length_hist(
    *,
    insertion_hist: Dict[str, List[int]],
    deletion_hist: Dict[str, List[int]],
    out_png: str | Path,
    title: str = "Indel length distribution",
) -> None:
    """Side-by-side bars of insertion and deletion event counts per length.

    The last bin collects every length above the histogram's ``max_bin``.
    """
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    xs = np.asarray(insertion_hist["lengths"], dtype=float)
    width = 0.4
    labels = [str(int(x)) for x in xs]
    labels[-1] = f"{int(xs[-1])}+"

    plt.figure(figsize=(10, 4))
    plt.bar(xs - width / 2, insertion_hist["counts"], width=width, label="Insertions")
    plt.bar(xs + width / 2, deletion_hist["counts"], width=width, label="Deletions")
    plt.xlabel("Indel length (bp)")
    plt.ylabel("Event count")
    plt.title(title)
    step = max(1, len(xs) // 10)
    plt.xticks(xs[::step], labels[::step])
    plt.legend()
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
