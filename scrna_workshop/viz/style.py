"""Style utilities and colors shared by the workshop figures."""

from pathlib import Path
from typing import Dict, List, Sequence, Union
import logging

logger = logging.getLogger(__name__)

# Two-condition colors (dot plots and split feature plots)
CONDITION_COLORS: List[str] = ["#1f4e9c", "#c0392b"]

# Labels drawn in gray whatever the palette
UNASSIGNED_LABELS = {"Unknown", "unassigned", "pruned", "nan"}
UNASSIGNED_COLOR = "#bdc3c7"


def set_publication_style():
    """Set matplotlib style for publication-quality figures."""
    import matplotlib.pyplot as plt
    import seaborn as sns

    sns.set_theme(style="whitegrid", context="paper")
    plt.rcParams.update({
        "font.size": 10,
        "axes.titlesize": 12,
        "axes.labelsize": 10,
        "legend.fontsize": 9,
        "figure.dpi": 100,
        "savefig.dpi": 200,
        "savefig.bbox": "tight",
        "axes.spines.top": False,
        "axes.spines.right": False,
    })


def get_color_palette(labels: Sequence[str]) -> Dict[str, str]:
    """Map labels to hex colors; unassigned-style labels are gray."""
    import seaborn as sns

    labels = [str(label) for label in labels]
    assigned = [label for label in labels if label not in UNASSIGNED_LABELS]
    palette = "tab10" if len(assigned) <= 10 else "tab20" if len(assigned) <= 20 else "husl"
    colors = dict(zip(assigned, sns.color_palette(palette, len(assigned)).as_hex()))
    for label in labels:
        colors.setdefault(label, UNASSIGNED_COLOR)
    return colors


def save_figure(
    fig,
    output_path: Union[str, Path],
    dpi: int = 200,
    close: bool = True,
) -> Path:
    """Save a matplotlib figure, creating the parent directory.

    Args:
        fig: Matplotlib figure object
        output_path: Path to save figure
        dpi: Resolution
        close: Whether to close figure after saving

    Returns:
        Path to saved figure
    """
    import matplotlib.pyplot as plt

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=dpi, bbox_inches="tight")
    if close:
        plt.close(fig)
    logger.debug("Saved figure: %s", output_path)
    return output_path
