"""Rendering of sorted predictions as bar rows, plain text or HTML."""

from html import escape
from typing import Any, Dict, List, Sequence

from image_detector.config import RESULT_DECIMALS
from image_detector.prediction import Prediction

TEXT_BAR_WIDTH = 30


def format_percent(probability: float, decimals: int = RESULT_DECIMALS) -> str:
    return f"{probability * 100:.{decimals}f}%"


def render_rows(
    predictions: Sequence[Prediction],
    decimals: int = RESULT_DECIMALS,
) -> List[Dict[str, Any]]:
    """
    One row per class, in the given order.

    ``bar_width`` is the filled share of the bar track in percent.
    """
    return [
        {
            "rank": rank,
            "label": p.label,
            "probability": p.probability,
            "percent": format_percent(p.probability, decimals),
            "bar_width": round(p.probability * 100, 4),
        }
        for rank, p in enumerate(predictions, 1)
    ]


def render_text(
    predictions: Sequence[Prediction],
    decimals: int = RESULT_DECIMALS,
    bar_width: int = TEXT_BAR_WIDTH,
) -> str:
    if not predictions:
        return "No predictions"
    label_w = max(len(p.label) for p in predictions)
    lines = []
    for p in predictions:
        filled = int(round(p.probability * bar_width))
        bar = "█" * filled + "░" * (bar_width - filled)
        lines.append(f"{p.label.ljust(label_w)}  {bar}  {format_percent(p.probability, decimals)}")
    return "\n".join(lines)


def render_html(predictions: Sequence[Prediction], decimals: int = RESULT_DECIMALS) -> str:
    if not predictions:
        return '<div class="results"><p>No predictions</p></div>'
    top = predictions[0]
    parts = [
        '<div class="results">',
        f'<h3 class="top-prediction">{escape(top.label)} '
        f"({format_percent(top.probability, decimals)})</h3>",
    ]
    for row in render_rows(predictions, decimals):
        parts.append(
            '<div class="prediction-row">'
            f'<span class="label">{escape(row["label"])}</span>'
            '<div class="progress-bar">'
            f'<div class="progress-fill" style="width: {row["bar_width"]}%"></div>'
            "</div>"
            f'<span class="percent">{row["percent"]}</span>'
            "</div>"
        )
    parts.append("</div>")
    return "".join(parts)
