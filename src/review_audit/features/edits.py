from __future__ import annotations

from dataclasses import dataclass

from review_audit.snapshot import EditHeatmap

MIN_EDIT_MONTHS = 6
RECENT_EDIT_MONTHS = 6


@dataclass(frozen=True)
class EditAnalysis:
    recent_negative_edit_ratio: float = 0.0
    old_reviews_edited_ratio: float = 0.0
    total_edits: int = 0


def analyze_edit_heatmap(heatmap: EditHeatmap) -> EditAnalysis:
    """Summarize how often and in which direction old reviews get rewritten.

    Cells where the edit happened in the posting month are not edits.
    """
    months = heatmap.months
    if len(months) < MIN_EDIT_MONTHS:
        return EditAnalysis()

    recent_edit_months = set(months[-RECENT_EDIT_MONTHS:])
    old_post_months = set(months[: len(months) // 2])

    total_edits = recent_edits = recent_negative = 0
    old_edited = old_total = 0
    for (posted, edited), (positive, negative) in heatmap.cell_map().items():
        count = positive + negative
        if posted in old_post_months:
            old_total += count
        if posted == edited:
            continue
        total_edits += count
        if edited in recent_edit_months:
            recent_edits += count
            recent_negative += negative
        if posted in old_post_months and edited > posted:
            old_edited += count

    return EditAnalysis(
        recent_negative_edit_ratio=recent_negative / recent_edits if recent_edits else 0.0,
        old_reviews_edited_ratio=old_edited / old_total if old_total else 0.0,
        total_edits=total_edits,
    )
