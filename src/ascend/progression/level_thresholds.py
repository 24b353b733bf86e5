"""Level thresholds and computation.

Threshold rule (inclusive): a level applies once ``total_xp >= cumulative``.
An account sitting exactly on a boundary value is already at the higher level.
Thresholds and titles come from settings so the curve can be tuned without
a deploy; the table must be strictly increasing and start at 0.
"""

from __future__ import annotations

from bisect import bisect_right
from functools import lru_cache

from ascend.config import get_settings


def build_level_table(thresholds: list[int], titles: list[str]) -> list[dict]:
    """Validate a threshold curve and expand it into level rows."""
    if not thresholds or thresholds[0] != 0:
        msg = "Level thresholds must start at 0"
        raise ValueError(msg)
    if any(b <= a for a, b in zip(thresholds, thresholds[1:])):
        msg = "Level thresholds must be strictly increasing"
        raise ValueError(msg)
    if len(titles) != len(thresholds):
        msg = "Every level threshold needs a title"
        raise ValueError(msg)

    table = []
    for index, (cumulative, title) in enumerate(zip(thresholds, titles)):
        previous = thresholds[index - 1] if index else 0
        table.append({
            "level": index + 1,
            "title": title,
            "xp_required": cumulative - previous,
            "cumulative": cumulative,
        })
    return table


@lru_cache
def get_level_table() -> tuple[dict, ...]:
    settings = get_settings()
    return tuple(build_level_table(settings.level_thresholds, settings.level_titles))


def compute_level(total_xp: int, table: tuple[dict, ...] | list[dict] | None = None) -> dict:
    """Compute level info from total XP.

    Returns dict with: level, title, xp_into_level, xp_for_level, next_level, next_title.
    """
    table = table if table is not None else get_level_table()
    total_xp = max(total_xp, 0)

    index = bisect_right([row["cumulative"] for row in table], total_xp) - 1
    current = table[index]
    nxt = table[index + 1] if index + 1 < len(table) else None

    xp_into_level = total_xp - current["cumulative"]
    xp_for_level = (nxt["cumulative"] - current["cumulative"]) if nxt else 0

    return {
        "level": current["level"],
        "title": current["title"],
        "xp_into_level": xp_into_level,
        "xp_for_level": xp_for_level,
        "next_level": nxt["level"] if nxt else None,
        "next_title": nxt["title"] if nxt else None,
    }
