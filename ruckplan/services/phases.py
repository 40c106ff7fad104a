from __future__ import annotations

from ruckplan.workflow_models import Phase


def determine_phase(week: int, total_weeks: int) -> Phase:
    """Map a program week to its training phase by fractional progress.

    Ongoing templates (``total_weeks <= 0``) always train in the build phase.
    """
    if total_weeks <= 0:
        return Phase.BUILD
    ratio = week / total_weeks
    if ratio < 0.25:
        return Phase.FOUNDATION
    if ratio < 0.75:
        return Phase.BUILD
    if ratio < 0.9:
        return Phase.PEAK
    return Phase.TAPER


def phase_weeks(total_weeks: int) -> dict[Phase, list[int]]:
    """Group the weeks of a finite program by phase."""
    grouped: dict[Phase, list[int]] = {phase: [] for phase in Phase}
    for week in range(1, max(total_weeks, 0) + 1):
        grouped[determine_phase(week, total_weeks)].append(week)
    return grouped
