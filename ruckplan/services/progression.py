"""Progressive overload math for template progression rules."""

from __future__ import annotations

from ruckplan.workflow_models import (
    MAX_INTENSITY,
    TemplateProgressionRule,
    WorkflowTemplate,
    WorkoutParameters,
    WorkoutType,
)


def progress_parameters(base: WorkoutParameters, rule: TemplateProgressionRule, week: int) -> WorkoutParameters:
    """Apply a rule's per-week increments to base parameters for the given week.

    Week 1 is the base; every later week adds one increment. Intensity is
    kept within [0, MAX_INTENSITY] and weight and distance never go below
    zero, so a rule with negative increments still yields valid
    parameters. Pace, rest, warmup/cooldown and heart-rate fields pass
    through unchanged.
    """
    week_progression = float(week - 1)
    weight = base.target_weight + rule.weight_progression * week_progression
    distance = base.target_distance + rule.distance_progression * week_progression
    intensity = base.intensity + rule.intensity_progression * week_progression
    return WorkoutParameters.model_validate(
        {
            **base.model_dump(),
            "target_weight": max(0.0, weight),
            "target_distance": max(0.0, distance),
            "intensity": min(max(0.0, intensity), MAX_INTENSITY),
        }
    )


def compute_parameters(template: WorkflowTemplate, week: int, workout_type: WorkoutType) -> WorkoutParameters:
    """Concrete parameters for a workout type in a given week of a template."""
    base = template.base_parameters_for(workout_type)
    rule = template.progression_rule_for(week)
    if rule is None:
        return base
    return progress_parameters(base, rule, week)
