"""Template catalog: immutable workflow templates, one per category x difficulty.

The catalog is built once at startup (built-ins plus an optional JSON file)
and is read-only afterwards. Selection never fails: exact match, then the
first template of the same category, then the built-in default.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional
from uuid import NAMESPACE_URL, UUID, uuid5

from pydantic import TypeAdapter, ValidationError

from ruckplan.config import Settings
from ruckplan.errors import InvalidParameters, TemplateNotFound
from ruckplan.workflow_models import (
    Difficulty,
    HeartRateZone,
    Phase,
    ProgramCategory,
    TemplateProgressionRule,
    TimeDuration,
    WeekPattern,
    WorkflowTemplate,
    WorkoutParameters,
    WorkoutType,
)

logger = logging.getLogger(__name__)

E = WorkoutType.ENDURANCE
S = WorkoutType.STRENGTH
SP = WorkoutType.SPEED
R = WorkoutType.RECOVERY
T = WorkoutType.TEST
REST = WorkoutType.REST
F = WorkoutType.FOUNDATION

_TEMPLATE_LIST = TypeAdapter(list[WorkflowTemplate])


def template_id(name: str) -> UUID:
    """Stable id for a named template so cached workflows compare equal across restarts."""
    return uuid5(NAMESPACE_URL, f"ruckplan:template:{name.lower()}")


def _params(weight: float, distance: float, pace: float, intensity: float, zone: HeartRateZone = HeartRateZone.AEROBIC, rest: float = 60.0) -> WorkoutParameters:
    return WorkoutParameters(
        target_weight=weight,
        target_distance=distance,
        target_pace=pace,
        intensity=intensity,
        rest_interval_seconds=rest,
        warmup_duration=TimeDuration(seconds=600),
        cooldown_duration=TimeDuration(seconds=600),
        heart_rate_zone=zone,
    )


def _pattern(*types: WorkoutType, modifier: float = 1.0) -> WeekPattern:
    return WeekPattern(workout_types=tuple(types), intensity_modifier=modifier)


def military_foundation_template() -> WorkflowTemplate:
    return WorkflowTemplate(
        id=template_id("Military Foundation"),
        name="Military Foundation",
        category=ProgramCategory.MILITARY,
        difficulty=Difficulty.BEGINNER,
        duration_weeks=8,
        week_patterns={
            Phase.FOUNDATION: (_pattern(E, REST, F, REST, E, modifier=0.8),),
            Phase.BUILD: (_pattern(E, S, REST, E, modifier=0.9), _pattern(E, R, S, REST, E)),
            Phase.PEAK: (_pattern(S, E, REST, SP, E),),
            Phase.TAPER: (_pattern(R, E, REST, T, modifier=0.7),),
        },
        base_parameters={
            F: _params(20.0, 2.0, 16.0, 0.5, HeartRateZone.RECOVERY),
            E: _params(25.0, 3.0, 15.0, 0.6),
            S: _params(30.0, 2.0, 16.0, 0.7, HeartRateZone.THRESHOLD),
            SP: _params(15.0, 2.0, 13.5, 0.8, HeartRateZone.ANAEROBIC, rest=90.0),
            R: _params(15.0, 2.0, 17.0, 0.4, HeartRateZone.RECOVERY),
            T: _params(25.0, 4.0, 15.0, 0.9, HeartRateZone.THRESHOLD),
        },
        progression_rules=(
            TemplateProgressionRule(week_start=1, week_end=4, weight_progression=2.5, distance_progression=0.25, intensity_progression=0.02),
            TemplateProgressionRule(week_start=5, week_end=8, weight_progression=2.0, distance_progression=0.25, intensity_progression=0.03),
        ),
    )


def ranger_challenge_template() -> WorkflowTemplate:
    return WorkflowTemplate(
        id=template_id("Ranger Challenge"),
        name="Ranger Challenge",
        category=ProgramCategory.MILITARY,
        difficulty=Difficulty.ADVANCED,
        duration_weeks=12,
        week_patterns={
            Phase.FOUNDATION: (_pattern(E, S, REST, E, R),),
            Phase.BUILD: (_pattern(E, S, SP, REST, E), _pattern(S, E, R, SP, E)),
            Phase.PEAK: (_pattern(SP, E, S, REST, E, modifier=1.1),),
            Phase.TAPER: (_pattern(R, E, REST, T, modifier=0.75),),
        },
        base_parameters={
            E: _params(35.0, 5.0, 14.5, 0.7),
            S: _params(45.0, 3.0, 15.5, 0.8, HeartRateZone.THRESHOLD),
            SP: _params(25.0, 3.0, 13.0, 0.85, HeartRateZone.ANAEROBIC, rest=75.0),
            R: _params(20.0, 3.0, 16.5, 0.45, HeartRateZone.RECOVERY),
            T: _params(35.0, 12.0, 15.0, 0.95, HeartRateZone.THRESHOLD),
        },
        progression_rules=(
            TemplateProgressionRule(week_start=1, week_end=6, weight_progression=2.5, distance_progression=0.5, intensity_progression=0.02),
            TemplateProgressionRule(week_start=7, week_end=12, weight_progression=1.5, distance_progression=0.5, intensity_progression=0.02),
        ),
    )


def selection_prep_template() -> WorkflowTemplate:
    return WorkflowTemplate(
        id=template_id("Selection Prep"),
        name="Selection Prep",
        category=ProgramCategory.MILITARY,
        difficulty=Difficulty.ELITE,
        duration_weeks=16,
        week_patterns={
            Phase.FOUNDATION: (_pattern(E, S, R, E, REST, E),),
            Phase.BUILD: (_pattern(E, S, SP, R, E, REST), _pattern(S, E, SP, E, REST, E, modifier=1.05)),
            Phase.PEAK: (_pattern(SP, E, S, R, E, REST, modifier=1.1),),
            Phase.TAPER: (_pattern(R, E, REST, SP, REST, T, modifier=0.7),),
        },
        base_parameters={
            E: _params(45.0, 6.0, 14.0, 0.75),
            S: _params(55.0, 4.0, 15.0, 0.85, HeartRateZone.THRESHOLD),
            SP: _params(35.0, 4.0, 12.5, 0.9, HeartRateZone.ANAEROBIC, rest=60.0),
            R: _params(25.0, 3.0, 16.0, 0.5, HeartRateZone.RECOVERY),
            T: _params(45.0, 12.0, 14.5, 1.0, HeartRateZone.THRESHOLD),
        },
        progression_rules=(
            TemplateProgressionRule(week_start=1, week_end=8, weight_progression=2.0, distance_progression=0.5, intensity_progression=0.015),
            TemplateProgressionRule(week_start=9, week_end=16, weight_progression=1.0, distance_progression=0.5, intensity_progression=0.01),
        ),
    )


def maintenance_template() -> WorkflowTemplate:
    """Ongoing program: no fixed length and no progression."""
    return WorkflowTemplate(
        id=template_id("Maintenance"),
        name="Maintenance",
        category=ProgramCategory.FITNESS,
        difficulty=Difficulty.INTERMEDIATE,
        duration_weeks=0,
        week_patterns={
            Phase.BUILD: (_pattern(E, REST, S, REST, R),),
        },
        base_parameters={
            E: _params(30.0, 4.0, 15.0, 0.65),
            S: _params(35.0, 3.0, 15.5, 0.7, HeartRateZone.THRESHOLD),
            R: _params(20.0, 2.0, 17.0, 0.4, HeartRateZone.RECOVERY),
        },
    )


def default_template() -> WorkflowTemplate:
    return WorkflowTemplate(
        id=template_id("Default"),
        name="Default",
        category=ProgramCategory.FITNESS,
        difficulty=Difficulty.BEGINNER,
        duration_weeks=8,
        week_patterns={},
        base_parameters={},
        progression_rules=(
            TemplateProgressionRule(week_start=1, week_end=8, weight_progression=1.0, distance_progression=0.25),
        ),
    )


def builtin_templates() -> list[WorkflowTemplate]:
    return [
        military_foundation_template(),
        ranger_challenge_template(),
        selection_prep_template(),
        maintenance_template(),
    ]


def validate_template(template: WorkflowTemplate) -> list[str]:
    """Return authoring warnings for a template.

    Overlapping progression-rule ranges are allowed (the first matching rule
    wins at runtime) but reported here.
    """
    warnings: list[str] = []
    rules = template.progression_rules
    for i, rule in enumerate(rules):
        for later in rules[i + 1 :]:
            if rule.overlaps(later):
                warnings.append(
                    f"progression rules {rule.week_start}-{rule.week_end} and {later.week_start}-{later.week_end} overlap"
                )
    for rule in rules:
        if min(rule.weight_progression, rule.distance_progression, rule.intensity_progression) < 0:
            warnings.append(f"progression rule {rule.week_start}-{rule.week_end} decreases load; values are floored at zero")
    if template.duration_weeks:
        beyond = [r for r in rules if r.week_start > template.duration_weeks]
        if beyond:
            warnings.append(f"{len(beyond)} progression rule(s) start after week {template.duration_weeks}")
    for message in warnings:
        logger.warning("template_validation", extra={"ctx_template": template.name, "ctx_issue": message})
    return warnings


def load_templates(path: str | Path) -> list[WorkflowTemplate]:
    """Load extra templates from a JSON file holding a list of template objects."""
    raw = Path(path).read_text(encoding="utf-8")
    try:
        return _TEMPLATE_LIST.validate_json(raw)
    except ValidationError as exc:
        raise InvalidParameters(f"Invalid template file {path}", details={"errors": exc.errors(include_url=False)}) from exc


class TemplateCatalog:
    """Read-only collection of workflow templates."""

    def __init__(self, templates: Optional[Iterable[WorkflowTemplate]] = None, default: Optional[WorkflowTemplate] = None):
        self._templates: tuple[WorkflowTemplate, ...] = tuple(builtin_templates() if templates is None else templates)
        self._default = default or default_template()
        for template in self._templates:
            validate_template(template)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TemplateCatalog":
        templates = builtin_templates()
        if settings.templates_path:
            extra = load_templates(settings.templates_path)
            logger.info("templates_loaded", extra={"ctx_path": settings.templates_path, "ctx_count": len(extra)})
            templates.extend(extra)
        return cls(templates)

    @property
    def templates(self) -> tuple[WorkflowTemplate, ...]:
        return self._templates

    @property
    def default(self) -> WorkflowTemplate:
        return self._default

    def select_template(self, category: ProgramCategory, difficulty: Difficulty) -> WorkflowTemplate:
        exact = next((t for t in self._templates if t.category == category and t.difficulty == difficulty), None)
        if exact is not None:
            return exact
        same_category = next((t for t in self._templates if t.category == category), None)
        if same_category is not None:
            logger.info(
                "template_fallback_category",
                extra={"ctx_category": category.value, "ctx_difficulty": difficulty.value, "ctx_template": same_category.name},
            )
            return same_category
        logger.info("template_fallback_default", extra={"ctx_category": category.value, "ctx_difficulty": difficulty.value})
        return self._default

    def get(self, template_id: UUID | str) -> WorkflowTemplate:
        key = str(template_id)
        for template in (*self._templates, self._default):
            if str(template.id) == key:
                return template
        raise TemplateNotFound(f"Workflow template {key} not found")
