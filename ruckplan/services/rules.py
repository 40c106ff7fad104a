"""Rule-based adaptation: general progression rules and per-session adaptation rules.

Progression rules pair a condition over recent observations with a
parameter action and a priority. When several rules match, the highest
priority wins and ties go to the rule declared first.

Adaptation rules come from session-level adaptations (e.g. "decrease
intensity") and modify future workouts for a bounded number of weeks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ruckplan.errors import AdaptationFailed
from ruckplan.workflow_models import (
    MAX_INTENSITY,
    AdaptationFlag,
    AdaptationRule,
    AdaptationType,
    AddRestDayAction,
    AverageCompletionTimeCondition,
    ConsistencyThresholdTrigger,
    DecreaseDistanceAction,
    DecreaseIntensityAction,
    DecreaseWeightAction,
    DistanceAdjustment,
    HeartRateAnomalyTrigger,
    HeartRateRecoveryCondition,
    IncreaseDistanceAction,
    IncreaseIntensityAction,
    IncreaseWeightAction,
    InjuryRiskTrigger,
    IntensityAdjustment,
    MissedWorkoutsCondition,
    PerformancePatternTrigger,
    PermanentDuration,
    PlannedWorkout,
    ProgramSession,
    ProgressionAction,
    ProgressionCondition,
    ProgressionPriority,
    ProgressionRule,
    ProgressionStrategy,
    PerformanceMetrics,
    RemoveRestDayAction,
    ScheduleChange,
    TemporaryDuration,
    UntilConditionDuration,
    UserFeedbackCondition,
    UserFeedbackTrigger,
    WeeklyConsistencyCondition,
    WeightAdjustment,
    WorkoutParameters,
    WorkoutType,
    WorkoutTypeChange,
)
from ruckplan.services.structure import estimate_difficulty, synthesize

logger = logging.getLogger(__name__)


@dataclass
class RuleObservations:
    """Recent observations the progression conditions are evaluated against."""

    weekly_consistency: Optional[float] = None
    completion_time_ratio: Optional[float] = None
    heart_rate_recovery: Optional[float] = None
    missed_workouts: int = 0
    feedback_rating: Optional[int] = None

    @classmethod
    def from_performance(cls, performance: PerformanceMetrics, missed_workouts: int = 0) -> "RuleObservations":
        return cls(
            weekly_consistency=performance.consistency,
            completion_time_ratio=performance.average_effort,
            missed_workouts=missed_workouts,
        )


def default_progression_rules() -> list[ProgressionRule]:
    return [
        ProgressionRule(
            condition=WeeklyConsistencyCondition(threshold=0.8),
            action=IncreaseWeightAction(amount=2.5),
            priority=ProgressionPriority.HIGH,
        ),
        ProgressionRule(
            condition=AverageCompletionTimeCondition(ratio=0.85),
            action=IncreaseIntensityAction(multiplier=1.1),
            priority=ProgressionPriority.MEDIUM,
        ),
        ProgressionRule(
            condition=HeartRateRecoveryCondition(threshold=0.7),
            action=IncreaseDistanceAction(multiplier=1.1),
            priority=ProgressionPriority.MEDIUM,
        ),
        ProgressionRule(
            condition=MissedWorkoutsCondition(count=2),
            action=DecreaseIntensityAction(multiplier=0.9),
            priority=ProgressionPriority.HIGH,
        ),
    ]


def condition_met(condition: ProgressionCondition, obs: RuleObservations) -> bool:
    if isinstance(condition, WeeklyConsistencyCondition):
        return obs.weekly_consistency is not None and obs.weekly_consistency >= condition.threshold
    if isinstance(condition, AverageCompletionTimeCondition):
        # Finishing faster than the ratio of planned time
        return obs.completion_time_ratio is not None and obs.completion_time_ratio <= condition.ratio
    if isinstance(condition, HeartRateRecoveryCondition):
        return obs.heart_rate_recovery is not None and obs.heart_rate_recovery >= condition.threshold
    if isinstance(condition, MissedWorkoutsCondition):
        return obs.missed_workouts >= condition.count
    if isinstance(condition, UserFeedbackCondition):
        return obs.feedback_rating is not None and obs.feedback_rating >= condition.rating
    raise AdaptationFailed(f"Unhandled progression condition: {condition!r}")


def select_rule(rules: list[ProgressionRule], obs: RuleObservations) -> Optional[ProgressionRule]:
    """Highest-priority matching rule; ties resolved by declaration order."""
    best: Optional[ProgressionRule] = None
    for rule in rules:
        if not condition_met(rule.condition, obs):
            continue
        if best is None or rule.priority.rank > best.priority.rank:
            best = rule
    if best is not None:
        logger.debug("progression_rule_selected", extra={"ctx_action": best.action.kind, "ctx_priority": best.priority.value})
    return best


def select_action(rules: list[ProgressionRule], obs: RuleObservations) -> Optional[ProgressionAction]:
    rule = select_rule(rules, obs)
    return rule.action if rule else None


def apply_action(parameters: WorkoutParameters, action: ProgressionAction) -> tuple[WorkoutParameters, list[AdaptationFlag]]:
    """Return new parameters with the action applied plus the flags it implies.

    Rest-day actions change the calendar, not the parameters, and only
    produce a schedule flag.
    """
    p = parameters
    if isinstance(action, IncreaseWeightAction):
        return p.model_copy(update={"target_weight": p.target_weight + action.amount}), [AdaptationFlag.WEIGHT_INCREASED]
    if isinstance(action, DecreaseWeightAction):
        return p.model_copy(update={"target_weight": max(0.0, p.target_weight - action.amount)}), [AdaptationFlag.WEIGHT_DECREASED]
    if isinstance(action, (IncreaseDistanceAction, DecreaseDistanceAction)):
        distance = round(max(0.0, p.target_distance * action.multiplier), 2)
        return p.model_copy(update={"target_distance": distance}), [AdaptationFlag.DISTANCE_MODIFIED]
    if isinstance(action, (IncreaseIntensityAction, DecreaseIntensityAction)):
        intensity = round(min(max(0.0, p.intensity * action.multiplier), MAX_INTENSITY), 4)
        return p.model_copy(update={"intensity": intensity}), [AdaptationFlag.INTENSITY_ADJUSTED]
    if isinstance(action, (AddRestDayAction, RemoveRestDayAction)):
        return p, [AdaptationFlag.SCHEDULE_MODIFIED]
    raise AdaptationFailed(f"Unhandled progression action: {action!r}")


# -- Strategy --

STRATEGY_WEIGHT_FACTOR = {
    ProgressionStrategy.CONSERVATIVE: 0.9,
    ProgressionStrategy.MODERATE: 1.0,
    ProgressionStrategy.AGGRESSIVE: 1.1,
}


def determine_strategy(performance: PerformanceMetrics) -> ProgressionStrategy:
    if performance.consistency >= 0.9 and performance.average_effort < 0.8:
        return ProgressionStrategy.AGGRESSIVE
    if performance.consistency >= 0.7:
        return ProgressionStrategy.MODERATE
    return ProgressionStrategy.CONSERVATIVE


def apply_strategy(parameters: WorkoutParameters, base: WorkoutParameters, strategy: ProgressionStrategy) -> WorkoutParameters:
    """Scale the progression gained over the base by the strategy factor.

    Only the increment above base is scaled, so the template floor is
    never crossed.
    """
    factor = STRATEGY_WEIGHT_FACTOR[strategy]
    if factor == 1.0:
        return parameters

    def scaled(value: float, floor: float) -> float:
        gained = value - floor
        if gained <= 0:
            return value
        return round(floor + gained * factor, 2)

    return parameters.model_copy(
        update={
            "target_weight": scaled(parameters.target_weight, base.target_weight),
            "target_distance": scaled(parameters.target_distance, base.target_distance),
            "intensity": min(scaled(parameters.intensity, base.intensity), MAX_INTENSITY),
        }
    )


# -- Adaptation rules --

_DECREASING_ADAPTATIONS = {AdaptationType.DECREASE_INTENSITY, AdaptationType.REST_RECOMMENDED}
ADAPTATION_WEIGHT_STEP = 2.5
ADAPTATION_WEEKS = 2


def adaptation_rules_for(session: ProgramSession) -> list[AdaptationRule]:
    """Translate a session's recorded adaptations into adaptation rules."""
    rules: list[AdaptationRule] = []
    for adaptation in session.adaptations:
        step = -ADAPTATION_WEIGHT_STEP if adaptation.adaptation_type in _DECREASING_ADAPTATIONS else ADAPTATION_WEIGHT_STEP
        rules.append(
            AdaptationRule(
                trigger=PerformancePatternTrigger(adaptation_type=adaptation.adaptation_type),
                modification=WeightAdjustment(value=step),
                duration=TemporaryDuration(weeks=ADAPTATION_WEEKS),
            )
        )
    return rules


def _rule_active(rule: AdaptationRule, weeks_since_start: int, obs: Optional[RuleObservations]) -> bool:
    duration = rule.duration
    if isinstance(duration, TemporaryDuration):
        return weeks_since_start < duration.weeks
    if isinstance(duration, PermanentDuration):
        return True
    if isinstance(duration, UntilConditionDuration):
        # Active until the exit condition is observed
        return obs is None or not condition_met(duration.condition, obs)
    raise AdaptationFailed(f"Unhandled adaptation duration: {duration!r}")


def _trigger_fires(rule: AdaptationRule, obs: Optional[RuleObservations]) -> bool:
    trigger = rule.trigger
    if isinstance(trigger, PerformancePatternTrigger):
        return True
    if isinstance(trigger, ConsistencyThresholdTrigger):
        return obs is not None and obs.weekly_consistency is not None and obs.weekly_consistency < trigger.value
    if isinstance(trigger, (HeartRateAnomalyTrigger, UserFeedbackTrigger, InjuryRiskTrigger)):
        # Raised by the host application; presence of the rule means it fired.
        return True
    raise AdaptationFailed(f"Unhandled adaptation trigger: {trigger!r}")


def adapt_parameters(
    parameters: WorkoutParameters,
    workout_type: WorkoutType,
    rules: list[AdaptationRule],
    weeks_since_start: int,
    obs: Optional[RuleObservations] = None,
) -> tuple[WorkoutParameters, WorkoutType, list[AdaptationFlag]]:
    """Apply every active adaptation rule to a workout's parameters."""
    params = parameters
    flags: list[AdaptationFlag] = []

    for rule in rules:
        if not _rule_active(rule, weeks_since_start, obs) or not _trigger_fires(rule, obs):
            continue
        mod = rule.modification
        if isinstance(mod, WeightAdjustment):
            params = params.model_copy(update={"target_weight": max(0.0, params.target_weight + mod.value)})
            flags.append(AdaptationFlag.WEIGHT_INCREASED if mod.value >= 0 else AdaptationFlag.WEIGHT_DECREASED)
        elif isinstance(mod, DistanceAdjustment):
            params = params.model_copy(update={"target_distance": round(max(0.0, params.target_distance + mod.value), 2)})
            flags.append(AdaptationFlag.DISTANCE_MODIFIED)
        elif isinstance(mod, IntensityAdjustment):
            intensity = min(max(0.0, params.intensity + mod.value), MAX_INTENSITY)
            params = params.model_copy(update={"intensity": round(intensity, 4)})
            flags.append(AdaptationFlag.INTENSITY_ADJUSTED)
        elif isinstance(mod, ScheduleChange):
            flags.append(AdaptationFlag.SCHEDULE_MODIFIED)
        elif isinstance(mod, WorkoutTypeChange):
            workout_type = mod.workout_type
            flags.append(AdaptationFlag.SCHEDULE_MODIFIED)
        else:
            raise AdaptationFailed(f"Unhandled adaptation modification: {mod!r}")
        if isinstance(rule.trigger, InjuryRiskTrigger):
            flags.append(AdaptationFlag.INJURY_CONSIDERATION)

    return params, workout_type, dedupe_flags(flags)


def apply_adaptation_rules(
    workout: PlannedWorkout,
    rules: list[AdaptationRule],
    weeks_since_start: int,
    obs: Optional[RuleObservations] = None,
) -> PlannedWorkout:
    """Return a copy of an already planned workout with active adaptation rules applied.

    Structure, estimated duration and difficulty are re-derived from the
    adapted parameters.
    """
    params, workout_type, flags = adapt_parameters(workout.parameters, workout.workout_type, rules, weeks_since_start, obs)
    if not flags:
        return workout
    structure = synthesize(workout_type, params)
    return workout.model_copy(
        update={
            "parameters": params,
            "workout_type": workout_type,
            "structure": structure,
            "estimated_duration_seconds": structure.total_estimated_seconds,
            "difficulty": estimate_difficulty(params, workout_type),
            "adaptation_flags": dedupe_flags([*workout.adaptation_flags, *flags]),
        }
    )


def dedupe_flags(flags: list[AdaptationFlag]) -> list[AdaptationFlag]:
    seen: set[AdaptationFlag] = set()
    ordered: list[AdaptationFlag] = []
    for flag in flags:
        if flag in seen:
            continue
        seen.add(flag)
        ordered.append(flag)
    return ordered
