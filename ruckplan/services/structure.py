"""Workout structure synthesis: expands a workout type plus parameters into
warmup, main segments and cooldown.

Main-set shape depends on the workout type:

- endurance / ruck / foundation: one steady distance block
- speed: buildup, then interval/rest repeats
- strength: weighted steady block with a tempo finish
- recovery: a single easy recovery block
- test: a single benchmark effort over the full distance
- rest: no main set
"""

from __future__ import annotations

from typing import Optional

from ruckplan.workflow_models import (
    DifficultyTier,
    DistanceDuration,
    Equipment,
    EquipmentPrerequisite,
    HealthCheckPrerequisite,
    HeartRateZone,
    MAX_INTENSITY,
    Prerequisite,
    RestDayPrerequisite,
    SegmentType,
    TargetMetrics,
    TimeDuration,
    WorkflowTemplate,
    WorkoutParameters,
    WorkoutSegment,
    WorkoutStructure,
    WorkoutType,
    duration_seconds,
)

INTERVAL_REPEAT_MILES = 0.25
SPEED_BUILDUP_SECONDS = 300
STRENGTH_TEMPO_SHARE = 0.25
WARMUP_INTENSITY = 0.4
COOLDOWN_INTENSITY = 0.3


def _target(parameters: WorkoutParameters, zone: Optional[HeartRateZone] = None, weight: Optional[float] = None) -> TargetMetrics:
    return TargetMetrics(
        pace=parameters.target_pace,
        heart_rate_zone=zone or parameters.heart_rate_zone,
        weight=parameters.target_weight if weight is None else weight,
    )


def _capped(value: float) -> float:
    return round(min(max(value, 0.0), MAX_INTENSITY), 4)


def _main_segments(workout_type: WorkoutType, parameters: WorkoutParameters, modifier: float) -> list[WorkoutSegment]:
    intensity = _capped(parameters.intensity * modifier)
    distance = parameters.target_distance

    if workout_type == WorkoutType.REST:
        return []

    if workout_type == WorkoutType.RECOVERY:
        return [
            WorkoutSegment(
                segment_type=SegmentType.RECOVERY,
                duration=DistanceDuration(miles=round(distance, 2)),
                intensity=_capped(intensity * 0.6),
                instructions="Easy recovery pace, conversational effort, light load",
                target=_target(parameters, HeartRateZone.RECOVERY, weight=round(parameters.target_weight * 0.5, 1)),
            )
        ]

    if workout_type == WorkoutType.TEST:
        return [
            WorkoutSegment(
                segment_type=SegmentType.TEST,
                duration=DistanceDuration(miles=round(distance, 2)),
                intensity=_capped(max(intensity, 0.9)),
                instructions=f"Benchmark effort: cover {distance:.1f} miles as fast as sustainable",
                target=_target(parameters, HeartRateZone.THRESHOLD),
            )
        ]

    if workout_type == WorkoutType.SPEED:
        repeats = max(1, int(distance / INTERVAL_REPEAT_MILES / 2))
        segments = [
            WorkoutSegment(
                segment_type=SegmentType.BUILDUP,
                duration=TimeDuration(seconds=SPEED_BUILDUP_SECONDS),
                intensity=_capped(intensity * 0.8),
                instructions="Gradually build to interval pace",
                target=_target(parameters),
            )
        ]
        for rep in range(1, repeats + 1):
            segments.append(
                WorkoutSegment(
                    segment_type=SegmentType.INTERVAL,
                    duration=DistanceDuration(miles=INTERVAL_REPEAT_MILES),
                    intensity=_capped(intensity * 1.15),
                    instructions=f"Interval {rep}/{repeats}: fast controlled effort",
                    target=_target(parameters, HeartRateZone.ANAEROBIC),
                )
            )
            segments.append(
                WorkoutSegment(
                    segment_type=SegmentType.REST,
                    duration=TimeDuration(seconds=parameters.rest_interval_seconds),
                    intensity=0.0,
                    instructions="Walk and recover",
                    target=_target(parameters, HeartRateZone.RECOVERY),
                )
            )
        return segments

    if workout_type == WorkoutType.STRENGTH:
        tempo_miles = round(distance * STRENGTH_TEMPO_SHARE, 2)
        steady_miles = round(distance - tempo_miles, 2)
        return [
            WorkoutSegment(
                segment_type=SegmentType.STEADY,
                duration=DistanceDuration(miles=steady_miles),
                intensity=intensity,
                instructions=f"Steady loaded march with {parameters.target_weight:.0f} lbs",
                target=_target(parameters),
            ),
            WorkoutSegment(
                segment_type=SegmentType.TEMPO,
                duration=DistanceDuration(miles=tempo_miles),
                intensity=_capped(intensity * 1.1),
                instructions="Tempo finish: push the pace while holding posture",
                target=_target(parameters, HeartRateZone.THRESHOLD),
            ),
        ]

    # endurance, ruck and foundation sessions share the steady shape
    return [
        WorkoutSegment(
            segment_type=SegmentType.STEADY,
            duration=DistanceDuration(miles=round(distance, 2)),
            intensity=intensity,
            instructions=f"Steady pace for {distance:.1f} miles at {parameters.target_pace:.1f} min/mile",
            target=_target(parameters),
        )
    ]


def synthesize(
    workout_type: WorkoutType,
    parameters: WorkoutParameters,
    template: Optional[WorkflowTemplate] = None,
    intensity_modifier: float = 1.0,
) -> WorkoutStructure:
    """Build the session structure; total time is the sum of all segment durations."""
    warmup = WorkoutSegment(
        segment_type=SegmentType.WARMUP,
        duration=parameters.warmup_duration,
        intensity=WARMUP_INTENSITY,
        instructions="Dynamic warmup and easy unloaded walking",
        target=_target(parameters, HeartRateZone.RECOVERY, weight=0.0),
    )
    cooldown = WorkoutSegment(
        segment_type=SegmentType.COOLDOWN,
        duration=parameters.cooldown_duration,
        intensity=COOLDOWN_INTENSITY,
        instructions="Easy walk and stretching",
        target=_target(parameters, HeartRateZone.RECOVERY, weight=0.0),
    )
    main = _main_segments(workout_type, parameters, intensity_modifier)
    total = sum(duration_seconds(s.duration) for s in [warmup, *main, cooldown])
    return WorkoutStructure(warmup=warmup, main_segments=tuple(main), cooldown=cooldown, total_estimated_seconds=round(total, 1))


def estimate_difficulty(parameters: WorkoutParameters, workout_type: Optional[WorkoutType] = None) -> DifficultyTier:
    """Mean of normalized weight, distance and intensity scores, bucketed into tiers."""
    weight_score = parameters.target_weight / 50.0
    distance_score = parameters.target_distance / 5.0
    combined = (weight_score + distance_score + parameters.intensity) / 3.0
    if combined < 0.4:
        return DifficultyTier.EASY
    if combined < 0.7:
        return DifficultyTier.MODERATE
    if combined < 0.9:
        return DifficultyTier.HARD
    return DifficultyTier.EXTREME


def determine_prerequisites(week: int, day_index: int) -> list[Prerequisite]:
    prerequisites: list[Prerequisite] = []
    if day_index > 0:
        prerequisites.append(RestDayPrerequisite(hours=24))
    prerequisites.append(EquipmentPrerequisite(items=(Equipment.RUCK,)))
    if week > 4:
        prerequisites.append(HealthCheckPrerequisite())
    return prerequisites
