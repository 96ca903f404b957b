"""Provider exercise-type codes ↔ :class:`ExerciseKind`.

Codes are the Health Connect ``ExerciseSessionRecord.EXERCISE_TYPE_*``
integer constants, which the other providers' exports are normalized to.
Several provider codes collapse onto one kind; the outbound direction uses
one canonical code per kind. Unknown codes become ``OTHER``.
"""

from __future__ import annotations

from vitalsync.core.storage.models import ExerciseKind

EXERCISE_TYPE_OTHER_WORKOUT = 0
EXERCISE_TYPE_BASKETBALL = 5
EXERCISE_TYPE_BIKING = 8
EXERCISE_TYPE_BIKING_STATIONARY = 9
EXERCISE_TYPE_RUNNING = 56
EXERCISE_TYPE_RUNNING_TREADMILL = 57
EXERCISE_TYPE_SOCCER = 64
EXERCISE_TYPE_STRENGTH_TRAINING = 70
EXERCISE_TYPE_SWIMMING_OPEN_WATER = 73
EXERCISE_TYPE_SWIMMING_POOL = 74
EXERCISE_TYPE_WALKING = 79
EXERCISE_TYPE_WEIGHTLIFTING = 81
EXERCISE_TYPE_YOGA = 83

_INBOUND: dict[int, ExerciseKind] = {
    EXERCISE_TYPE_WALKING: ExerciseKind.WALKING,
    EXERCISE_TYPE_RUNNING: ExerciseKind.RUNNING,
    EXERCISE_TYPE_RUNNING_TREADMILL: ExerciseKind.RUNNING,
    EXERCISE_TYPE_BIKING: ExerciseKind.CYCLING,
    EXERCISE_TYPE_BIKING_STATIONARY: ExerciseKind.CYCLING,
    EXERCISE_TYPE_SWIMMING_POOL: ExerciseKind.SWIMMING,
    EXERCISE_TYPE_SWIMMING_OPEN_WATER: ExerciseKind.SWIMMING,
    EXERCISE_TYPE_STRENGTH_TRAINING: ExerciseKind.STRENGTH_TRAINING,
    EXERCISE_TYPE_WEIGHTLIFTING: ExerciseKind.STRENGTH_TRAINING,
    EXERCISE_TYPE_YOGA: ExerciseKind.YOGA,
    EXERCISE_TYPE_BASKETBALL: ExerciseKind.BASKETBALL,
    EXERCISE_TYPE_SOCCER: ExerciseKind.SOCCER,
    EXERCISE_TYPE_OTHER_WORKOUT: ExerciseKind.OTHER,
}

_OUTBOUND: dict[ExerciseKind, int] = {
    ExerciseKind.WALKING: EXERCISE_TYPE_WALKING,
    ExerciseKind.RUNNING: EXERCISE_TYPE_RUNNING,
    ExerciseKind.CYCLING: EXERCISE_TYPE_BIKING,
    ExerciseKind.SWIMMING: EXERCISE_TYPE_SWIMMING_POOL,
    ExerciseKind.STRENGTH_TRAINING: EXERCISE_TYPE_STRENGTH_TRAINING,
    ExerciseKind.YOGA: EXERCISE_TYPE_YOGA,
    ExerciseKind.BASKETBALL: EXERCISE_TYPE_BASKETBALL,
    ExerciseKind.SOCCER: EXERCISE_TYPE_SOCCER,
    ExerciseKind.OTHER: EXERCISE_TYPE_OTHER_WORKOUT,
}


def kind_from_provider_code(code: int) -> ExerciseKind:
    return _INBOUND.get(code, ExerciseKind.OTHER)


def provider_code_for_kind(kind: ExerciseKind) -> int:
    return _OUTBOUND[ExerciseKind(kind)]
