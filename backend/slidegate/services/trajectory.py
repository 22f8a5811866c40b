"""Human-likeness scoring for slider drag trajectories.

The scorer starts from a perfect score and subtracts a penalty for every
heuristic the trajectory violates. It is a pure function: no I/O, no
randomness, identical input always yields an identical result.
"""

import math
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

MIN_TRAIL_POINTS = 5
MIN_DURATION_MS = 100
MAX_DURATION_MS = 15000
MIN_SLIDER_OFFSET = 10
DISPLACEMENT_TOLERANCE = 10
REPORTED_X_TOLERANCE = 10
MAX_BACKTRACK_RATIO = 0.35
MAX_STEP_DISTANCE = 80
PASS_SCORE = 0.5
MAX_REASONS = 3
# Longer trails are rejected as invalid input, never truncated.
MAX_TRAIL_POINTS = 5000

TRAIL_TOO_SHORT = "trail_too_short"
DURATION_OUT_OF_RANGE = "duration_out_of_range"
SLIDER_OFFSET_TOO_SMALL = "slider_offset_too_small"
DISPLACEMENT_MISMATCH = "displacement_mismatch"
REPORTED_X_MISMATCH = "reported_x_mismatch"
TOO_MANY_BACKTRACKS = "too_many_backtracks"
TELEPORT_JUMP_DETECTED = "teleport_jump_detected"

Point = Tuple[float, float]


@dataclass(frozen=True)
class Trajectory:
    final_x: float
    slider_offset_x: float
    duration_ms: float
    samples: Sequence[Point]
    final_y: Optional[float] = None


@dataclass(frozen=True)
class VerificationResult:
    ok: bool
    score: float
    reasons: List[str] = field(default_factory=list)


def coerce_trail(trail: Any) -> List[Point]:
    """Normalise a client-supplied trail into finite ``(x, y)`` float pairs."""
    if not isinstance(trail, (list, tuple)):
        return []
    result: List[Point] = []
    for point in trail:
        if not isinstance(point, (list, tuple)) or len(point) < 2:
            continue
        try:
            x = float(point[0])
            y = float(point[1])
        except (TypeError, ValueError):
            continue
        if not (math.isfinite(x) and math.isfinite(y)):
            continue
        result.append((x, y))
    return result


def _is_finite(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value)


def score_trajectory(trajectory: Trajectory) -> VerificationResult:
    reasons: List[str] = []
    score = 1.0
    samples = list(trajectory.samples)
    offset = trajectory.slider_offset_x
    duration = trajectory.duration_ms

    if len(samples) < MIN_TRAIL_POINTS:
        reasons.append(TRAIL_TOO_SHORT)
        score -= 0.6

    if not _is_finite(duration) or not (MIN_DURATION_MS < duration <= MAX_DURATION_MS):
        reasons.append(DURATION_OUT_OF_RANGE)
        score -= 0.3

    if not _is_finite(offset) or abs(offset) < MIN_SLIDER_OFFSET:
        reasons.append(SLIDER_OFFSET_TOO_SMALL)
        score -= 0.2

    if len(samples) >= 2:
        total_dx = samples[-1][0] - samples[0][0]

        if _is_finite(offset):
            displacement_diff = abs(total_dx - offset)
            if displacement_diff > DISPLACEMENT_TOLERANCE:
                reasons.append(DISPLACEMENT_MISMATCH)
                score -= min(0.5, displacement_diff / 100)

        if _is_finite(trajectory.final_x):
            reported_diff = abs(trajectory.final_x - total_dx)
            if reported_diff > REPORTED_X_TOLERANCE:
                reasons.append(REPORTED_X_MISMATCH)
                score -= min(0.3, reported_diff / 150)

        backtracks = 0
        max_jump = 0.0
        for (prev_x, prev_y), (cur_x, cur_y) in zip(samples, samples[1:]):
            step_dx = cur_x - prev_x
            if step_dx < 0:
                backtracks += 1
            max_jump = max(max_jump, math.hypot(step_dx, cur_y - prev_y))

        if backtracks / (len(samples) - 1) > MAX_BACKTRACK_RATIO:
            reasons.append(TOO_MANY_BACKTRACKS)
            score -= 0.35

        if max_jump > MAX_STEP_DISTANCE:
            reasons.append(TELEPORT_JUMP_DETECTED)
            score -= 0.5

    score = max(0.0, min(1.0, score))
    ok = score >= PASS_SCORE and len(reasons) <= MAX_REASONS
    return VerificationResult(ok=ok, score=score, reasons=reasons)


__all__ = ["MAX_TRAIL_POINTS", "Trajectory", "VerificationResult", "coerce_trail", "score_trajectory"]
