"""Savannah's own continuous affect.

`mood_value` lives in [-1, 1]; the label is always derived from it, never
stored. Every mutator clamps, so bad input degrades into a saturated value
rather than an exception.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Literal, Optional

MoodLabel = Literal["hurt", "annoyed", "neutral", "content", "happy", "excited", "playful"]

# ascending scan, first upper bound that holds wins
MOOD_BANDS = [
    (-0.7, "hurt"),
    (-0.3, "annoyed"),
    (0.2, "neutral"),
    (0.5, "content"),
    (0.7, "happy"),
    (0.85, "excited"),
]

# representative values used when a session primes the mood to a label
MOOD_ANCHORS: Dict[str, float] = {
    "hurt": -0.8,
    "annoyed": -0.5,
    "neutral": 0.0,
    "content": 0.3,
    "happy": 0.6,
    "excited": 0.8,
    "playful": 0.9,
}

STABILITY_FLOOR = 0.3
STABILITY_CEILING = 0.7
STABILITY_RECOVERY = 0.02
ATTENTION_FLOOR = 0.3


def clamp(x, a, b): return max(a, min(b, x))


def _finite(x) -> float:
    try:
        x = float(x)
    except (TypeError, ValueError):
        return 0.0
    return x if math.isfinite(x) else 0.0


def mood_label(value: float) -> MoodLabel:
    for upper, label in MOOD_BANDS:
        if value <= upper:
            return label
    return "playful"


def _now():
    return datetime.now(timezone.utc)


@dataclass
class MoodState:
    mood_value: float = 0.0
    energy: float = 0.7
    attention: float = 0.8
    stress: float = 0.2
    satisfaction: float = 0.7
    loneliness: float = 0.3
    momentum: float = 0.0
    stability: float = 0.7
    last_change: datetime = field(default_factory=_now)
    idle_seconds: float = 0.0

    @property
    def label(self) -> MoodLabel:
        return mood_label(self.mood_value)

    def current_label(self) -> MoodLabel:
        return self.label

    def apply_delta(
        self,
        mood_delta: float,
        energy_delta: float = 0.0,
        stress_delta: float = 0.0,
        now: Optional[datetime] = None,
    ) -> float:
        """Apply one interaction's worth of change; returns the momentum-scaled mood delta."""
        mood_delta, energy_delta, stress_delta = _finite(mood_delta), _finite(energy_delta), _finite(stress_delta)
        scaled = mood_delta * (1 + 0.5 * self.momentum)

        self.energy = clamp(self.energy + energy_delta * (1 - self.stability), 0.0, 1.0)
        self.stress = clamp(self.stress + stress_delta, 0.0, 1.0)
        self.mood_value = clamp(self.mood_value + scaled, -1.0, 1.0)
        self.momentum = clamp(self.momentum + 0.3 * scaled, -1.0, 1.0)

        self.last_change = now or _now()
        self.idle_seconds = 0.0
        return scaled

    def shift_mood(self, delta: float) -> None:
        # raw shift, no momentum: session priming, tips, neglect
        self.mood_value = clamp(self.mood_value + delta, -1.0, 1.0)

    def set_mood(self, label: MoodLabel) -> None:
        self.mood_value = MOOD_ANCHORS[label]

    def adjust(self, key: str, delta: float, floor: float = 0.0, ceiling: float = 1.0) -> None:
        setattr(self, key, clamp(getattr(self, key) + delta, floor, ceiling))

    def erode_stability(self, amount: float = 0.1) -> None:
        self.stability = clamp(self.stability - amount, STABILITY_FLOOR, 1.0)

    def natural_decay_tick(
        self,
        elapsed_seconds: float,
        neglect_seconds: float = 300.0,
        step: float = 0.02,
        stress_floor: float = 0.1,
        stress_step: float = 0.01,
    ) -> None:
        """One scheduler tick. `elapsed_seconds` is the time since the previous tick."""
        self.idle_seconds += max(0.0, _finite(elapsed_seconds))

        # drift toward neutral without overshooting
        if self.mood_value > 0:
            self.mood_value = max(0.0, self.mood_value - step)
        elif self.mood_value < 0:
            self.mood_value = min(0.0, self.mood_value + step)

        if self.stress > stress_floor:
            self.stress = max(stress_floor, self.stress - stress_step)

        if self.stability < STABILITY_CEILING:
            self.stability = min(STABILITY_CEILING, self.stability + STABILITY_RECOVERY)

        if self.idle_seconds >= neglect_seconds:
            self.loneliness = clamp(self.loneliness + 0.1, 0.0, 1.0)

    def snapshot(self) -> Dict[str, float]:
        return {
            "mood": self.label,
            "mood_value": round(self.mood_value, 3),
            "energy": round(self.energy, 3),
            "attention": round(self.attention, 3),
            "stress": round(self.stress, 3),
            "satisfaction": round(self.satisfaction, 3),
            "loneliness": round(self.loneliness, 3),
            "momentum": round(self.momentum, 3),
            "stability": round(self.stability, 3),
        }
