import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol

TAGS = ["appreciation", "rudeness", "interest", "flirtation", "dismissiveness", "compliments"]
POSITIVE_TAGS = ["appreciation", "interest", "flirtation", "compliments"]
NEGATIVE_TAGS = ["rudeness", "dismissiveness"]


def _tofloat(x) -> float:
    try:
        v = float(x)
    except (TypeError, ValueError):
        return 0.0
    return v if math.isfinite(v) else 0.0


def _clampf(x) -> float:
    # magnitudes are non-negative; anything unparsable counts as "not detected"
    return max(0.0, _tofloat(x))


@dataclass
class DetectedPattern:
    category: str
    matches: List[str] = field(default_factory=list)
    impact: float = 0.0


@dataclass
class UtteranceFeatures:
    question_count: int = 0
    exclamation_count: int = 0
    length: int = 0


@dataclass
class BehaviorVector:
    """Per-utterance behavior tags produced by an external classifier."""

    appreciation: float = 0.0
    rudeness: float = 0.0
    interest: float = 0.0
    flirtation: float = 0.0
    dismissiveness: float = 0.0
    compliments: float = 0.0
    detected_patterns: List[DetectedPattern] = field(default_factory=list)
    features: Optional[UtteranceFeatures] = None

    def __post_init__(self):
        for k in TAGS:
            setattr(self, k, _clampf(getattr(self, k)))

    @property
    def emotional_impact(self) -> float:
        pos = sum(getattr(self, k) for k in POSITIVE_TAGS)
        neg = sum(getattr(self, k) for k in NEGATIVE_TAGS)
        return pos - neg

    @property
    def tags(self) -> List[str]:
        return [k for k in TAGS if getattr(self, k) > 0]

    def is_empty(self) -> bool:
        return not self.tags


class BehaviorClassifier(Protocol):
    """Maps a raw utterance plus metadata to a BehaviorVector (or a plain dict of tags)."""

    async def classify(self, text: str, metadata: Mapping[str, Any]) -> "BehaviorVector | Dict[str, Any]":
        ...


def coerce_vector(data: "BehaviorVector | Mapping[str, Any] | None") -> BehaviorVector:
    """Accept whatever the classifier returned and normalise it."""
    if isinstance(data, BehaviorVector):
        return data
    if not data:
        return BehaviorVector()

    patterns = []
    for p in data.get("detected_patterns") or data.get("detectedPatterns") or []:
        if isinstance(p, DetectedPattern):
            patterns.append(p)
        elif isinstance(p, Mapping):
            patterns.append(DetectedPattern(
                category=str(p.get("category", "unknown")),
                matches=[str(m) for m in (p.get("matches") or [])],
                impact=_tofloat(p.get("impact")),
            ))

    feats = data.get("features")
    if isinstance(feats, Mapping):
        feats = UtteranceFeatures(
            question_count=int(feats.get("question_count", 0) or 0),
            exclamation_count=int(feats.get("exclamation_count", 0) or 0),
            length=int(feats.get("length", 0) or 0),
        )
    elif not isinstance(feats, UtteranceFeatures):
        feats = None

    return BehaviorVector(
        **{k: data.get(k, 0.0) for k in TAGS},
        detected_patterns=patterns,
        features=feats,
    )
