"""
Heuristic scorers used by the transcript and the context curator.

The curator only depends on the TurnScorer protocol, so a model-based
scorer can replace KeywordScorer without touching the pipeline.
"""

from typing import List, Protocol

from nengine.models.narrative import Importance, Trajectory, TurnRecord


EMOTION_KEYWORDS = (
    ("angry", ("anger", "furious", "rage")),
    ("afraid", ("fear", "afraid", "terrified")),
    ("happy", ("joy", "happy", "delighted")),
    ("sad", ("sad", "sorrow", "melancholy")),
    ("surprised", ("surprised", "shocked", "amazed")),
    ("calm", ("calm", "peaceful", "serene")),
    ("excited", ("excited", "thrilled", "energetic")),
)

TENSE_MOODS = ("tense", "dramatic")

IMPORTANCE_THRESHOLDS = {
    Importance.HIGH: 0.7,
    Importance.MEDIUM: 0.4,
    Importance.LOW: 0.2,
}

CHAOTIC_VARIANCE = 0.3
TRAJECTORY_WINDOW = 5


class TurnScorer(Protocol):
    def relevance(self, query: str, text: str) -> float: ...

    def importance(self, turn: TurnRecord) -> float: ...

    def emotion(self, turn: TurnRecord) -> str: ...

    def intensity(self, turn: TurnRecord) -> float: ...


class KeywordScorer:
    """Keyword and signal counting. No model calls."""

    importance_base = 0.2
    intensity_base = 0.5

    def relevance(self, query: str, text: str) -> float:
        """Fraction of query words present in the text."""
        words = query.lower().split()
        if not words:
            return 0.0
        text = text.lower()
        return sum(1 for w in words if w in text) / len(words)

    def importance(self, turn: TurnRecord) -> float:
        score = self.importance_base
        if turn.has_combat:
            score += 0.3
        if turn.dialogue:
            score += 0.2
        if turn.mood in TENSE_MOODS:
            score += 0.2
        if turn.state_changes:
            score += 0.3
        return min(1.0, round(score, 4))

    def emotion(self, turn: TurnRecord) -> str:
        text = f"{turn.narrative} {turn.dialogue or ''}".lower()
        for emotion, keywords in EMOTION_KEYWORDS:
            if any(k in text for k in keywords):
                return emotion
        return turn.mood or "neutral"

    def intensity(self, turn: TurnRecord) -> float:
        score = self.intensity_base
        if turn.has_combat:
            score += 0.3
        if turn.dialogue:
            score += 0.2
        if turn.mood in TENSE_MOODS:
            score += 0.3
        if turn.state_changes:
            score += 0.2
        return min(1.0, round(score, 4))


def bucket_relevance(relevance: float) -> Importance:
    if relevance > IMPORTANCE_THRESHOLDS[Importance.HIGH]:
        return Importance.HIGH
    if relevance > IMPORTANCE_THRESHOLDS[Importance.MEDIUM]:
        return Importance.MEDIUM
    return Importance.LOW


def meets_importance(score: float, minimum: Importance) -> bool:
    return score > IMPORTANCE_THRESHOLDS[minimum]


def _variance(values: List[float]) -> float:
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


def classify_trajectory(intensities: List[float]) -> Trajectory:
    """
    Trend of the trailing intensity samples: run-count of ups minus downs,
    with high variance overriding as chaotic.
    """
    if len(intensities) < 3:
        return Trajectory.STABLE

    recent = intensities[-TRAJECTORY_WINDOW:]
    trend = 0
    for prev, cur in zip(recent, recent[1:]):
        if cur > prev:
            trend += 1
        elif cur < prev:
            trend -= 1

    if _variance(recent) > CHAOTIC_VARIANCE:
        return Trajectory.CHAOTIC
    if trend >= 2:
        return Trajectory.RISING
    if trend <= -2:
        return Trajectory.FALLING
    return Trajectory.STABLE
