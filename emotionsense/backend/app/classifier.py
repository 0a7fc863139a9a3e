from __future__ import annotations

import random
from dataclasses import dataclass
from typing import List, Optional

from .risk_engine import EMOTIONS


@dataclass
class ClassificationResult:
    label: str
    confidence: float
    probabilities: List[dict]


def normalize(values: List[float]) -> List[float]:
    total = sum(values)
    if total <= 0:
        return [1.0 / len(values)] * len(values)
    return [value / total for value in values]


def to_probabilities(normalized: List[float]) -> List[dict]:
    return [
        {"emotion": emotion, "probability": round(normalized[index] * 100, 2)}
        for index, emotion in enumerate(EMOTIONS)
    ]


def simulate_classification(text: str, rng: Optional[random.Random] = None) -> ClassificationResult:
    """Mock classifier: the text length picks the favoured emotion, the rest is noise."""
    rng = rng or random.Random()
    favoured = len(text) % len(EMOTIONS)
    raw = [
        0.5 + rng.random() * 0.3 if index == favoured else rng.random() * 0.15
        for index in range(len(EMOTIONS))
    ]
    normalized = normalize(raw)
    best = max(range(len(EMOTIONS)), key=lambda index: normalized[index])
    return ClassificationResult(
        label=EMOTIONS[best],
        confidence=normalized[best] * 100,
        probabilities=to_probabilities(normalized),
    )


def build_demo_probabilities(emotion: str, rng: Optional[random.Random] = None) -> ClassificationResult:
    if emotion not in EMOTIONS:
        raise ValueError(f"Unknown emotion: {emotion}")
    rng = rng or random.Random()
    raw = [
        45 + rng.random() * 30 if name == emotion else 2 + rng.random() * 10
        for name in EMOTIONS
    ]
    probabilities = to_probabilities(normalize(raw))
    confidence = next(item["probability"] for item in probabilities if item["emotion"] == emotion)
    return ClassificationResult(label=emotion, confidence=confidence, probabilities=probabilities)
