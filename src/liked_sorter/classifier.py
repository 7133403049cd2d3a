from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from liked_sorter.models import AudioFeatures, Decision

UNSORTED_LABEL = "Unsorted / Review"

# Thresholds are part of the rule version. Tuning any of them means bumping
# the matching rule id so stored decisions stay attributable.
_PERREITO_MIN_ENERGY = 0.65
_PERREITO_MIN_DANCEABILITY = 0.65
_PERREITO_MIN_TEMPO = 90.0
_PERREITO_MIN_SPEECHINESS = 0.05

_GOLD_MIN_ENERGY = 0.45
_GOLD_MAX_ENERGY = 0.75
_GOLD_MIN_DANCEABILITY = 0.55
_GOLD_MAX_VALENCE = 0.65

_VALTH_MAX_ENERGY = 0.55
_VALTH_MIN_ACOUSTICNESS = 0.35
_VALTH_MAX_VALENCE = 0.55

NO_FEATURES_DECISION = Decision(label=UNSORTED_LABEL, confidence=10, rule="no_audio_features")
FALLBACK_DECISION = Decision(label=UNSORTED_LABEL, confidence=30, rule="fallback_unsorted")


@dataclass(slots=True, frozen=True)
class Rule:
    rule_id: str
    label: str
    confidence: int
    predicate: Callable[[AudioFeatures], bool]

    def decision(self) -> Decision:
        return Decision(label=self.label, confidence=self.confidence, rule=self.rule_id)


def _is_perreito(a: AudioFeatures) -> bool:
    return (
        a.energy >= _PERREITO_MIN_ENERGY
        and a.danceability >= _PERREITO_MIN_DANCEABILITY
        and a.tempo >= _PERREITO_MIN_TEMPO
        and a.speechiness >= _PERREITO_MIN_SPEECHINESS
    )


def _is_gold(a: AudioFeatures) -> bool:
    return (
        _GOLD_MIN_ENERGY <= a.energy <= _GOLD_MAX_ENERGY
        and a.danceability >= _GOLD_MIN_DANCEABILITY
        and a.valence <= _GOLD_MAX_VALENCE
    )


def _is_valth(a: AudioFeatures) -> bool:
    return a.energy <= _VALTH_MAX_ENERGY and (
        a.acousticness >= _VALTH_MIN_ACOUSTICNESS or a.valence <= _VALTH_MAX_VALENCE
    )


# Evaluated in order; the rules overlap, so the first match wins.
RULES: tuple[Rule, ...] = (
    Rule("perreito_v1", "Perreíto Pegaito", 85, _is_perreito),
    Rule("gold_v1", "G(old)", 70, _is_gold),
    Rule("valth_v1", "Valth", 70, _is_valth),
)


def classify(features: AudioFeatures | None) -> Decision:
    if features is None:
        return NO_FEATURES_DECISION

    for rule in RULES:
        if rule.predicate(features):
            return rule.decision()
    return FALLBACK_DECISION


def target_labels() -> list[str]:
    """Every playlist name a decision can point at, in rule order."""
    labels = [rule.label for rule in RULES]
    labels.append(UNSORTED_LABEL)
    return labels
