import math

import pytest

from aladdin.quality.thresholds import (
    RECOMMENDED_ACTIONS,
    QualityThresholds,
    ThresholdPolicy,
    clamp_score,
    clamp_unit,
    decide,
    recommended_action,
    requires_attention,
    score_label,
    validate_score,
)
from aladdin.schemas.quality import AssessmentLevel, QualityDecision


@pytest.mark.parametrize(
    ("score", "consistency", "expected"),
    [
        (50, 80, QualityDecision.REJECT),
        (65, 80, QualityDecision.RETRY),
        (80, 80, QualityDecision.ACCEPT),
        (92, 90, QualityDecision.EXEMPLARY),
    ],
)
def test_specialist_boundary_scenarios(score, consistency, expected):
    assert decide(score, consistency, AssessmentLevel.SPECIALIST) == expected


def test_low_consistency_blocks_exemplary():
    assert decide(95, 70) != QualityDecision.EXEMPLARY
    assert decide(95, 70) == QualityDecision.ACCEPT


def test_consistency_below_minimum_forces_retry():
    assert decide(88, 55) == QualityDecision.RETRY


def test_reject_wins_over_perfect_consistency():
    assert decide(10, 100) == QualityDecision.REJECT


@pytest.mark.parametrize("level", list(AssessmentLevel))
@pytest.mark.parametrize("consistency", [0, 59, 60, 75, 85, 100])
def test_decision_never_regresses_as_score_increases(level, consistency):
    previous = QualityDecision.REJECT
    for score in range(0, 101):
        current = decide(score, consistency, level)
        assert current >= previous
        previous = current


def test_decisions_are_totally_ordered():
    assert QualityDecision.REJECT < QualityDecision.RETRY < QualityDecision.ACCEPT < QualityDecision.EXEMPLARY
    assert QualityDecision.EXEMPLARY.tier_distance(QualityDecision.RETRY) == 2


def test_requires_attention_only_for_reject_and_retry():
    assert requires_attention(50, 90)
    assert requires_attention(70, 90)
    assert not requires_attention(80, 80)
    assert not requires_attention(96, 96)


@pytest.mark.parametrize(
    ("score", "label"),
    [(10, "Below Minimum"), (70, "Needs Improvement"), (80, "Acceptable"), (92, "Good"), (97, "Excellent")],
)
def test_score_labels(score, label):
    assert score_label(score) == label


def test_recommended_action_covers_every_decision():
    assert set(RECOMMENDED_ACTIONS) == set(QualityDecision)
    assert "Regenerate" in recommended_action(QualityDecision.REJECT)
    assert recommended_action("ACCEPT") == RECOMMENDED_ACTIONS[QualityDecision.ACCEPT]


@pytest.mark.parametrize("value", [-1e9, -5.0, 0.0, 42.5, 100.0, 150.0, 1e9, math.inf, -math.inf])
def test_clamp_score_stays_in_range(value):
    assert 0.0 <= clamp_score(value) <= 100.0


@pytest.mark.parametrize("value", [0.0, 0.1, 37.0, 99.99, 100.0])
def test_clamp_score_is_identity_inside_range(value):
    assert clamp_score(value) == value


def test_clamp_handles_nan():
    assert clamp_score(math.nan) == 0.0
    assert clamp_unit(math.nan) == 0.0
    assert clamp_unit(1.4) == 1.0


def test_validate_score():
    assert validate_score(0) and validate_score(100)
    assert not validate_score(100.5)
    assert not validate_score(math.nan)


def test_thresholds_must_be_strictly_ascending():
    with pytest.raises(ValueError):
        QualityThresholds(minimum=70, acceptable=70, good=90, excellent=95)


def test_custom_policy_levels():
    strict = QualityThresholds(minimum=70, acceptable=80, good=92, excellent=97)
    policy = ThresholdPolicy(levels={level: strict for level in AssessmentLevel})
    assert policy.decide(65, 90) == QualityDecision.REJECT
    assert decide(65, 90) == QualityDecision.RETRY
