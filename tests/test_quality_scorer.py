import asyncio
import json
from collections import deque

import pytest

from aladdin.core.config import QualitySettings
from aladdin.core.exceptions import ScoringFailedError
from aladdin.schemas.quality import AssessmentLevel, QualityDecision
from aladdin.services.cache import InMemoryCache
from aladdin.services.scoring import QualityScorer
from tests.helpers.stubs import StatusError, assessment_json, make_client


@pytest.fixture
def noop_sleep(monkeypatch):
    calls = deque()

    async def _sleep(duration: float):
        calls.append(duration)

    monkeypatch.setattr(asyncio, "sleep", _sleep)
    return calls


def _scorer(responses, *, cache=None, settings=None):
    client, primary, _ = make_client(responses)
    return QualityScorer(client, settings=settings, cache=cache), primary


@pytest.mark.asyncio
async def test_out_of_range_values_are_clamped():
    response = assessment_json(overall=150, score=130, consistency=-20, confidence=3.0)
    scorer, _ = _scorer([response])

    assessment = await scorer.assess("A brave knight.", "story")

    for value in assessment.dimensions.as_dict().values():
        assert 0.0 <= value <= 100.0
    assert assessment.dimensions.consistency == 0.0
    assert assessment.dimensions.technical == 0.0
    assert assessment.confidence == 1.0
    assert 0.0 <= assessment.overall_score <= 100.0
    assert assessment.overall_score == pytest.approx(72.22, abs=0.01)
    assert assessment.decision == QualityDecision.RETRY


@pytest.mark.asyncio
async def test_llm_overall_is_kept_when_close_to_weighted_score():
    scorer, _ = _scorer([assessment_json(overall=83, score=80)])

    assessment = await scorer.assess("content", "character")

    assert assessment.overall_score == 83.0


@pytest.mark.asyncio
async def test_weighted_score_replaces_divergent_llm_overall():
    scorer, _ = _scorer([assessment_json(overall=90, score=80)])

    assessment = await scorer.assess("content", "audio")

    assert assessment.overall_score == 80.0
    assert assessment.dimensions.creativity == 0.0
    assert assessment.dimensions.technical == 80.0


@pytest.mark.asyncio
async def test_proposed_decision_within_one_tier_is_kept():
    scorer, _ = _scorer([assessment_json(overall=80, decision="exemplary")])

    assessment = await scorer.assess("content", "story")

    assert assessment.decision == QualityDecision.EXEMPLARY
    assert assessment.proposed_decision == QualityDecision.EXEMPLARY


@pytest.mark.asyncio
async def test_proposed_decision_two_tiers_away_is_overridden():
    scorer, _ = _scorer([assessment_json(overall=80, decision="REJECT")])

    assessment = await scorer.assess("content", "story")

    assert assessment.decision == QualityDecision.ACCEPT
    assert assessment.proposed_decision == QualityDecision.REJECT


@pytest.mark.asyncio
async def test_policy_reject_cannot_be_softened_by_the_model():
    scorer, _ = _scorer([assessment_json(overall=40, decision="RETRY")])

    assessment = await scorer.assess("content", "story")

    assert assessment.decision == QualityDecision.REJECT


@pytest.mark.asyncio
async def test_invalid_decision_label_is_ignored():
    scorer, _ = _scorer([assessment_json(overall=80, decision="MAYBE")])

    assessment = await scorer.assess("content", "story")

    assert assessment.proposed_decision is None
    assert assessment.decision == QualityDecision.ACCEPT


@pytest.mark.asyncio
async def test_cached_assessment_is_identical_and_skips_upstream():
    scorer, primary = _scorer([assessment_json(overall=88, score=88)], cache=InMemoryCache())
    context = {"project": {"id": "p1", "name": "Aladdin"}}

    first = await scorer.assess("A lamp glows.", "story", project_context=context)
    second = await scorer.assess("A lamp glows.", "story", project_context=context)

    assert len(primary.calls) == 1
    assert first == second
    assert first.model_dump_json() == second.model_dump_json()


@pytest.mark.asyncio
async def test_different_context_misses_the_cache():
    scorer, primary = _scorer(
        [assessment_json(overall=88), assessment_json(overall=70)],
        cache=InMemoryCache(),
    )

    await scorer.assess("A lamp glows.", "story", project_context={"project": {"id": "p1"}})
    await scorer.assess("A lamp glows.", "story", project_context={"project": {"id": "p2"}})

    assert len(primary.calls) == 2


@pytest.mark.asyncio
async def test_disabled_caching_always_calls_upstream():
    scorer, primary = _scorer(
        [assessment_json(overall=88), assessment_json(overall=88)],
        cache=InMemoryCache(),
        settings=QualitySettings(cache_enabled=False),
    )

    await scorer.assess("same", "story")
    await scorer.assess("same", "story")

    assert len(primary.calls) == 2


def test_cache_key_format():
    key = QualityScorer.cache_key("content", "Story")
    parts = key.split(":")
    assert parts[0] == "quality" and parts[1] == "story"
    assert len(parts[2]) == 32
    assert parts[3] == "no-context"
    assert QualityScorer.cache_key("content", "story", level=AssessmentLevel.DEPARTMENT).endswith(":department")
    assert QualityScorer.cache_key("content", "story", {"a": 1}) == QualityScorer.cache_key(
        "content", "story", {"a": 1}
    )


@pytest.mark.asyncio
async def test_malformed_json_fails_without_retry():
    scorer, primary = _scorer(["this is not json", assessment_json(overall=80)])

    with pytest.raises(ScoringFailedError, match="Quality assessment failed"):
        await scorer.assess("content", "story")
    assert len(primary.calls) == 1


@pytest.mark.asyncio
async def test_missing_required_field_fails():
    scorer, _ = _scorer([json.dumps({"qualityScore": 80, "reasoning": None})])

    with pytest.raises(ScoringFailedError):
        await scorer.assess("content", "story")


@pytest.mark.asyncio
async def test_provider_outage_surfaces_as_scoring_failure(noop_sleep):
    scorer, primary = _scorer([StatusError(503)] * 3)

    with pytest.raises(ScoringFailedError):
        await scorer.assess("content", "story")
    assert len(primary.calls) == 3
    assert list(noop_sleep) == [1.0, 2.0]


@pytest.mark.asyncio
async def test_null_optional_fields_fall_back_to_defaults():
    response = json.dumps(
        {
            "overallScore": 77,
            "qualityScore": 77,
            "relevanceScore": 77,
            "consistencyScore": 77,
            "completenessScore": 77,
            "creativityScore": None,
            "confidence": None,
            "issues": "single issue",
            "reasoning": None,
        }
    )
    scorer, _ = _scorer([response])

    assessment = await scorer.assess("content", "story")

    assert assessment.confidence == 0.8
    assert assessment.reasoning == "No reasoning provided"
    assert assessment.issues == ("single issue",)
    assert assessment.dimensions.creativity == 0.0


@pytest.mark.asyncio
async def test_quick_check_returns_clamped_score():
    scorer, primary = _scorer(['{"overallScore": 130, "decision": "REJECT"}'])

    score = await scorer.quick_check("content", "visual")

    assert score == 100.0
    assert len(primary.calls) == 1


@pytest.mark.asyncio
async def test_quick_check_requires_a_score():
    scorer, _ = _scorer(['{"decision": "ACCEPT"}'])

    with pytest.raises(ScoringFailedError):
        await scorer.quick_check("content", "visual")


@pytest.mark.asyncio
async def test_check_consistency_returns_score_and_report():
    scorer, _ = _scorer(
        [
            '{"consistencyScore": 72, "inconsistencies": ["Eye colour changed from green to blue"]}',
            '{"consistencyScore": -4}',
        ]
    )
    facts = {"characters": [{"name": "Jasmine", "eyes": "green"}]}

    report = await scorer.consistency_report("Jasmine's blue eyes", facts, "character")
    score = await scorer.check_consistency("Jasmine's blue eyes", facts, "character")

    assert report.score == 72.0
    assert report.inconsistencies == ("Eye colour changed from green to blue",)
    assert score == 0.0


@pytest.mark.asyncio
async def test_cache_stats_and_clear_by_department():
    scorer, _ = _scorer(
        [assessment_json(overall=80), assessment_json(overall=80), assessment_json(overall=80)],
        cache=InMemoryCache(),
    )
    await scorer.assess("story one", "story")
    await scorer.assess("story two", "story")
    await scorer.assess("audio one", "audio")

    stats = await scorer.cache_stats()
    assert stats == {"total_keys": 3, "keys_by_department": {"story": 2, "audio": 1}}

    assert await scorer.clear_cache("story") == 2
    assert (await scorer.cache_stats())["total_keys"] == 1
    assert await scorer.clear_cache() == 1


@pytest.mark.asyncio
async def test_unknown_department_uses_base_dimensions():
    scorer, _ = _scorer([assessment_json(overall=80)])

    assessment = await scorer.assess("content", "marketing")

    assert assessment.dimensions.creativity == 0.0
    assert assessment.dimensions.technical == 0.0
    assert assessment.overall_score == 80.0
