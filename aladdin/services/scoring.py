from __future__ import annotations

import hashlib
import json
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from pydantic import ValidationError

from ..core import metrics
from ..core.config import QualitySettings
from ..core.exceptions import ScoringClientError, ScoringFailedError
from ..core.logging import get_logger
from ..quality.prompts import build_assessment_prompt, build_consistency_prompt, build_quick_assessment_prompt
from ..quality.thresholds import DEFAULT_POLICY, ThresholdPolicy, clamp_score, clamp_unit
from ..quality.weights import active_dimensions, weighted_score, weights_for
from ..schemas.quality import (
    AssessmentLevel,
    ConsistencyReport,
    LLMAssessmentPayload,
    LLMConsistencyPayload,
    LLMQuickCheckPayload,
    QualityAssessment,
    QualityDecision,
    QualityDimensions,
)
from .cache import CacheBackend
from .llm import ScoringClient

logger = get_logger(name=__name__)

CACHE_PREFIX = "quality:"


def _digest(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:32]


def _serialise_context(project_context: Mapping[str, Any] | None) -> str | None:
    if not project_context:
        return None
    return json.dumps(project_context, sort_keys=True, separators=(",", ":"), default=str)


class QualityScorer:
    """Grades department output with an LLM and gates it through the threshold policy."""

    def __init__(
        self,
        client: ScoringClient,
        *,
        settings: QualitySettings | None = None,
        cache: CacheBackend | None = None,
        policy: ThresholdPolicy = DEFAULT_POLICY,
    ) -> None:
        self._client = client
        self._settings = settings or QualitySettings()
        self._cache = cache if self._settings.cache_enabled else None
        self._policy = policy

    @property
    def policy(self) -> ThresholdPolicy:
        return self._policy

    @staticmethod
    def cache_key(
        content: str,
        department_id: str,
        project_context: Mapping[str, Any] | None = None,
        level: AssessmentLevel = AssessmentLevel.SPECIALIST,
    ) -> str:
        serialised = _serialise_context(project_context)
        context_part = _digest(serialised) if serialised is not None else "no-context"
        key = f"{CACHE_PREFIX}{department_id.lower()}:{_digest(content)}:{context_part}"
        if level != AssessmentLevel.SPECIALIST:
            key = f"{key}:{AssessmentLevel(level).value}"
        return key

    async def assess(
        self,
        content: str,
        department_id: str,
        *,
        task: str | None = None,
        expected_outcome: str | None = None,
        project_context: Mapping[str, Any] | None = None,
        level: AssessmentLevel = AssessmentLevel.SPECIALIST,
    ) -> QualityAssessment:
        department = department_id.lower()
        key = self.cache_key(content, department, project_context, level)

        cached = await self._read_cached(key)
        if cached is not None:
            logger.debug("quality_cache_hit", department=department, key=key)
            return cached

        prompt = build_assessment_prompt(
            content,
            department,
            task=task,
            expected_outcome=expected_outcome,
            project_context=project_context,
            level=level,
            policy=self._policy,
        )
        raw = await self._request(prompt, max_tokens=self._settings.max_tokens, department=department)
        try:
            payload = LLMAssessmentPayload.model_validate(raw)
        except ValidationError as exc:
            logger.error("quality_response_invalid", department=department, errors=exc.error_count())
            raise ScoringFailedError(
                f"Quality assessment failed: response is missing or mistyped required fields ({exc.error_count()} errors)"
            ) from exc

        assessment = self._build_assessment(payload, department, level)
        metrics.record_quality_assessment(department=department, decision=assessment.decision.value)
        logger.info(
            "quality_assessed",
            department=department,
            level=assessment.level.value,
            overall=assessment.overall_score,
            decision=assessment.decision.value,
        )
        await self._store(key, assessment)
        return assessment

    def _build_assessment(
        self,
        payload: LLMAssessmentPayload,
        department: str,
        level: AssessmentLevel,
    ) -> QualityAssessment:
        active = set(active_dimensions(department))
        reported = {
            "confidence": payload.quality_score,
            "completeness": payload.completeness_score,
            "relevance": payload.relevance_score,
            "consistency": payload.consistency_score,
            "creativity": payload.creativity_score,
            "technical": payload.technical_score,
        }
        dimensions = QualityDimensions(
            **{
                name: clamp_score(value) if name in active and value is not None else 0.0
                for name, value in reported.items()
            }
        )

        computed = weighted_score(dimensions, weights_for(department).restricted_to(active))
        reported_overall = clamp_score(payload.overall_score)
        if abs(reported_overall - computed) < self._settings.llm_agreement_tolerance:
            overall = reported_overall
        else:
            logger.info(
                "quality_overall_recomputed",
                department=department,
                reported=reported_overall,
                computed=round(computed, 2),
            )
            overall = computed
        overall = round(overall, 2)

        proposed = QualityDecision.parse(payload.decision)
        decision = self._reconcile_decision(
            self._policy.decide(overall, dimensions.consistency, level),
            proposed,
            tolerance=self._settings.decision_tier_tolerance,
            department=department,
        )
        return QualityAssessment(
            department=department,
            level=level,
            dimensions=dimensions,
            overall_score=overall,
            decision=decision,
            proposed_decision=proposed,
            confidence=clamp_unit(payload.confidence),
            issues=tuple(payload.issues),
            suggestions=tuple(payload.suggestions),
            reasoning=payload.reasoning,
        )

    @staticmethod
    def _reconcile_decision(
        policy_decision: QualityDecision,
        proposed: QualityDecision | None,
        *,
        tolerance: int,
        department: str,
    ) -> QualityDecision:
        if proposed is None or proposed == policy_decision:
            return policy_decision
        if policy_decision != QualityDecision.REJECT and proposed.tier_distance(policy_decision) <= tolerance:
            return proposed
        metrics.increment_decision_override(department=department)
        logger.warning(
            "quality_decision_overridden",
            department=department,
            proposed=proposed.value,
            decision=policy_decision.value,
        )
        return policy_decision

    async def quick_check(self, content: str, department_id: str) -> float:
        """Single-score pre-filter; the model's decision label is only compared, never applied."""
        department = department_id.lower()
        raw = await self._request(
            build_quick_assessment_prompt(content, department, policy=self._policy),
            max_tokens=self._settings.quick_check_max_tokens,
            department=department,
        )
        try:
            payload = LLMQuickCheckPayload.model_validate(raw)
        except ValidationError as exc:
            raise ScoringFailedError("Quality assessment failed: quick check response has no overallScore") from exc

        score = clamp_score(payload.overall_score)
        proposed = QualityDecision.parse(payload.decision)
        if proposed is not None:
            expected = self._policy.decide(score, self._policy.consistency.good)
            if proposed.tier_distance(expected) > self._settings.quick_check_tier_tolerance:
                logger.warning(
                    "quality_quick_check_drift",
                    department=department,
                    score=score,
                    proposed=proposed.value,
                    expected=expected.value,
                )
        return score

    async def consistency_report(
        self,
        content: str,
        existing_context: Mapping[str, Any],
        department_id: str,
    ) -> ConsistencyReport:
        department = department_id.lower()
        raw = await self._request(
            build_consistency_prompt(content, existing_context, department),
            max_tokens=self._settings.consistency_max_tokens,
            department=department,
        )
        try:
            payload = LLMConsistencyPayload.model_validate(raw)
        except ValidationError as exc:
            raise ScoringFailedError("Quality assessment failed: consistency response has no consistencyScore") from exc
        return ConsistencyReport(
            score=clamp_score(payload.consistency_score),
            inconsistencies=tuple(payload.inconsistencies),
        )

    async def check_consistency(
        self,
        content: str,
        existing_context: Mapping[str, Any],
        department_id: str,
    ) -> float:
        report = await self.consistency_report(content, existing_context, department_id)
        return report.score

    async def _request(self, prompt: str, *, max_tokens: int, department: str) -> Any:
        try:
            return await self._client.complete_json(
                prompt,
                temperature=self._settings.temperature,
                max_tokens=max_tokens,
            )
        except ScoringClientError as exc:
            logger.error("quality_scoring_failed", department=department, error=str(exc))
            raise ScoringFailedError(f"Quality assessment failed: {exc}") from exc

    async def _read_cached(self, key: str) -> QualityAssessment | None:
        if self._cache is None:
            return None
        try:
            entry = await self._cache.get(key)
        except Exception as exc:  # pragma: no cover - third-party backends
            metrics.increment_quality_cache(result="error")
            logger.warning("quality_cache_read_failed", key=key, error=str(exc))
            return None
        if not isinstance(entry, dict) or "assessment" not in entry:
            metrics.increment_quality_cache(result="miss")
            return None
        try:
            expires_at = datetime.fromisoformat(str(entry.get("expires_at")))
            assessment = QualityAssessment.model_validate(entry["assessment"])
        except (ValueError, ValidationError) as exc:
            metrics.increment_quality_cache(result="error")
            logger.warning("quality_cache_entry_invalid", key=key, error=str(exc))
            return None
        if expires_at <= datetime.now(timezone.utc):
            metrics.increment_quality_cache(result="expired")
            return None
        metrics.increment_quality_cache(result="hit")
        return assessment

    async def _store(self, key: str, assessment: QualityAssessment) -> None:
        if self._cache is None:
            return
        ttl = self._settings.cache_ttl_seconds
        entry = {
            "assessment": assessment.model_dump(mode="json"),
            "cache_key": key,
            "expires_at": (datetime.now(timezone.utc) + timedelta(seconds=ttl)).isoformat(),
        }
        try:
            await self._cache.set(key, entry, ttl)
        except Exception as exc:  # pragma: no cover - third-party backends
            logger.warning("quality_cache_write_failed", key=key, error=str(exc))

    async def clear_cache(self, department_id: str | None = None) -> int:
        if self._cache is None:
            return 0
        prefix = f"{CACHE_PREFIX}{department_id.lower()}:" if department_id else CACHE_PREFIX
        removed = await self._cache.clear_by_prefix(prefix)
        logger.info("quality_cache_cleared", prefix=prefix, removed=removed)
        return removed

    async def cache_stats(self) -> dict[str, Any]:
        if self._cache is None:
            return {"total_keys": 0, "keys_by_department": {}}
        keys = await self._cache.keys(CACHE_PREFIX)
        by_department = Counter(key[len(CACHE_PREFIX) :].split(":", 1)[0] for key in keys)
        return {"total_keys": len(keys), "keys_by_department": dict(by_department)}
