from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Mapping, Protocol, Sequence

from ..agents.contracts import DepartmentContract, list_contracts
from ..core.config import RoutingSettings
from ..core.logging import get_logger
from ..quality.thresholds import clamp_unit
from ..schemas.departments import DepartmentRole
from ..schemas.orchestrator import ProductionRequest, RoutedDepartment

logger = get_logger(name=__name__)


@dataclass(slots=True)
class RelevanceScore:
    value: float
    matched: tuple[str, ...] = ()


class RelevanceScorer(Protocol):
    """Deterministic, [0, 1]-valued and comparable across departments."""

    def score(self, request: ProductionRequest, contract: DepartmentContract) -> RelevanceScore:
        ...


@lru_cache(maxsize=512)
def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    return re.compile(rf"(?<![a-z0-9]){re.escape(keyword.lower())}(?:s|es)?(?![a-z0-9])")


def _flatten_text(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, Mapping):
        return [text for item in value.values() for text in _flatten_text(item)]
    if isinstance(value, (list, tuple, set)):
        return [text for item in value for text in _flatten_text(item)]
    return []


class KeywordRelevanceScorer:
    """Counts distinct department keywords in the request; ``saturation`` hits mean full relevance."""

    def __init__(self, *, saturation: int = 3, preferred_boost: float = 0.9) -> None:
        self._saturation = max(1, saturation)
        self._preferred_boost = preferred_boost

    def score(self, request: ProductionRequest, contract: DepartmentContract) -> RelevanceScore:
        blob = " ".join([request.prompt, *_flatten_text(request.metadata)]).lower()
        matched = tuple(keyword for keyword in contract.keywords if _keyword_pattern(keyword).search(blob))
        value = min(1.0, len(matched) / self._saturation)
        preferred = {name.strip().lower().replace("-", "_") for name in request.preferred_departments}
        if contract.department.value in preferred:
            value = max(value, self._preferred_boost)
        return RelevanceScore(value=round(value, 4), matched=matched)


class DepartmentRouter:
    """Scores every known department and classifies it as primary, supporting or not relevant."""

    def __init__(
        self,
        *,
        scorer: RelevanceScorer | None = None,
        contracts: Sequence[DepartmentContract] | None = None,
        relevance_floor: float = 0.3,
    ) -> None:
        self._scorer = scorer or KeywordRelevanceScorer()
        self._contracts = list(contracts) if contracts is not None else list_contracts()
        self._relevance_floor = relevance_floor

    @classmethod
    def from_settings(cls, settings: RoutingSettings) -> "DepartmentRouter":
        return cls(
            scorer=KeywordRelevanceScorer(
                saturation=settings.keyword_saturation,
                preferred_boost=settings.preferred_department_boost,
            ),
            relevance_floor=settings.relevance_floor,
        )

    @property
    def relevance_floor(self) -> float:
        return self._relevance_floor

    def route(self, request: ProductionRequest) -> list[RoutedDepartment]:
        scored = []
        for contract in self._contracts:
            result = self._scorer.score(request, contract)
            scored.append((contract, clamp_unit(result.value), result.matched))

        ranked = sorted(scored, key=lambda item: (-item[1], item[0].priority))
        primary = ranked[0][0].department if ranked and ranked[0][1] > 0 else None

        routed: list[RoutedDepartment] = []
        for contract, relevance, matched in ranked:
            if contract.department == primary:
                role = DepartmentRole.PRIMARY
            elif relevance > self._relevance_floor:
                role = DepartmentRole.SUPPORTING
            else:
                role = DepartmentRole.NOT_RELEVANT
            routed.append(
                RoutedDepartment(
                    department=contract.department.value,
                    relevance=relevance,
                    role=role,
                    matched_keywords=matched,
                )
            )

        logger.info(
            "departments_routed",
            request_id=request.request_id,
            primary=primary.value if primary is not None else None,
            scores={item.department: item.relevance for item in routed},
        )
        return routed
