from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

from ..core.logging import get_logger
from ..quality.prompts import build_revision_prompt, build_specialist_prompt
from ..schemas.quality import QualityAssessment
from ..services.llm import ScoringClient
from .contracts import DepartmentContract

logger = get_logger(name=__name__)


@dataclass(slots=True)
class SpecialistTask:
    """Work item handed to a specialist; carries feedback when it is a revision."""

    department: str
    prompt: str
    request_id: str | None = None
    project_context: Mapping[str, Any] = field(default_factory=dict)
    upstream: Mapping[str, Mapping[str, str]] = field(default_factory=dict)
    attempt: int = 1
    previous_output: str | None = None
    feedback: QualityAssessment | None = None


class Specialist(Protocol):
    name: str
    relevance: float | None

    async def produce(self, task: SpecialistTask) -> str:
        ...


@dataclass
class LLMSpecialist:
    name: str
    instructions: str
    client: ScoringClient
    relevance: float | None = None
    temperature: float = 0.7
    max_tokens: int | None = None

    async def produce(self, task: SpecialistTask) -> str:
        if task.feedback is not None and task.previous_output is not None:
            prompt = build_revision_prompt(
                task.prompt,
                task.previous_output,
                task.feedback,
                attempt=task.attempt - 1,
            )
        else:
            prompt = build_specialist_prompt(
                task.prompt,
                department_id=task.department,
                specialist=self.name,
                upstream=task.upstream,
                project_context=task.project_context,
            )
        logger.debug("specialist_produce", specialist=self.name, department=task.department, attempt=task.attempt)
        return await self.client.complete(
            prompt,
            system_prompt=self.instructions,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )


def build_specialists(
    contract: DepartmentContract,
    client: ScoringClient,
    *,
    temperature: float = 0.7,
) -> list[LLMSpecialist]:
    return [
        LLMSpecialist(
            name=spec.name,
            instructions=spec.instructions,
            client=client,
            relevance=spec.relevance,
            temperature=temperature,
        )
        for spec in contract.specialists
    ]
