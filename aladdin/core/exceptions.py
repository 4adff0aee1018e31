from __future__ import annotations

from typing import Sequence


class AladdinError(RuntimeError):
    """Base class for orchestration and quality-gating failures."""


class ScoringClientError(AladdinError):
    """Raised when the chat-completion provider cannot serve a request."""


class TransientProviderError(ScoringClientError):
    """Raised for timeouts, rate limits and 5xx responses that may succeed on retry."""


class ProviderRequestError(ScoringClientError):
    """Raised when the provider rejects a request outright; never retried."""


class LLMUnavailableError(ScoringClientError):
    """Raised once retries and the backup model are exhausted."""


class MalformedResponseError(ScoringClientError):
    """Raised when a structured response is not valid JSON or misses required fields."""


class ScoringFailedError(AladdinError):
    """Raised when a quality assessment cannot be produced."""


class PlanningError(AladdinError):
    """Base class for structural failures detected while building an execution plan."""


class DependencyCycleError(PlanningError):
    """Raised when department dependencies contain a cycle."""

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = tuple(cycle)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.cycle)}")


class UnknownDepartmentError(PlanningError):
    """Raised when a dependency references a department nobody declared."""

    def __init__(self, department: str, referenced_by: str | None = None) -> None:
        self.department = department
        self.referenced_by = referenced_by
        if referenced_by is None:
            message = f"Unknown department '{department}'"
        else:
            message = f"Department '{referenced_by}' depends on unknown department '{department}'"
        super().__init__(message)


class DepartmentExecutionError(AladdinError):
    """Raised when a department cannot run at all."""


class BrainUnavailableError(AladdinError):
    """Raised when the Brain consistency service cannot be reached or answers with an error."""


class ContextStoreError(AladdinError):
    """Raised when the document store cannot serve a context query."""
