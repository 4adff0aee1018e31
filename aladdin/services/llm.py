from __future__ import annotations

import asyncio
import json
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, Sequence

import httpx
import openai
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from ..core import metrics
from ..core.config import LLMSettings, Settings
from ..core.exceptions import (
    LLMUnavailableError,
    MalformedResponseError,
    ProviderRequestError,
    TransientProviderError,
)
from ..core.logging import get_logger

logger = get_logger(name=__name__)

JSON_INSTRUCTION = (
    "IMPORTANT: Return ONLY valid JSON, no markdown, no explanations, no code blocks. "
    "Just the raw JSON object."
)
JSON_TEMPERATURE = 0.2

RETRY_STATUS_CODES = {408, 409, 425, 429}

_FENCE_PATTERN = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)

ModelRole = Literal["primary", "backup"]


@dataclass(frozen=True, slots=True)
class ChatMessage:
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True, slots=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True, slots=True)
class ChatCompletion:
    content: str
    model: str
    usage: TokenUsage
    finish_reason: str


class CallPhase(str, Enum):
    ATTEMPT = "attempt"
    RETRY = "retry"
    FALLBACK = "fallback"
    FAIL = "fail"


@dataclass(frozen=True, slots=True)
class CallStep:
    phase: CallPhase
    model_role: ModelRole | None
    attempt: int
    delay_seconds: float = 0.0


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempt -> Retry(n) -> Fallback -> Fail, independent of any transport.

    ``max_attempts`` counts calls against the primary model. Retry ``n`` waits
    ``retry_delay_seconds * n`` first; the fallback step runs once against the
    backup model without waiting.
    """

    max_attempts: int = 3
    retry_delay_seconds: float = 1.0

    @classmethod
    def from_settings(cls, settings: LLMSettings) -> "RetryPolicy":
        return cls(max_attempts=settings.max_retries, retry_delay_seconds=settings.retry_delay_seconds)

    def first(self) -> CallStep:
        return CallStep(CallPhase.ATTEMPT, "primary", attempt=1)

    def transition(self, step: CallStep, *, has_backup: bool) -> CallStep:
        if step.phase in (CallPhase.ATTEMPT, CallPhase.RETRY) and step.attempt < self.max_attempts:
            retry_number = step.attempt
            return CallStep(
                CallPhase.RETRY,
                "primary",
                attempt=step.attempt + 1,
                delay_seconds=self.retry_delay_seconds * retry_number,
            )
        if step.phase in (CallPhase.ATTEMPT, CallPhase.RETRY) and has_backup:
            return CallStep(CallPhase.FALLBACK, "backup", attempt=step.attempt + 1)
        return CallStep(CallPhase.FAIL, None, attempt=step.attempt)

    def schedule(self, *, has_backup: bool) -> list[CallStep]:
        steps = [self.first()]
        while steps[-1].phase is not CallPhase.FAIL:
            steps.append(self.transition(steps[-1], has_backup=has_backup))
        return steps


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(
        exc,
        (
            asyncio.TimeoutError,
            TimeoutError,
            ConnectionError,
            httpx.TransportError,
            openai.APIConnectionError,
            openai.RateLimitError,
            openai.InternalServerError,
        ),
    ):
        return True
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status in RETRY_STATUS_CODES or 500 <= status < 600
    return False


def strip_code_fences(text: str) -> str:
    match = _FENCE_PATTERN.match(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def _to_langchain(messages: Sequence[ChatMessage | BaseMessage]) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    for message in messages:
        if isinstance(message, BaseMessage):
            converted.append(message)
        elif message.role == "system":
            converted.append(SystemMessage(content=message.content))
        elif message.role == "assistant":
            converted.append(AIMessage(content=message.content))
        else:
            converted.append(HumanMessage(content=message.content))
    return converted


def _messages_from_text(prompt: str, system_prompt: str | None = None) -> list[ChatMessage]:
    messages: list[ChatMessage] = []
    if system_prompt:
        messages.append(ChatMessage(role="system", content=system_prompt))
    messages.append(ChatMessage(role="user", content=prompt))
    return messages


def _extract_content(result: Any) -> str:
    content = getattr(result, "content", result)
    if isinstance(content, list):
        return "".join(
            item.get("text", "") if isinstance(item, dict) else str(item)
            for item in content
        )
    return str(content)


def _extract_usage(result: Any) -> TokenUsage:
    usage = getattr(result, "usage_metadata", None)
    if usage:
        prompt = int(usage.get("input_tokens", 0) or 0)
        completion = int(usage.get("output_tokens", 0) or 0)
        return TokenUsage(prompt, completion, int(usage.get("total_tokens", prompt + completion) or 0))
    metadata = getattr(result, "response_metadata", None) or {}
    token_usage = metadata.get("token_usage") or {}
    prompt = int(token_usage.get("prompt_tokens", 0) or 0)
    completion = int(token_usage.get("completion_tokens", 0) or 0)
    return TokenUsage(prompt, completion, int(token_usage.get("total_tokens", prompt + completion) or 0))


class ScoringClient:
    """Chat-completion adapter over an OpenAI-compatible endpoint with backup-model fallback."""

    def __init__(
        self,
        primary: Any,
        *,
        model: str,
        backup: Any | None = None,
        backup_model: str | None = None,
        policy: RetryPolicy | None = None,
        timeout_seconds: float = 60.0,
        default_temperature: float = 0.3,
        default_max_tokens: int = 2000,
    ) -> None:
        self._models: dict[ModelRole, tuple[str, Any]] = {"primary": (model, primary)}
        if backup is not None and backup_model and backup_model != model:
            self._models["backup"] = (backup_model, backup)
        self._policy = policy or RetryPolicy()
        self._timeout_seconds = timeout_seconds
        self._default_temperature = default_temperature
        self._default_max_tokens = default_max_tokens
        self._total_tokens = 0

    @classmethod
    def from_settings(cls, settings: Settings | LLMSettings) -> "ScoringClient":
        llm = settings.resolved_llm() if isinstance(settings, Settings) else settings

        def _build(model_name: str) -> Any:
            return ChatOpenAI(
                model=model_name,
                base_url=llm.base_url,
                api_key=llm.api_key,
                timeout=llm.timeout_seconds,
                max_retries=0,
                temperature=llm.temperature,
            )

        backup = _build(llm.backup_model) if llm.backup_model else None
        return cls(
            _build(llm.default_model),
            model=llm.default_model,
            backup=backup,
            backup_model=llm.backup_model,
            policy=RetryPolicy.from_settings(llm),
            timeout_seconds=llm.timeout_seconds,
            default_temperature=llm.temperature,
            default_max_tokens=llm.max_tokens,
        )

    @property
    def model(self) -> str:
        return self._models["primary"][0]

    @property
    def has_backup(self) -> bool:
        return "backup" in self._models

    @property
    def total_tokens_used(self) -> int:
        return self._total_tokens

    def reset_token_usage(self) -> None:
        self._total_tokens = 0

    async def chat_complete(
        self,
        messages: Sequence[ChatMessage | BaseMessage],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ChatCompletion:
        lc_messages = _to_langchain(messages)
        options = {
            "temperature": self._default_temperature if temperature is None else temperature,
            "max_tokens": self._default_max_tokens if max_tokens is None else max_tokens,
        }
        step = self._policy.first()
        last_error: Exception | None = None
        while step.phase is not CallPhase.FAIL:
            if step.delay_seconds > 0:
                await asyncio.sleep(step.delay_seconds)
            if step.phase is not CallPhase.ATTEMPT:
                metrics.increment_llm_retry(phase=step.phase.value)
            model_name, chat_model = self._models[step.model_role or "primary"]
            try:
                return await self._invoke(model_name, chat_model, lc_messages, options)
            except TransientProviderError as exc:
                last_error = exc
                logger.warning(
                    "llm_completion_retry",
                    phase=step.phase.value,
                    attempt=step.attempt,
                    model=model_name,
                    error=str(exc),
                )
            step = self._policy.transition(step, has_backup=self.has_backup)

        metrics.increment_llm_retry(phase=CallPhase.FAIL.value)
        logger.error(
            "llm_completion_failed",
            model=self.model,
            attempts=step.attempt,
            error=str(last_error) if last_error else "unknown",
        )
        raise LLMUnavailableError(
            f"LLM completion failed after {step.attempt} attempts: {last_error}"
        ) from last_error

    async def _invoke(
        self,
        model_name: str,
        chat_model: Any,
        messages: list[BaseMessage],
        options: dict[str, Any],
    ) -> ChatCompletion:
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(
                chat_model.bind(**options).ainvoke(messages),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            metrics.record_llm_request(model=model_name, outcome="timeout", latency=time.perf_counter() - start)
            raise TransientProviderError(
                f"{model_name} timed out after {self._timeout_seconds:g} seconds"
            ) from exc
        except Exception as exc:
            if is_transient_error(exc):
                metrics.record_llm_request(model=model_name, outcome="transient_error", latency=time.perf_counter() - start)
                raise TransientProviderError(f"{model_name}: {exc}") from exc
            metrics.record_llm_request(model=model_name, outcome="error", latency=time.perf_counter() - start)
            logger.error("llm_request_rejected", model=model_name, error=str(exc))
            raise ProviderRequestError(f"{model_name}: {exc}") from exc

        metrics.record_llm_request(model=model_name, outcome="success", latency=time.perf_counter() - start)
        usage = _extract_usage(result)
        self._total_tokens += usage.total_tokens
        metrics.record_token_usage(
            model=model_name,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
        )
        metadata = getattr(result, "response_metadata", None) or {}
        return ChatCompletion(
            content=_extract_content(result),
            model=str(metadata.get("model_name") or model_name),
            usage=usage,
            finish_reason=str(metadata.get("finish_reason") or "stop"),
        )

    async def complete(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        completion = await self.chat_complete(
            _messages_from_text(prompt, system_prompt),
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return completion.content

    async def complete_json(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        temperature: float = JSON_TEMPERATURE,
        max_tokens: int | None = None,
    ) -> Any:
        """Request a raw JSON answer and parse it; malformed output is never retried."""
        content = await self.complete(
            f"{prompt}\n\n{JSON_INSTRUCTION}",
            system_prompt=system_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        cleaned = strip_code_fences(content)
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError as exc:
            logger.error("llm_json_parse_failed", model=self.model, preview=cleaned[:200])
            raise MalformedResponseError(f"Failed to parse JSON response: {exc.msg}") from exc

    async def aclose(self) -> None:
        for _, chat_model in self._models.values():
            async_client = getattr(chat_model, "root_async_client", None)
            if async_client is not None:
                await async_client.close()
