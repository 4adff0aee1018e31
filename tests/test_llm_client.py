import asyncio
from collections import deque

import httpx
import pytest
from langchain_core.messages import HumanMessage, SystemMessage

from aladdin.core.exceptions import LLMUnavailableError, MalformedResponseError, ProviderRequestError
from aladdin.services.llm import (
    JSON_INSTRUCTION,
    CallPhase,
    RetryPolicy,
    is_transient_error,
    strip_code_fences,
)
from tests.helpers.stubs import StatusError, make_client


@pytest.fixture
def noop_sleep(monkeypatch):
    calls = deque()

    async def _sleep(duration: float):
        calls.append(duration)

    monkeypatch.setattr(asyncio, "sleep", _sleep)
    return calls


def test_retry_schedule_with_backup():
    steps = RetryPolicy(max_attempts=3, retry_delay_seconds=1.0).schedule(has_backup=True)
    assert [step.phase for step in steps] == [
        CallPhase.ATTEMPT,
        CallPhase.RETRY,
        CallPhase.RETRY,
        CallPhase.FALLBACK,
        CallPhase.FAIL,
    ]
    assert [step.delay_seconds for step in steps[:3]] == [0.0, 1.0, 2.0]
    assert steps[3].model_role == "backup"
    assert steps[3].delay_seconds == 0.0


def test_retry_schedule_without_backup_fails_after_last_retry():
    steps = RetryPolicy(max_attempts=2, retry_delay_seconds=0.5).schedule(has_backup=False)
    assert [step.phase for step in steps] == [CallPhase.ATTEMPT, CallPhase.RETRY, CallPhase.FAIL]


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (StatusError(500), True),
        (StatusError(503), True),
        (StatusError(429), True),
        (StatusError(409), True),
        (StatusError(400), False),
        (StatusError(404), False),
        (TimeoutError(), True),
        (httpx.ConnectError("refused"), True),
        (ValueError("bad"), False),
    ],
)
def test_transient_error_classification(error, expected):
    assert is_transient_error(error) is expected


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('```\n[1, 2]\n```') == "[1, 2]"
    assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


@pytest.mark.asyncio
async def test_transient_errors_retry_with_linear_backoff(noop_sleep):
    client, primary, _ = make_client([StatusError(503), StatusError(429), "recovered"])

    result = await client.complete("hello")

    assert result == "recovered"
    assert len(primary.calls) == 3
    assert list(noop_sleep) == [1.0, 2.0]


@pytest.mark.asyncio
async def test_falls_back_to_backup_model_after_retries(noop_sleep):
    client, primary, backup = make_client(
        [StatusError(500), StatusError(502), TimeoutError()],
        backup_responses=["from backup"],
    )

    completion = await client.chat_complete([HumanMessage(content="hi")])

    assert completion.content == "from backup"
    assert completion.model == "backup-model"
    assert len(primary.calls) == 3
    assert backup is not None and len(backup.calls) == 1


@pytest.mark.asyncio
async def test_exhausted_retries_raise_unavailable(noop_sleep):
    client, primary, _ = make_client([StatusError(503)] * 3)

    with pytest.raises(LLMUnavailableError):
        await client.complete("hello")
    assert len(primary.calls) == 3


@pytest.mark.asyncio
async def test_non_transient_error_is_not_retried(noop_sleep):
    client, primary, _ = make_client([StatusError(400, "bad request"), "never used"])

    with pytest.raises(ProviderRequestError):
        await client.complete("hello")
    assert len(primary.calls) == 1
    assert not noop_sleep


@pytest.mark.asyncio
async def test_complete_json_strips_fences_and_appends_instruction():
    client, primary, _ = make_client(['```json\n{"score": 91}\n```'])

    payload = await client.complete_json("grade this", system_prompt="You grade things.")

    assert payload == {"score": 91}
    messages = primary.calls[0]["messages"]
    assert isinstance(messages[0], SystemMessage)
    assert messages[-1].content.endswith(JSON_INSTRUCTION)
    assert primary.calls[0]["options"]["temperature"] == 0.2


@pytest.mark.asyncio
async def test_complete_json_raises_on_malformed_output():
    client, primary, _ = make_client(["definitely not json"])

    with pytest.raises(MalformedResponseError):
        await client.complete_json("grade this")
    assert len(primary.calls) == 1


@pytest.mark.asyncio
async def test_token_usage_is_accumulated():
    client, _, _ = make_client(["one", "two"])

    await client.complete("a")
    await client.complete("b", max_tokens=50)

    assert client.total_tokens_used == 30
    client.reset_token_usage()
    assert client.total_tokens_used == 0


def test_client_without_backup_reports_primary_model():
    client, _, _ = make_client(["x"])
    assert not client.has_backup
    assert client.model == "primary-model"
