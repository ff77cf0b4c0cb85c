"""Tests for ProviderFallbackExecutor — ordered fallback and attempt diagnostics."""

from __future__ import annotations

import pytest

from crmpilot.core.errors import AllProvidersFailedError, ConfigurationError
from crmpilot.core.identifiers import RunId
from crmpilot.lm.fallback import ProviderFallbackExecutor
from crmpilot.lm.provider import BaseLMProvider, LMResponse
from crmpilot.runtime.event_log import SeqCounter, SQLiteEventLog
from crmpilot.schemas.events import EventType
from tests.conftest import MockLMProvider, assert_event_sequence


async def _call(provider: BaseLMProvider) -> LMResponse:
    return await provider.invoke([], instructions="")


class TestProviderFallbackExecutor:
    async def test_first_provider_serves(self) -> None:
        primary = MockLMProvider(["primary"], name="primary")
        secondary = MockLMProvider(["secondary"], name="secondary")
        executor = ProviderFallbackExecutor()

        response = await executor.execute([primary, secondary], _call)

        assert response.text == "primary"
        assert secondary.call_count == 0
        assert [a.provider for a in executor.attempts] == ["primary"]
        assert executor.attempts[0].success is True

    async def test_falls_back_in_order(self) -> None:
        first = MockLMProvider([RuntimeError("rate limited")], name="first")
        second = MockLMProvider([ConnectionError("network")], name="second")
        third = MockLMProvider(["ok"], name="third")
        executor = ProviderFallbackExecutor()

        response = await executor.execute([first, second, third], _call)

        assert response.text == "ok"
        assert [p.call_count for p in (first, second, third)] == [1, 1, 1]
        assert [(a.provider, a.success) for a in executor.attempts] == [
            ("first", False),
            ("second", False),
            ("third", True),
        ]
        assert "rate limited" in executor.attempts[0].error

    async def test_all_fail_raises_with_last_error(self) -> None:
        first = MockLMProvider([RuntimeError("boom-1")], name="first")
        second = MockLMProvider([RuntimeError("boom-2")], name="second")
        executor = ProviderFallbackExecutor()

        with pytest.raises(AllProvidersFailedError) as exc_info:
            await executor.execute([first, second], _call)

        err = exc_info.value
        assert str(err.last_error) == "boom-2"
        assert [a.provider for a in err.attempts] == ["first", "second"]
        assert all(not a.success for a in err.attempts)

    async def test_empty_provider_list(self) -> None:
        with pytest.raises(ConfigurationError):
            await ProviderFallbackExecutor().execute([], _call)

    async def test_logs_fallback(self, caplog: pytest.LogCaptureFixture) -> None:
        first = MockLMProvider([RuntimeError("quota")], name="first")
        second = MockLMProvider(["ok"], name="second")
        with caplog.at_level("WARNING", logger="crmpilot.lm.fallback"):
            await ProviderFallbackExecutor().execute([first, second], _call)
        assert "Falling back to 'second'" in caplog.text

    async def test_emits_attempt_events(self, event_log: SQLiteEventLog, run_id: RunId) -> None:
        first = MockLMProvider([RuntimeError("down")], name="first")
        second = MockLMProvider(["ok"], name="second")
        executor = ProviderFallbackExecutor(event_log, run_id, SeqCounter(0))

        await executor.execute([first, second], _call)

        events = event_log.query_by_run(run_id)
        assert_event_sequence(
            events, [EventType.PROVIDER_CALL_FAILED, EventType.PROVIDER_CALL_SUCCEEDED]
        )
        assert events[0].payload["provider"] == "first"
        assert events[1].payload["provider"] == "second"
