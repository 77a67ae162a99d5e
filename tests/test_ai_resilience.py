"""Tests for the AI resilience layer."""

from __future__ import annotations

import time
from unittest.mock import MagicMock, patch

import pytest

import ai_resilience
from ai_resilience import (
    CircuitBreaker,
    LLMSettings,
    TransientLLMError,
    _is_transient,
    get_circuit_breaker,
    resilient_llm_call,
)
from errors import UpstreamFailure


# ── CircuitBreaker Tests ────────────────────────────────────


class TestCircuitBreaker:
    def test_starts_closed(self):
        cb = CircuitBreaker()
        assert not cb.is_open("openai")
        assert cb.get_state("openai") == "closed"

    def test_opens_after_threshold_failures(self):
        cb = CircuitBreaker()
        for _ in range(cb.FAILURE_THRESHOLD):
            cb.record_failure("bad_provider")
        assert cb.is_open("bad_provider")

    def test_success_resets(self):
        cb = CircuitBreaker()
        cb.record_failure("p1")
        cb.record_failure("p1")
        cb.record_success("p1")
        assert cb.get_state("p1") == "closed"

    def test_recovery_timeout(self):
        cb = CircuitBreaker()
        cb.RECOVERY_TIMEOUT = 0.01
        for _ in range(cb.FAILURE_THRESHOLD):
            cb.record_failure("recover_provider")
        time.sleep(0.02)
        assert not cb.is_open("recover_provider")
        assert cb.get_state("recover_provider") == "half_open"


class TestTransientDetection:
    @pytest.mark.parametrize("exc", [
        ConnectionError("reset"), TimeoutError(), RuntimeError("HTTP 429 rate limit"),
        RuntimeError("upstream 503"),
    ])
    def test_transient(self, exc):
        assert _is_transient(exc)

    def test_not_transient(self):
        assert not _is_transient(ValueError("invalid api key"))


# ── resilient_llm_call Tests ────────────────────────────────


class TestResilientLLMCall:
    @patch("ai_resilience._do_call")
    def test_basic_call(self, mock_call):
        mock_call.return_value = "hello"
        settings = LLMSettings(model="Qwen/Qwen2.5-7B-Instruct")
        text, meta = resilient_llm_call(settings, "Hi", system="Be brief")
        assert text == "hello"
        assert meta["provider"] == "openai"
        assert meta["model"] == "Qwen/Qwen2.5-7B-Instruct"
        mock_call.assert_called_once_with(settings, "Hi", "Be brief", None)

    @patch("ai_resilience._do_call")
    def test_transient_errors_are_retried(self, mock_call):
        mock_call.side_effect = [ConnectionError("reset"), "second try"]
        text, _ = resilient_llm_call(LLMSettings(max_attempts=2), "Hi")
        assert text == "second try"
        assert mock_call.call_count == 2

    @patch("ai_resilience._do_call")
    def test_single_attempt_by_default(self, mock_call):
        mock_call.side_effect = ConnectionError("reset")
        with pytest.raises(TransientLLMError):
            resilient_llm_call(LLMSettings(), "Hi")
        assert mock_call.call_count == 1

    @patch("ai_resilience._do_call")
    def test_failure_records_to_circuit_breaker(self, mock_call):
        mock_call.side_effect = ValueError("bad request")
        with pytest.raises(ValueError):
            resilient_llm_call(LLMSettings(provider="flaky"), "Hi")
        assert get_circuit_breaker()._providers["flaky"].failures == 1

    def test_circuit_breaker_blocks_call(self):
        cb = get_circuit_breaker()
        for _ in range(cb.FAILURE_THRESHOLD):
            cb.record_failure("blocked_provider")
        with pytest.raises(RuntimeError, match="Circuit breaker open"):
            resilient_llm_call(LLMSettings(provider="blocked_provider"), "prompt")


class TestProviders:
    @patch("openai.OpenAI")
    def test_openai_compatible_endpoint(self, mock_openai):
        client = mock_openai.return_value
        client.chat.completions.create.return_value = MagicMock(
            choices=[MagicMock(message=MagicMock(content="pong"))],
        )
        settings = LLMSettings(api_key="k", base_url="https://api.siliconflow.cn/v1")
        assert ai_resilience._do_call(settings, "ping", "sys", None) == "pong"

        mock_openai.assert_called_once_with(api_key="k", base_url="https://api.siliconflow.cn/v1",
                                            timeout=settings.timeout)
        sent = client.chat.completions.create.call_args.kwargs["messages"]
        assert sent == [{"role": "system", "content": "sys"}, {"role": "user", "content": "ping"}]

    @patch("anthropic.Anthropic")
    def test_anthropic_moves_system_messages(self, mock_anthropic):
        client = mock_anthropic.return_value
        client.messages.create.return_value = MagicMock(content=[MagicMock(text="hi")])
        history = [{"role": "system", "content": "tutor"}, {"role": "user", "content": "hello"}]
        ai_resilience._do_call(LLMSettings(provider="anthropic"), "", "", history)

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"] == "tutor"
        assert kwargs["messages"] == [{"role": "user", "content": "hello"}]

    def test_claude_is_an_alias_for_anthropic(self):
        assert LLMSettings(provider="claude").provider == "anthropic"

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            ai_resilience._do_call(LLMSettings(provider="nope"), "x", "", None)


class TestComplete:
    def test_reads_app_config(self, app, fake_llm):
        app.config["LLM_MODEL"] = "custom-model"
        fake_llm.reply("ok")
        with app.app_context():
            assert ai_resilience.complete("hi") == "ok"
        settings = fake_llm.mock.call_args.args[0]
        assert settings.model == "custom-model"
        assert settings.base_url == "https://api.siliconflow.cn/v1"

    def test_failure_becomes_upstream(self, app, fake_llm):
        fake_llm.fail(RuntimeError("secret internal detail"))
        with app.app_context(), pytest.raises(UpstreamFailure) as exc_info:
            ai_resilience.complete("hi")
        assert "secret" not in exc_info.value.message
