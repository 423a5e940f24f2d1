"""
Tests for logging, settings and the LLM provider layer.
"""

import json
import logging
import sys

import pytest

from fallacyscan.llm import LLMProvider, strip_fences


class EchoLLM(LLMProvider):
    """Returns whatever it was constructed with."""

    name = "echo"

    def __init__(self, text: str):
        self._text = text
        self.calls = 0

    async def generate(self, prompt, system_instruction=None, temperature=0.7, json_mode=False):
        self.calls += 1
        return self._text


class TestLogging:
    """Structured logging tests."""

    def test_json_formatter(self):
        from fallacyscan.logging import JSONFormatter

        formatter = JSONFormatter()
        record = logging.LogRecord(
            name="fallacyscan.test",
            level=logging.INFO,
            pathname="test.py",
            lineno=1,
            msg="Test message",
            args=(),
            exc_info=None,
        )
        parsed = json.loads(formatter.format(record))
        assert parsed["level"] == "INFO"
        assert parsed["message"] == "Test message"
        assert parsed["logger"] == "fallacyscan.test"
        assert "timestamp" in parsed

    def test_json_formatter_extra_fields(self):
        from fallacyscan.logging import JSONFormatter

        formatter = JSONFormatter()
        record = logging.LogRecord(
            name="fallacyscan.test",
            level=logging.INFO,
            pathname="test.py",
            lineno=1,
            msg="Analysis complete",
            args=(),
            exc_info=None,
        )
        record.fallacies_count = 3
        record.analysis_id = "abc123"
        record.unlisted = "ignored"
        parsed = json.loads(formatter.format(record))
        assert parsed["fallacies_count"] == 3
        assert parsed["analysis_id"] == "abc123"
        assert "unlisted" not in parsed

    def test_json_formatter_exception(self):
        from fallacyscan.logging import JSONFormatter

        try:
            raise ValueError("boom")
        except ValueError:
            exc_info = sys.exc_info()
        record = logging.LogRecord(
            name="fallacyscan.test", level=logging.ERROR, pathname="test.py",
            lineno=1, msg="Failed", args=(), exc_info=exc_info,
        )
        parsed = json.loads(JSONFormatter().format(record))
        assert "ValueError: boom" in parsed["exception"]

    def test_request_context_filter_stamps_bound_id(self):
        from fallacyscan.logging import RequestContextFilter, bind_request_id, clear_request_id

        record = logging.LogRecord(
            name="fallacyscan.test", level=logging.INFO, pathname="test.py",
            lineno=1, msg="Cache hit", args=(), exc_info=None,
        )
        token = bind_request_id("req-abc")
        try:
            RequestContextFilter().filter(record)
        finally:
            clear_request_id(token)
        assert record.request_id == "req-abc"

    def test_request_context_filter_keeps_explicit_id(self):
        from fallacyscan.logging import RequestContextFilter, bind_request_id, clear_request_id

        record = logging.LogRecord(
            name="fallacyscan.test", level=logging.INFO, pathname="test.py",
            lineno=1, msg="Cache hit", args=(), exc_info=None,
        )
        record.request_id = "explicit"
        token = bind_request_id("bound")
        try:
            RequestContextFilter().filter(record)
        finally:
            clear_request_id(token)
        assert record.request_id == "explicit"

    def test_unbound_request_id_is_none(self):
        from fallacyscan.logging import get_request_id
        assert get_request_id() is None

    def test_get_logger(self):
        from fallacyscan.logging import get_logger
        log = get_logger("analyzer")
        assert log.name == "fallacyscan.analyzer"


class TestSettings:

    def test_settings_are_frozen(self):
        from dataclasses import FrozenInstanceError
        from fallacyscan.config import settings
        with pytest.raises(FrozenInstanceError):
            settings.RATE_LIMIT_REQUESTS = 1000

    def test_app_reports_package_version(self):
        from api.main import app
        from fallacyscan import __version__
        assert app.version == __version__

    @pytest.mark.parametrize("raw,expected", [
        ("true", True), ("YES", True), ("1", True), ("false", False), ("off", False),
    ])
    def test_env_bool(self, monkeypatch, raw, expected):
        from fallacyscan.config import _env_bool
        monkeypatch.setenv("FALLACYSCAN_TEST_FLAG", raw)
        assert _env_bool("FALLACYSCAN_TEST_FLAG", "false") is expected


class TestProviders:

    def test_unknown_provider_rejected(self):
        from fallacyscan.llm.factory import get_provider
        with pytest.raises(ValueError):
            get_provider("claude-on-a-toaster")

    def test_factory_returns_named_providers(self):
        from fallacyscan.llm.factory import get_provider
        assert get_provider("gemini").name == "gemini"
        assert get_provider("openai").name == "openai"

    def test_strip_fences(self):
        assert strip_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_fences('  {"a": 1}  ') == '{"a": 1}'

    @pytest.mark.asyncio
    async def test_generate_json_strips_fences(self):
        llm = EchoLLM('```json\n{"fallacies": []}\n```')
        assert await llm.generate_json("prompt") == {"fallacies": []}

    @pytest.mark.asyncio
    async def test_generate_json_rejects_prose(self):
        llm = EchoLLM("No fallacies here.")
        with pytest.raises(ValueError):
            await llm.generate_json("prompt")

    @pytest.mark.asyncio
    async def test_default_stream_is_single_delta(self):
        llm = EchoLLM('{"fallacy": {}}')
        deltas = [d async for d in llm.stream("prompt")]
        assert deltas == ['{"fallacy": {}}']
        assert llm.calls == 1

    @pytest.mark.asyncio
    async def test_gemini_without_key_fails(self, monkeypatch):
        from fallacyscan.llm.gemini import GeminiProvider
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        with pytest.raises(RuntimeError):
            await GeminiProvider().generate("prompt")

    @pytest.mark.asyncio
    async def test_openai_without_key_fails(self, monkeypatch):
        from fallacyscan.llm.openai_chat import OpenAIProvider
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(RuntimeError):
            await OpenAIProvider().generate("prompt")


class TestCircuitBreaker:

    def test_opens_after_threshold(self):
        from fallacyscan.llm.gemini import CircuitBreaker
        breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=60)
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == "closed"
        breaker.record_failure()
        assert breaker.is_open

    def test_success_closes(self):
        from fallacyscan.llm.gemini import CircuitBreaker
        breaker = CircuitBreaker(failure_threshold=1)
        breaker.record_failure()
        breaker.record_success()
        assert breaker.state == "closed"

    def test_half_open_after_recovery(self):
        from fallacyscan.llm.gemini import CircuitBreaker
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        breaker.record_failure()
        assert breaker.state == "half-open"

    @pytest.mark.asyncio
    async def test_open_breaker_short_circuits(self):
        from fallacyscan.llm.gemini import CircuitOpenError, GeminiProvider
        provider = GeminiProvider(api_key="test-key")
        for _ in range(provider.circuit_breaker.failure_threshold):
            provider.circuit_breaker.record_failure()
        with pytest.raises(CircuitOpenError):
            await provider.generate("prompt")
        with pytest.raises(CircuitOpenError):
            [d async for d in provider.stream("prompt")]
