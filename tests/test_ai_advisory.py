"""
Tests for the AI advisory module: response parsing, provider adapters,
the fallback chain and the advisory adjuster.
"""

from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from services.signal_engine.src.ai_advisory import (
    AdvisoryAdjuster,
    AdvisoryChain,
    AdvisoryPromptBuilder,
    AdvisoryResponseParser,
    AnthropicProvider,
    FreeTextAdvisory,
    LocalProvider,
    OpenAIProvider,
    StructuredAdvisory,
    build_advisory_chain,
    load_prompts_config,
)
from services.signal_engine.src.ollama_client import OllamaClient, OllamaResponse
from services.signal_engine.src.persistence_model import PersistencePredictor
from shared.config import AnthropicConfig, Config, LocalAIConfig, OpenAIConfig
from shared.models import MarketData, SignalData
from tests.fixtures.stubs import StubProvider

REPO_ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture
def parser():
    return AdvisoryResponseParser()


@pytest.fixture
def signal():
    return SignalData.model_validate(
        {"type": "buy", "strength": 0.75, "technical": {"rsi": 28, "macd": 0.4}}
    )


@pytest.fixture
def market():
    return MarketData(volatility=0.3, trend_strength=0.7)


@pytest.fixture
def raw_predictions(signal, market):
    return PersistencePredictor().predict(signal, market)


class TestAdvisoryResponseParser:
    """Test decoding of provider answers."""

    @pytest.mark.unit
    def test_plain_json(self, parser):
        advisory = parser.parse(
            '{"adjustment": -0.05, "reasoning": "fading momentum", "confidence": 0.7, '
            '"risk_factors": ["macro"], "opportunity_factors": []}'
        )

        assert isinstance(advisory, StructuredAdvisory)
        assert advisory.adjustment == pytest.approx(-0.05)
        assert advisory.confidence == pytest.approx(0.7)
        assert advisory.reasoning == "fading momentum"
        assert advisory.risk_factors == ["macro"]

    @pytest.mark.unit
    def test_json_embedded_in_prose(self, parser):
        advisory = parser.parse(
            'Here is my analysis:\n```json\n{"adjustment": 0.1, "confidence": 0.9}\n```\nThanks'
        )

        assert isinstance(advisory, StructuredAdvisory)
        assert advisory.adjustment == pytest.approx(0.1)
        assert advisory.reasoning == "AI analysis completed"

    @pytest.mark.unit
    def test_json_values_are_clamped(self, parser):
        advisory = parser.parse('{"adjustment": 0.9, "confidence": 85}')

        assert advisory.adjustment == pytest.approx(0.2)
        assert advisory.confidence == pytest.approx(1.0)

    @pytest.mark.unit
    def test_missing_json_fields_use_defaults(self, parser):
        advisory = parser.parse('{"reasoning": "no numbers"}')

        assert isinstance(advisory, StructuredAdvisory)
        assert advisory.adjustment == 0.0
        assert advisory.confidence == 0.5
        assert advisory.risk_factors == []

    @pytest.mark.unit
    def test_free_text_extraction(self, parser):
        text = "The signal looks durable. Adjustment: +0.15, confidence: 0.65 overall."

        advisory = parser.parse(text)

        assert isinstance(advisory, FreeTextAdvisory)
        assert advisory.adjustment == pytest.approx(0.15)
        assert advisory.confidence == pytest.approx(0.65)
        assert advisory.reasoning == text[:200] + "..."

    @pytest.mark.unit
    def test_free_text_defaults(self, parser):
        advisory = parser.parse("I cannot tell how long this will last.")

        assert isinstance(advisory, FreeTextAdvisory)
        assert advisory.adjustment == 0.0
        assert advisory.confidence == 0.5

    @pytest.mark.unit
    def test_free_text_is_clamped(self, parser):
        advisory = parser.parse("adjustment -0.8 and confidence 3")

        assert advisory.adjustment == pytest.approx(-0.2)
        assert advisory.confidence == pytest.approx(1.0)

    @pytest.mark.unit
    def test_long_reasoning_is_truncated(self, parser):
        advisory = parser.parse("x" * 500)

        assert len(advisory.reasoning) == 203


class TestProviders:
    """Test provider adapters against mocked SDK clients."""

    @pytest.mark.unit
    def test_unconfigured_hosted_providers(self):
        assert OpenAIProvider(OpenAIConfig(OPENAI_API_KEY=None)).is_configured() is False
        assert AnthropicProvider(AnthropicConfig(ANTHROPIC_API_KEY=None)).is_configured() is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_openai_provider(self):
        provider = OpenAIProvider(OpenAIConfig(OPENAI_API_KEY="test_key", OPENAI_MODEL="gpt-4"))
        completion = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content='{"adjustment": 0.1}'))]
        )

        with patch.object(
            provider.client.chat.completions, "create", AsyncMock(return_value=completion)
        ) as mock_create:
            text = await provider.complete("prompt")

        assert text == '{"adjustment": 0.1}'
        kwargs = mock_create.call_args.kwargs
        assert kwargs["model"] == "gpt-4"
        assert kwargs["messages"][0]["role"] == "system"
        assert kwargs["messages"][1] == {"role": "user", "content": "prompt"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_anthropic_provider(self):
        provider = AnthropicProvider(AnthropicConfig(ANTHROPIC_API_KEY="test_key"))
        message = SimpleNamespace(content=[SimpleNamespace(text="adjustment: 0.05")])

        with patch.object(provider.client, "messages") as mock_messages:
            mock_messages.create = AsyncMock(return_value=message)
            text = await provider.complete("prompt")

        assert text == "adjustment: 0.05"
        assert mock_messages.create.call_args.kwargs["messages"] == [
            {"role": "user", "content": "prompt"}
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_local_provider(self):
        client = OllamaClient(base_url="http://ollama:11434", model="llama2")
        client.query = AsyncMock(
            return_value=OllamaResponse(
                content="confidence 0.4", model="llama2", tokens_used=12, response_time=0.3
            )
        )
        provider = LocalProvider(LocalAIConfig(LOCAL_AI_MAX_TOKENS=256), client=client)

        assert provider.is_configured() is True
        assert await provider.complete("prompt") == "confidence 0.4"
        assert client.query.call_args.kwargs["max_tokens"] == 256

    @pytest.mark.unit
    def test_local_provider_can_be_disabled(self):
        provider = LocalProvider(LocalAIConfig(LOCAL_AI_ENABLED=False))
        assert provider.is_configured() is False


class TestAdvisoryChain:
    """Test the ordered fallback chain."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_first_success_short_circuits(self):
        primary = StubProvider("openai", response="adjustment: 0.1")
        secondary = StubProvider("anthropic", response="adjustment: -0.1")

        answer = await AdvisoryChain([primary, secondary]).complete("prompt")

        assert answer.provider == "openai"
        assert answer.text == "adjustment: 0.1"
        assert secondary.calls == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_falls_back_in_order(self):
        primary = StubProvider("openai", error=RuntimeError("rate limited"))
        secondary = StubProvider("anthropic", error=RuntimeError("overloaded"))
        local = StubProvider("local", response="confidence: 0.6")

        answer = await AdvisoryChain([primary, secondary, local]).complete("prompt")

        assert answer.provider == "local"
        assert len(primary.calls) == len(secondary.calls) == len(local.calls) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unconfigured_providers_are_skipped(self):
        primary = StubProvider("openai", response="never", configured=False)
        local = StubProvider("local", response="adjustment: 0.02")

        answer = await AdvisoryChain([primary, local]).complete("prompt")

        assert answer.provider == "local"
        assert primary.calls == []

    @pytest.mark.unit
    def test_configured_providers(self):
        chain = AdvisoryChain(
            [
                StubProvider("openai", configured=False),
                StubProvider("anthropic"),
                StubProvider("local"),
            ]
        )
        assert chain.configured_providers == ["anthropic", "local"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_validate_reports_each_provider(self):
        chain = AdvisoryChain(
            [
                StubProvider("openai", configured=False),
                StubProvider("anthropic", error=RuntimeError("bad key")),
                StubProvider("local", response="OK"),
            ]
        )

        report = await chain.validate()

        assert report["openai"] == {"configured": False, "available": False, "error": None}
        assert report["anthropic"]["available"] is False
        assert report["anthropic"]["error"] == "bad key"
        assert report["local"]["available"] is True

    @pytest.mark.unit
    def test_build_chain_from_config(self, monkeypatch):
        monkeypatch.setenv("ADVISORY_PROVIDER_ORDER", "local, anthropic")
        monkeypatch.setenv("ADVISORY_CALL_TIMEOUT", "3")

        chain = build_advisory_chain(Config())

        assert [p.name for p in chain.providers] == ["local", "anthropic"]
        assert chain.call_timeout == 3.0


class TestAdvisoryAdjuster:
    """Test prompt building and adjustment assembly."""

    @pytest.mark.unit
    def test_prompt_embeds_inputs(self, signal, market, raw_predictions):
        prompt = AdvisoryPromptBuilder().build(
            signal, market, {"symbol": "bitcoin"}, raw_predictions
        )

        assert "Signal type: buy" in prompt
        assert "Signal strength: 0.75" in prompt
        assert '"rsi": 28.0' in prompt
        assert "Volatility: 0.3" in prompt
        assert "Liquidity: n/a" in prompt
        assert '"symbol": "bitcoin"' in prompt
        assert str(round(raw_predictions.short_term.probability, 4)) in prompt

    @pytest.mark.unit
    def test_repository_prompts_file(self):
        prompts = load_prompts_config(REPO_ROOT / "config" / "signal_engine" / "prompts.yaml")

        section = prompts["signal_persistence"]
        assert "{signal_type}" in section["template"]
        assert section["system"]
        assert section["probe"]

    @pytest.mark.unit
    def test_missing_prompts_file(self, tmp_path):
        assert load_prompts_config(tmp_path / "missing.yaml") == {}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_structured_advice(self, json_provider, signal, market, raw_predictions):
        adjuster = AdvisoryAdjuster(AdvisoryChain([json_provider]))

        analysis = await adjuster.advise(signal, market, {}, raw_predictions)

        assert analysis.provider == "openai"
        assert analysis.adjustment == pytest.approx(0.1)
        assert analysis.confidence == pytest.approx(0.8)
        assert analysis.risk_factors == ["thin liquidity"]
        assert analysis.opportunity_factors == ["breakout"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_free_text_advice(self, signal, market, raw_predictions):
        provider = StubProvider("anthropic", response="Adjustment -0.1 with confidence 0.6")
        adjuster = AdvisoryAdjuster(AdvisoryChain([provider]))

        analysis = await adjuster.advise(signal, market, {}, raw_predictions)

        assert analysis.provider == "anthropic"
        assert analysis.adjustment == pytest.approx(-0.1)
        assert analysis.confidence == pytest.approx(0.6)
        assert analysis.risk_factors == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_exhausted_chain_degrades(self, failing_chain, signal, market, raw_predictions):
        adjuster = AdvisoryAdjuster(failing_chain)

        analysis = await adjuster.advise(signal, market, {}, raw_predictions)

        assert analysis.adjustment == 0.0
        assert analysis.confidence == 0.5
        assert analysis.provider is None
        assert "rate limited" in analysis.reasoning
        assert "connection refused" in analysis.reasoning

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_close_releases_providers(self):
        provider = StubProvider("local", response="OK")
        adjuster = AdvisoryAdjuster(AdvisoryChain([provider]))

        await adjuster.close()

        assert provider.closed is True
