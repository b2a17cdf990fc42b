"""
AI advisory module.

This module asks a language-model provider to review a raw persistence
prediction and suggest a bounded probability adjustment. Providers are
tried in order (OpenAI, then Anthropic, then a local Ollama model) under a
per-call timeout and an overall deadline; the first successful answer wins.
"""

import asyncio
import json
import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from shared.config import AnthropicConfig, Config, LocalAIConfig, OpenAIConfig
from shared.models import AIAnalysis, HorizonPredictions, MarketData, SignalData
from shared.utils import clamp

from .exceptions import AdvisoryUnavailableError, MalformedAdvisoryResponseError
from .ollama_client import OllamaClient

logger = logging.getLogger(__name__)

MAX_ADJUSTMENT = 0.2
DEFAULT_CONFIDENCE = 0.5
REASONING_PREVIEW_CHARS = 200

DEFAULT_SYSTEM_PROMPT = (
    "You are an expert in predicting how long cryptocurrency trading signals "
    "persist. Provide accurate and careful analysis."
)

DEFAULT_PROMPT_TEMPLATE = """You are an expert in cryptocurrency signal persistence. Analyze the data
below and estimate how long the signal is likely to persist.

Signal data:
- Technical analysis: {technical}
- Fundamental analysis: {fundamental}
- Signal type: {signal_type}
- Signal strength: {signal_strength}

Market data:
- Volatility: {volatility}
- Trend strength: {trend_strength}
- Liquidity: {liquidity}
- Correlation: {correlation}
- Time of day: {time_of_day}

Additional context:
{context}

Current prediction:
- Short term (1-4h): {short_term}
- Medium term (4-24h): {medium_term}
- Long term (1-7d): {long_term}

Respond only with JSON in this format:
{{
  "adjustment": prediction adjustment between -0.2 and 0.2,
  "reasoning": "basis for the prediction",
  "confidence": confidence between 0 and 1,
  "risk_factors": ["risk 1", "risk 2"],
  "opportunity_factors": ["opportunity 1", "opportunity 2"]
}}
"""

DEFAULT_PROBE_PROMPT = "Reply with the single word OK."


def load_prompts_config(path: Union[str, Path]) -> Dict[str, Any]:
    """Load the prompts YAML file, returning an empty dict when it is missing."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            prompts_config = yaml.safe_load(f)
            return prompts_config if prompts_config else {}
    except FileNotFoundError:
        logger.warning(f"Prompts file {path} not found, using built-in prompts")
        return {}


class AdvisoryProvider(ABC):
    """A language-model backend able to complete a prompt."""

    name: str = "provider"

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether the provider has what it needs to be called."""

    @abstractmethod
    async def complete(self, prompt: str) -> str:
        """Return the provider's raw text answer to ``prompt``."""

    async def close(self) -> None:
        """Release any network resources held by the provider."""


class OpenAIProvider(AdvisoryProvider):
    """Primary provider backed by the OpenAI chat completions API."""

    name = "openai"

    def __init__(self, config: OpenAIConfig, system_prompt: str = DEFAULT_SYSTEM_PROMPT):
        self.config = config
        self.system_prompt = system_prompt
        self.client: Optional[AsyncOpenAI] = None
        if config.api_key:
            self.client = AsyncOpenAI(api_key=config.api_key, base_url=config.base_url)

    def is_configured(self) -> bool:
        return self.client is not None

    async def complete(self, prompt: str) -> str:
        if self.client is None:
            raise RuntimeError("OpenAI API key is not configured")

        response = await self.client.chat.completions.create(
            model=self.config.model,
            messages=[
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": prompt},
            ],
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
        )
        return response.choices[0].message.content or ""

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()


class AnthropicProvider(AdvisoryProvider):
    """Secondary provider backed by the Anthropic messages API."""

    name = "anthropic"

    def __init__(self, config: AnthropicConfig, system_prompt: str = DEFAULT_SYSTEM_PROMPT):
        self.config = config
        self.system_prompt = system_prompt
        self.client: Optional[AsyncAnthropic] = None
        if config.api_key:
            self.client = AsyncAnthropic(api_key=config.api_key)

    def is_configured(self) -> bool:
        return self.client is not None

    async def complete(self, prompt: str) -> str:
        if self.client is None:
            raise RuntimeError("Anthropic API key is not configured")

        response = await self.client.messages.create(
            model=self.config.model,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
            system=self.system_prompt,
            messages=[{"role": "user", "content": prompt}],
        )
        return response.content[0].text

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()


class LocalProvider(AdvisoryProvider):
    """Last-resort provider backed by a local Ollama server."""

    name = "local"

    def __init__(self, config: LocalAIConfig, client: Optional[OllamaClient] = None):
        self.config = config
        self.client = client or OllamaClient(base_url=config.base_url, model=config.model)

    def is_configured(self) -> bool:
        return self.config.enabled

    async def complete(self, prompt: str) -> str:
        response = await self.client.query(
            prompt, max_tokens=self.config.max_tokens, temperature=self.config.temperature
        )
        return response.content

    async def close(self) -> None:
        await self.client.close()


@dataclass(frozen=True)
class ProviderAnswer:
    """Raw text answer and the provider that produced it."""

    provider: str
    text: str


class AdvisoryChain:
    """Ordered, strictly sequential provider fallback with an overall deadline."""

    def __init__(
        self,
        providers: List[AdvisoryProvider],
        call_timeout: float = 15.0,
        overall_timeout: float = 40.0,
    ):
        self.providers = providers
        self.call_timeout = call_timeout
        self.overall_timeout = overall_timeout

    @property
    def configured_providers(self) -> List[str]:
        return [p.name for p in self.providers if p.is_configured()]

    async def complete(self, prompt: str) -> ProviderAnswer:
        """
        Run the prompt through the chain until one provider answers.

        Args:
            prompt: Prompt text

        Returns:
            ProviderAnswer from the first provider that succeeded

        Raises:
            AdvisoryUnavailableError: If every configured provider failed
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.overall_timeout
        attempts = []

        for provider in self.providers:
            if not provider.is_configured():
                logger.debug(f"Skipping unconfigured advisory provider {provider.name}")
                continue

            remaining = deadline - loop.time()
            if remaining <= 0:
                attempts.append((provider.name, "overall advisory deadline exceeded"))
                logger.warning(
                    f"Advisory deadline exceeded before trying provider {provider.name}"
                )
                break

            timeout = min(self.call_timeout, remaining)
            try:
                text = await asyncio.wait_for(provider.complete(prompt), timeout=timeout)
            except asyncio.TimeoutError:
                attempts.append((provider.name, f"timed out after {timeout:.1f}s"))
                logger.warning(f"Advisory provider {provider.name} timed out after {timeout:.1f}s")
                continue
            except Exception as e:
                attempts.append((provider.name, str(e) or type(e).__name__))
                logger.warning(f"Advisory provider {provider.name} failed: {e}")
                continue

            if not text or not text.strip():
                attempts.append((provider.name, "empty response"))
                logger.warning(f"Advisory provider {provider.name} returned an empty response")
                continue

            return ProviderAnswer(provider=provider.name, text=text)

        raise AdvisoryUnavailableError(attempts)

    async def validate(self, probe_prompt: str = DEFAULT_PROBE_PROMPT) -> Dict[str, Dict[str, Any]]:
        """Probe every provider once and report its availability."""
        report: Dict[str, Dict[str, Any]] = {}

        for provider in self.providers:
            status: Dict[str, Any] = {
                "configured": provider.is_configured(),
                "available": False,
                "error": None,
            }
            if status["configured"]:
                try:
                    await asyncio.wait_for(provider.complete(probe_prompt), timeout=self.call_timeout)
                    status["available"] = True
                except asyncio.TimeoutError:
                    status["error"] = f"timed out after {self.call_timeout:.1f}s"
                except Exception as e:
                    status["error"] = str(e) or type(e).__name__
            report[provider.name] = status

        return report

    async def close(self) -> None:
        for provider in self.providers:
            await provider.close()


def build_advisory_chain(config: Config, system_prompt: Optional[str] = None) -> AdvisoryChain:
    """Build the provider chain in the configured order."""
    system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT
    factories = {
        "openai": lambda: OpenAIProvider(config.openai, system_prompt),
        "anthropic": lambda: AnthropicProvider(config.anthropic, system_prompt),
        "local": lambda: LocalProvider(config.local_ai),
    }
    advisory_config = config.advisory
    return AdvisoryChain(
        providers=[factories[name]() for name in advisory_config.provider_order],
        call_timeout=advisory_config.call_timeout,
        overall_timeout=advisory_config.overall_timeout,
    )


@dataclass(frozen=True)
class StructuredAdvisory:
    """Advisory decoded from a JSON answer."""

    adjustment: float
    confidence: float
    reasoning: str
    risk_factors: List[str] = field(default_factory=list)
    opportunity_factors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class FreeTextAdvisory:
    """Advisory extracted from a free-text answer."""

    adjustment: float
    confidence: float
    reasoning: str


Advisory = Union[StructuredAdvisory, FreeTextAdvisory]


class AdvisoryResponseParser:
    """Decodes provider answers into bounded advisories."""

    ADJUSTMENT_PATTERN = re.compile(r"adjustment[:\s]*([+-]?\d*\.?\d+)", re.IGNORECASE)
    CONFIDENCE_PATTERN = re.compile(r"confidence[:\s]*(\d*\.?\d+)", re.IGNORECASE)

    def parse(self, text: str) -> Advisory:
        """Decode ``text`` as JSON when possible, otherwise extract from free text."""
        try:
            return self.parse_structured(text)
        except MalformedAdvisoryResponseError as e:
            logger.debug(f"Falling back to text extraction: {e}")
            return self.parse_free_text(text)

    def parse_structured(self, text: str) -> StructuredAdvisory:
        """
        Decode a JSON object, possibly embedded in surrounding prose.

        Raises:
            MalformedAdvisoryResponseError: If no usable JSON object is found
        """
        text = text.strip()
        json_start = text.find("{")
        json_end = text.rfind("}") + 1
        if json_start < 0 or json_end <= json_start:
            raise MalformedAdvisoryResponseError("No JSON object in response", text)

        try:
            parsed = json.loads(text[json_start:json_end])
        except json.JSONDecodeError as e:
            raise MalformedAdvisoryResponseError(f"Invalid JSON: {e}", text) from e

        if not isinstance(parsed, dict):
            raise MalformedAdvisoryResponseError("JSON payload is not an object", text)

        try:
            adjustment = float(parsed.get("adjustment") or 0.0)
            confidence_value = parsed.get("confidence")
            confidence = (
                DEFAULT_CONFIDENCE if confidence_value is None else float(confidence_value)
            )
        except (TypeError, ValueError, OverflowError) as e:
            raise MalformedAdvisoryResponseError(f"Non-numeric advisory field: {e}", text) from e

        if not (math.isfinite(adjustment) and math.isfinite(confidence)):
            raise MalformedAdvisoryResponseError("Non-finite advisory field", text)

        return StructuredAdvisory(
            adjustment=clamp(adjustment, -MAX_ADJUSTMENT, MAX_ADJUSTMENT),
            confidence=clamp(confidence),
            reasoning=str(parsed.get("reasoning") or "AI analysis completed"),
            risk_factors=self._string_list(parsed.get("risk_factors")),
            opportunity_factors=self._string_list(parsed.get("opportunity_factors")),
        )

    def parse_free_text(self, text: str) -> FreeTextAdvisory:
        """Extract ``adjustment`` and ``confidence`` figures from prose."""
        adjustment = self._extract(self.ADJUSTMENT_PATTERN, text, 0.0)
        confidence = self._extract(self.CONFIDENCE_PATTERN, text, DEFAULT_CONFIDENCE)

        return FreeTextAdvisory(
            adjustment=clamp(adjustment, -MAX_ADJUSTMENT, MAX_ADJUSTMENT),
            confidence=clamp(confidence),
            reasoning=text[:REASONING_PREVIEW_CHARS] + "...",
        )

    @staticmethod
    def _extract(pattern: re.Pattern, text: str, default: float) -> float:
        match = pattern.search(text)
        if not match:
            return default
        value = float(match.group(1))
        # Digit runs too long for a float come back as inf
        return value if math.isfinite(value) else default

    @staticmethod
    def _string_list(value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value]


class AdvisoryPromptBuilder:
    """Renders the advisory prompt for a signal and its raw prediction."""

    def __init__(self, template: str = DEFAULT_PROMPT_TEMPLATE):
        self.template = template

    def build(
        self,
        signal: SignalData,
        market: MarketData,
        context: Dict[str, Any],
        raw_predictions: HorizonPredictions,
    ) -> str:
        technical = signal.technical.model_dump(exclude_none=True) if signal.technical else {}
        fundamental = (
            signal.fundamental.model_dump(exclude_none=True) if signal.fundamental else {}
        )

        return self.template.format(
            technical=json.dumps(technical),
            fundamental=json.dumps(fundamental),
            signal_type=signal.type.value,
            signal_strength=signal.strength,
            volatility=self._reading(market.volatility),
            trend_strength=self._reading(market.trend_strength),
            liquidity=self._reading(market.liquidity),
            correlation=self._reading(market.correlation),
            time_of_day=self._reading(market.time_of_day),
            context=json.dumps(context or {}, default=str),
            short_term=round(raw_predictions.short_term.probability, 4),
            medium_term=round(raw_predictions.medium_term.probability, 4),
            long_term=round(raw_predictions.long_term.probability, 4),
        )

    @staticmethod
    def _reading(value: Optional[float]) -> str:
        return "n/a" if value is None else f"{value}"


class AdvisoryAdjuster:
    """Obtains a bounded advisory adjustment for a raw persistence prediction.

    Never raises for provider trouble: when the chain is exhausted the
    adjuster returns a neutral analysis (no adjustment, confidence 0.5) whose
    reasoning names the failure.
    """

    def __init__(
        self,
        chain: AdvisoryChain,
        prompt_builder: Optional[AdvisoryPromptBuilder] = None,
        parser: Optional[AdvisoryResponseParser] = None,
        probe_prompt: str = DEFAULT_PROBE_PROMPT,
    ):
        self.chain = chain
        self.prompt_builder = prompt_builder or AdvisoryPromptBuilder()
        self.parser = parser or AdvisoryResponseParser()
        self.probe_prompt = probe_prompt

    @classmethod
    def from_config(cls, config: Config) -> "AdvisoryAdjuster":
        prompts = load_prompts_config(config.advisory.prompts_path).get("signal_persistence", {})
        chain = build_advisory_chain(config, prompts.get("system"))
        return cls(
            chain,
            prompt_builder=AdvisoryPromptBuilder(prompts.get("template") or DEFAULT_PROMPT_TEMPLATE),
            probe_prompt=prompts.get("probe") or DEFAULT_PROBE_PROMPT,
        )

    async def advise(
        self,
        signal: SignalData,
        market: MarketData,
        context: Dict[str, Any],
        raw_predictions: HorizonPredictions,
    ) -> AIAnalysis:
        """
        Ask the provider chain to review a raw prediction.

        Args:
            signal: Signal descriptor
            market: Market context
            context: Free-form caller context
            raw_predictions: Predictor output to review

        Returns:
            AIAnalysis with a bounded adjustment and confidence
        """
        prompt = self.prompt_builder.build(signal, market, context, raw_predictions)

        try:
            answer = await self.chain.complete(prompt)
        except AdvisoryUnavailableError as e:
            logger.warning(f"Advisory unavailable, using base prediction: {e}")
            return self.degraded(str(e))

        advisory = self.parser.parse(answer.text)
        logger.debug(
            f"Advisory from {answer.provider}: adjustment={advisory.adjustment:+.3f} "
            f"confidence={advisory.confidence:.2f}"
        )

        if isinstance(advisory, StructuredAdvisory):
            return AIAnalysis(
                reasoning=advisory.reasoning,
                confidence=advisory.confidence,
                adjustment=advisory.adjustment,
                provider=answer.provider,
                risk_factors=advisory.risk_factors,
                opportunity_factors=advisory.opportunity_factors,
            )
        return AIAnalysis(
            reasoning=advisory.reasoning,
            confidence=advisory.confidence,
            adjustment=advisory.adjustment,
            provider=answer.provider,
        )

    @staticmethod
    def degraded(reason: str) -> AIAnalysis:
        return AIAnalysis(
            reasoning=f"AI model call failed, using base prediction ({reason})",
            confidence=DEFAULT_CONFIDENCE,
            adjustment=0.0,
        )

    async def validate(self) -> Dict[str, Dict[str, Any]]:
        return await self.chain.validate(self.probe_prompt)

    async def close(self) -> None:
        await self.chain.close()
