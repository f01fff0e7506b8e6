"""Run one frame through the analysis pipeline.

``AnalysisCoordinator.analyze`` is the single entry point used by the HTTP
layer::

    image preflight -> usage gate -> provider call -> normalize
        -> aggregate + score -> FrameAnalysis

A refusal from the usage gate comes back as a :class:`QuotaRejection` and the
provider is never contacted.  Provider failures propagate as
:class:`analysis_providers.errors.ProviderError` subclasses.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Mapping, Optional, Union

from analysis_providers.base import FaceAnalysisProvider, check_image
from analysis_providers.errors import ProviderError
from analysis_providers.facepp_provider import FacePlusPlusProvider
from analysis_providers.rekognition_provider import RekognitionProvider
from analysis_types import AnalysisSettings, ApiProvider, FrameAnalysis
from crowd_stats import AggregationEngine
from engagement import EngagementScorer
from env import Settings, get_settings
from services.usage_tracker import (
    JsonFileUsageStore,
    QuotaOutcome,
    QuotaRejection,
    UsageGate,
    limits_from_settings,
)

logger = logging.getLogger(__name__)

AnalysisOutcome = Union[FrameAnalysis, QuotaRejection]


class AnalysisCoordinator:
    def __init__(
        self,
        usage_gate: UsageGate,
        providers: Mapping[ApiProvider, FaceAnalysisProvider],
        aggregator: Optional[AggregationEngine] = None,
        scorer: Optional[EngagementScorer] = None,
    ) -> None:
        self.usage_gate = usage_gate
        self.providers = dict(providers)
        self.aggregator = aggregator or AggregationEngine()
        self.scorer = scorer or EngagementScorer()

    def provider_for(self, provider: ApiProvider) -> FaceAnalysisProvider:
        try:
            return self.providers[provider]
        except KeyError:
            raise ValueError(f"Provider {provider.value!r} is not configured") from None

    async def analyze(self, image_bytes: bytes, settings: AnalysisSettings) -> AnalysisOutcome:
        """Analyze one frame with ``settings.api_provider``."""
        provider_id = settings.api_provider
        provider = self.provider_for(provider_id)

        fmt, width, height = check_image(image_bytes, provider)

        outcome = await asyncio.to_thread(self.usage_gate.consume, provider_id)
        if outcome is not QuotaOutcome.ACCEPTED:
            logger.warning("%s call refused: %s", provider_id.value, outcome.value)
            usage = await asyncio.to_thread(self.usage_gate.usage_for, provider_id)
            return QuotaRejection(provider=provider_id, outcome=outcome, usage=usage)

        started = time.perf_counter()
        try:
            raw = await provider.detect(image_bytes, settings)
            faces = provider.normalize(raw, settings.confidence_threshold)
        except ProviderError as exc:
            logger.error("Analysis with %s failed: %s", provider_id.value, exc)
            raise

        stats = self.aggregator.summarize(faces)
        engagement = self.scorer.score(faces)

        analysis = FrameAnalysis(
            faces=faces,
            people_count=stats.people_count,
            average_age=stats.average_age,
            male_percentage=stats.male_percentage,
            female_percentage=stats.female_percentage,
            primary_emotion=stats.primary_emotion,
            primary_emotion_percentage=stats.primary_emotion_percentage,
            engagement_score=engagement.engagement_score,
            attention_time=engagement.attention_time,
            provider=provider_id,
            raw_provider_response=raw,
        )
        logger.info(
            "Analyzed %dx%d %s with %s in %.0fms: %d people, engagement %s",
            width,
            height,
            fmt,
            provider_id.value,
            (time.perf_counter() - started) * 1000,
            analysis.people_count,
            analysis.engagement_score,
        )
        return analysis


def build_coordinator(settings: Optional[Settings] = None) -> AnalysisCoordinator:
    """Coordinator wired to the real providers and the JSON usage file."""
    settings = settings or get_settings()
    gate = UsageGate(JsonFileUsageStore(settings.USAGE_FILE), limits_from_settings(settings))
    providers = {
        ApiProvider.AWS: RekognitionProvider(settings=settings),
        ApiProvider.FACEPP: FacePlusPlusProvider(settings=settings),
    }
    return AnalysisCoordinator(gate, providers)


__all__ = ["AnalysisCoordinator", "AnalysisOutcome", "build_coordinator"]
