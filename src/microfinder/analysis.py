"""Submit captured images to the vision model and validate what comes back."""
from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass

from microfinder.errors import AnalysisError, AnalysisMalformedResponseError, AnalysisTimeoutError
from microfinder.metrics import record_analysis_call
from microfinder.models.discovery import MicrobeAnalysis
from microfinder.models.image import ImagePayload
from microfinder.vision import VisionModel

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0

ANALYSIS_PROMPT = (
    "You are a microbiologist analyzing microscope images. Analyze this image and respond ONLY with a "
    "single JSON object in this exact format, no other text: "
    '{"microbeName": "scientific name", "classification": "bacteria | virus | fungi | protozoa", '
    '"confidence": number between 0-1, "characteristics": ["feature1", "feature2"], '
    '"description": "brief description"}'
)

_OPENING_FENCE = re.compile(r"^```[\w-]*[ \t]*\n?")
_CLOSING_FENCE = re.compile(r"\n?[ \t]*```$")


def strip_code_fences(text: str) -> str:
    """Remove a Markdown code fence wrapped around ``text``, if any."""

    stripped = text.strip()
    stripped = _OPENING_FENCE.sub("", stripped, count=1)
    stripped = _CLOSING_FENCE.sub("", stripped, count=1)
    return stripped.strip()


def parse_analysis(text: str) -> MicrobeAnalysis:
    """Parse the model's answer into a fully defaulted :class:`MicrobeAnalysis`."""

    try:
        payload = json.loads(strip_code_fences(text))
    except (ValueError, RecursionError) as exc:
        raise AnalysisMalformedResponseError() from exc
    if not isinstance(payload, dict):
        raise AnalysisMalformedResponseError()
    return MicrobeAnalysis.from_payload(payload)


@dataclass(slots=True)
class AnalysisClient:
    """Make exactly one vision call per image and surface its first failure."""

    vision: VisionModel
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    enable_metrics: bool = True

    async def analyze(self, image: ImagePayload | str) -> MicrobeAnalysis:
        """Identify the organism in ``image``.

        ``image`` is either an :class:`ImagePayload` or base64 JPEG data.
        """

        payload = image if isinstance(image, ImagePayload) else ImagePayload(data=image)
        provider = self.vision.provider
        logger.info("Requesting %s analysis with model=%s", provider, self.vision.model)
        start = time.perf_counter()
        try:
            text = await asyncio.wait_for(
                self.vision.generate(prompt=ANALYSIS_PROMPT, image=payload, timeout=self.timeout_seconds),
                timeout=self.timeout_seconds,
            )
            result = parse_analysis(text)
        except asyncio.TimeoutError as exc:
            self._record(provider, AnalysisTimeoutError.kind.value, start)
            logger.warning("%s analysis exceeded %.0fs timeout", provider, self.timeout_seconds)
            raise AnalysisTimeoutError() from exc
        except AnalysisError as exc:
            self._record(provider, exc.kind.value, start)
            logger.warning("%s analysis failed: %s", provider, exc.message)
            raise

        latency = self._record(provider, "success", start)
        logger.info(
            "%s analysis finished in %.2fs: %s (%s)",
            provider,
            latency,
            result.microbe_name,
            result.classification,
        )
        return result

    def _record(self, provider: str, outcome: str, start: float) -> float:
        latency = time.perf_counter() - start
        if self.enable_metrics:
            record_analysis_call(provider, outcome, latency)
        return latency
