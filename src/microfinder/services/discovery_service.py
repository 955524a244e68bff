"""Application service running the capture, analyse and save pipeline."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Union

from microfinder.analysis import AnalysisClient
from microfinder.models.discovery import Discovery
from microfinder.models.image import DEFAULT_MAX_IMAGE_BYTES, ImagePayload
from microfinder.repositories.discovery_repository import DiscoveryRepository
from microfinder.results import Err, Ok, attempt

logger = logging.getLogger(__name__)

CapturedImage = Union[ImagePayload, str, bytes]


@dataclass(slots=True)
class DiscoveryService:
    """Coordinate image analysis and discovery persistence."""

    analysis_client: AnalysisClient
    repository: DiscoveryRepository
    max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES

    def encode_image(self, content: bytes) -> ImagePayload:
        """Encode raw camera or gallery bytes within the configured size limit."""

        return ImagePayload.from_bytes(content, max_bytes=self.max_image_bytes)

    async def analyze_and_save(self, image: CapturedImage, image_url: str) -> Discovery:
        """Analyse ``image`` and store the result as a new discovery.

        Raw ``bytes`` are validated and encoded first. No retry happens here;
        a failed analysis leaves nothing behind and the caller decides whether
        to try again.
        """

        if isinstance(image, (bytes, bytearray)):
            image = self.encode_image(bytes(image))
        analysis = await self.analysis_client.analyze(image)
        discovery = await self.repository.save(image_url, analysis)
        logger.info("Recorded discovery %s (%s)", discovery.id, discovery.classification.value)
        return discovery

    async def capture(self, image: CapturedImage, image_url: str) -> Union[Ok[Discovery], Err]:
        """Same as :meth:`analyze_and_save`, folding known failures into a result."""

        return await attempt(self.analyze_and_save(image, image_url))
