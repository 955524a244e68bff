"""Vision model backends used by the analysis client."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx
from openai import (
    APIConnectionError,
    APIError,
    APIResponseValidationError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
)

from microfinder.config import AppSettings
from microfinder.errors import (
    AnalysisMalformedResponseError,
    AnalysisServiceError,
    AnalysisTimeoutError,
    AnalysisTransportError,
)
from microfinder.models.image import ImagePayload

logger = logging.getLogger(__name__)


class VisionModel(ABC):
    """Interface for a multimodal model that answers a prompt about one image."""

    provider: str
    model: str

    @abstractmethod
    async def generate(self, *, prompt: str, image: ImagePayload, timeout: float) -> str:  # pragma: no cover - interface
        """Return the model's raw text answer for ``prompt`` and ``image``."""

    async def aclose(self) -> None:
        """Release network resources held by the backend."""


@dataclass(slots=True)
class GeminiVisionModel(VisionModel):
    """Backend for the Gemini ``generateContent`` REST endpoint."""

    api_key: str
    model: str = "gemini-2.0-flash"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    http_client: httpx.AsyncClient | None = None
    provider: str = field(default="gemini", init=False)
    _owns_client: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.api_key:
            raise ValueError("Gemini API key is not configured")
        if self.http_client is None:
            self.http_client = httpx.AsyncClient()
            self._owns_client = True

    async def generate(self, *, prompt: str, image: ImagePayload, timeout: float) -> str:
        url = f"{self.base_url.rstrip('/')}/models/{self.model}:generateContent"
        body = {
            "contents": [
                {
                    "parts": [
                        {"text": prompt},
                        {"inline_data": {"mime_type": image.mime_type, "data": image.data}},
                    ]
                }
            ]
        }
        try:
            response = await self.http_client.post(
                url,
                params={"key": self.api_key},
                json=body,
                timeout=timeout,
            )
        except httpx.TimeoutException as exc:
            raise AnalysisTimeoutError() from exc
        except httpx.DecodingError as exc:
            raise AnalysisMalformedResponseError() from exc
        except httpx.RequestError as exc:
            logger.warning("Gemini request failed for model=%s", self.model, exc_info=True)
            raise AnalysisTransportError() from exc

        if not response.is_success:
            raise AnalysisServiceError(_error_detail(response), status_code=response.status_code)

        try:
            data = response.json()
        except (ValueError, RecursionError) as exc:
            raise AnalysisMalformedResponseError() from exc

        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise AnalysisMalformedResponseError() from exc
        if not isinstance(text, str) or not text:
            raise AnalysisMalformedResponseError()
        return text

    async def aclose(self) -> None:
        if self._owns_client and self.http_client is not None:
            await self.http_client.aclose()


@dataclass(slots=True)
class OpenAIVisionModel(VisionModel):
    """Backend for OpenAI chat completions with an inline image."""

    api_key: str
    model: str = "gpt-4o-mini"
    client: Any = None
    provider: str = field(default="openai", init=False)

    def __post_init__(self) -> None:
        if not self.api_key:
            raise ValueError("OpenAI API key is not configured")
        if self.client is None:
            # Retries belong to the caller; one attempt per analysis.
            self.client = AsyncOpenAI(api_key=self.api_key, max_retries=0)

    async def generate(self, *, prompt: str, image: ImagePayload, timeout: float) -> str:
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": image.data_url()}},
                ],
            }
        ]
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                timeout=timeout,
            )
        except APITimeoutError as exc:
            raise AnalysisTimeoutError() from exc
        except APIConnectionError as exc:
            logger.warning("OpenAI request failed for model=%s", self.model, exc_info=True)
            raise AnalysisTransportError() from exc
        except APIStatusError as exc:
            raise AnalysisServiceError(exc.message, status_code=exc.status_code) from exc
        except APIResponseValidationError as exc:
            raise AnalysisMalformedResponseError() from exc
        except APIError as exc:
            logger.warning("OpenAI request failed for model=%s", self.model, exc_info=True)
            raise AnalysisServiceError(exc.message) from exc

        try:
            text = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as exc:
            raise AnalysisMalformedResponseError() from exc
        if not isinstance(text, str) or not text:
            raise AnalysisMalformedResponseError()
        return text

    async def aclose(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()


def build_vision_model(settings: AppSettings, *, http_client: httpx.AsyncClient | None = None) -> VisionModel:
    """Instantiate the backend selected by ``settings.vision_provider``."""

    if settings.vision_provider == "openai":
        return OpenAIVisionModel(api_key=settings.openai_api_key or "", model=settings.openai_model)
    return GeminiVisionModel(
        api_key=settings.gemini_api_key or "",
        model=settings.gemini_model,
        base_url=settings.gemini_base_url,
        http_client=http_client,
    )


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return response.reason_phrase or f"HTTP {response.status_code}"
