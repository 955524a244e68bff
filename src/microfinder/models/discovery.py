"""Pydantic models describing vision analyses and persisted discoveries."""
from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Dict, List, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from microfinder.classification import DEFAULT_CLASSIFICATION, Classification, normalize

UNKNOWN_ORGANISM = "Unknown Microorganism"
UNKNOWN_CLASSIFICATION = "Unknown"
DEFAULT_CONFIDENCE = 0.5
NO_DESCRIPTION = "No description available"


def _text_or(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value
    return default


def _confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_CONFIDENCE
    if math.isnan(value):
        return DEFAULT_CONFIDENCE
    return min(max(float(value), 0.0), 1.0)


def _characteristics(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [item if isinstance(item, str) else str(item) for item in value if item is not None]


class MicrobeAnalysis(BaseModel):
    """Structured guess returned by the vision model for one image."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    microbe_name: str = Field(default=UNKNOWN_ORGANISM, alias="microbeName")
    classification: str = Field(
        default=UNKNOWN_CLASSIFICATION,
        description="Label exactly as the model reported it, before normalization.",
    )
    confidence: float = Field(default=DEFAULT_CONFIDENCE, ge=0.0, le=1.0)
    characteristics: List[str] = Field(default_factory=list)
    description: str = NO_DESCRIPTION
    raw: Dict[str, Any] = Field(
        default_factory=dict,
        exclude=True,
        description="Parsed model output retained verbatim.",
    )

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "MicrobeAnalysis":
        """Build an analysis from untrusted model output, defaulting every field."""

        return cls(
            microbe_name=_text_or(payload.get("microbeName"), UNKNOWN_ORGANISM),
            classification=_text_or(payload.get("classification"), UNKNOWN_CLASSIFICATION),
            confidence=_confidence(payload.get("confidence")),
            characteristics=_characteristics(payload.get("characteristics")),
            description=_text_or(payload.get("description"), NO_DESCRIPTION),
            raw=dict(payload),
        )

    def raw_payload(self) -> Dict[str, Any]:
        """Return the verbatim model output, or the wire form when none was kept."""

        if self.raw:
            return dict(self.raw)
        return self.model_dump(mode="json", by_alias=True)


class Discovery(BaseModel):
    """Persisted record of one identified microscope sample.

    Stored rows are coerced on the way in: a missing or out-of-range score
    becomes a valid confidence and unknown labels fall back to bacteria.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    image_url: str
    microbe_name: str = UNKNOWN_ORGANISM
    classification: Classification = DEFAULT_CLASSIFICATION
    confidence_score: float = Field(default=DEFAULT_CONFIDENCE, ge=0.0, le=1.0)
    characteristics: List[str] = Field(default_factory=list)
    analysis_results: str = ""
    raw_analysis: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime | None = None

    @field_validator("microbe_name", mode="before")
    @classmethod
    def _coerce_microbe_name(cls, value: Any) -> str:
        return _text_or(value, UNKNOWN_ORGANISM)

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _coerce_confidence_score(cls, value: Any) -> float:
        return _confidence(value)

    @field_validator("analysis_results", mode="before")
    @classmethod
    def _coerce_analysis_results(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""

    @field_validator("classification", mode="before")
    @classmethod
    def _normalize_classification(cls, value: Any) -> Classification:
        return normalize(value)

    @field_validator("characteristics", mode="before")
    @classmethod
    def _coerce_characteristics(cls, value: Any) -> List[str]:
        return _characteristics(value)

    @field_validator("raw_analysis", mode="before")
    @classmethod
    def _coerce_raw_analysis(cls, value: Any) -> Dict[str, Any]:
        return dict(value) if isinstance(value, Mapping) else {}
