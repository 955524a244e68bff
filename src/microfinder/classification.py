"""Coerce model-supplied classification labels into the closed category set."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class Classification(str, Enum):
    """Biological categories a discovery may be filed under."""

    BACTERIA = "bacteria"
    VIRUS = "virus"
    FUNGI = "fungi"
    PROTOZOA = "protozoa"


DEFAULT_CLASSIFICATION = Classification.BACTERIA

_BY_VALUE = {member.value: member for member in Classification}


def normalize(raw: Any) -> Classification:
    """Return the category matching ``raw`` case-insensitively.

    Unrecognised labels never fail a save: they fall back to
    :data:`DEFAULT_CLASSIFICATION` and leave a warning in the log.
    """

    if isinstance(raw, Classification):
        return raw
    if isinstance(raw, str):
        match = _BY_VALUE.get(raw.lower())
        if match is not None:
            return match
    logger.warning(
        "Invalid classification %r, defaulting to %s", raw, DEFAULT_CLASSIFICATION.value
    )
    return DEFAULT_CLASSIFICATION
