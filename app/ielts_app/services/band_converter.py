"""Conversion of raw scores into IELTS band scores."""
from __future__ import annotations

import math
from typing import Tuple

from .errors import InvalidInput

MIN_BAND = 1.0
MAX_BAND = 9.0

# (minimum percentage, band), highest first. Round bands with a 3.0 floor;
# the half-band variant (6.5 at 60%, floor 4.0) is intentionally not used.
BAND_TABLE: Tuple[Tuple[float, float], ...] = (
    (90.0, 9.0),
    (80.0, 8.0),
    (70.0, 7.0),
    (60.0, 6.0),
    (50.0, 5.0),
    (40.0, 4.0),
)
FLOOR_BAND = 3.0


def percentage_to_band(percentage: float) -> float:
    for threshold, band in BAND_TABLE:
        if percentage >= threshold:
            return band
    return FLOOR_BAND


def band_for_score(score: int, total: int) -> float:
    """Map ``score`` correct answers out of ``total`` to a band score.

    Raises:
        InvalidInput: if ``total`` is not a positive integer.
    """
    if isinstance(total, bool) or not isinstance(total, int) or total <= 0:
        raise InvalidInput(f'total questions must be a positive integer, got {total!r}')
    if isinstance(score, bool) or not isinstance(score, int):
        raise InvalidInput(f'score must be an integer, got {score!r}')
    return percentage_to_band(100.0 * score / total)


def round_to_half_band(value: float) -> float:
    return math.floor(value * 2 + 0.5) / 2


def clamp_band(value: float) -> float:
    """Clamp a provider-reported score into [1.0, 9.0] on the half-band grid."""
    return min(MAX_BAND, max(MIN_BAND, round_to_half_band(value)))
