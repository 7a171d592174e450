"""Keyword heuristic mapping free text to a hazard category."""

from enum import Enum


class Peril(str, Enum):
    EARTHQUAKE = "Earthquake"
    STORM = "Storm"
    FLOOD = "Flood"
    WILDFIRE = "Wildfire"
    CYBER = "Cyber"
    OTHER = "Other"


# order matters: first hit wins ("fire" must not shadow "flood")
PERIL_KEYWORDS = [
    (("quake", "seismic"), Peril.EARTHQUAKE),
    (("hurricane", "cyclone"), Peril.STORM),
    (("flood",), Peril.FLOOD),
    (("fire",), Peril.WILDFIRE),
    (("cyber",), Peril.CYBER),
]


def classify(text: str | None) -> Peril:
    t = (text or "").lower()
    for keys, peril in PERIL_KEYWORDS:
        if any(k in t for k in keys):
            return peril
    return Peril.OTHER


__all__ = ["Peril", "PERIL_KEYWORDS", "classify"]
