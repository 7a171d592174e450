"""Decides whether a candidate article belongs to a recent event."""

from __future__ import annotations

import logging
import uuid
from typing import Iterable, Literal

from .adapters import RawArticle
from .similarity import dice_similarity, normalize_title
from .store import EventRecord

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 0.65


class EventMatcher:
    """Fuzzy title match guarded by peril equality.

    ``strategy="first"`` takes the first event (in window order) scoring above
    the threshold; ``"best"`` scans the whole window and keeps the top score.
    """

    def __init__(self, threshold: float = MATCH_THRESHOLD, strategy: Literal["first", "best"] = "first"):
        self.threshold = threshold
        self.strategy = strategy

    def find(self, candidate: RawArticle, recent_events: Iterable[EventRecord]) -> EventRecord | None:
        title = normalize_title(candidate.title)
        if not title:
            return None
        best, best_score = None, self.threshold
        for ev in recent_events:
            if ev.peril != candidate.source_peril:
                continue
            score = dice_similarity(title, normalize_title(ev.canonical_title))
            if score <= self.threshold:
                continue
            if self.strategy == "first":
                logger.debug("[match] %r -> %s (%.3f)", candidate.title, ev.event_key, score)
                return ev
            if score > best_score:
                best, best_score = ev, score
        if best is not None:
            logger.debug("[match] %r -> %s (%.3f)", candidate.title, best.event_key, best_score)
        return best

    def match(self, candidate: RawArticle, recent_events: Iterable[EventRecord]) -> uuid.UUID | None:
        ev = self.find(candidate, recent_events)
        return ev.id if ev else None
