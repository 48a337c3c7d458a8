"""SM-2 spaced-repetition scheduling.

Pure functions over Flashcard values; nothing here performs I/O or persists
state. Quality is on the 0–3 scale of ReviewQuality and is fed into the
SM-2 ease formula as-is, so every caller must use that scale.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from sailcontent.models.flashcard import Flashcard, ReviewQuality, ReviewStats

if TYPE_CHECKING:
    from collections.abc import Iterable

log = structlog.get_logger()

MIN_EASE_FACTOR = 1.3
MASTERED_REPETITIONS = 3


def _now() -> datetime:
    return datetime.now().astimezone()


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def next_ease_factor(current: float, quality: int) -> float:
    """EF' = EF + (0.1 − (5−q)·(0.08 + (5−q)·0.02)), floored at 1.3."""
    penalty = 5 - quality
    return max(current + (0.1 - penalty * (0.08 + penalty * 0.02)), MIN_EASE_FACTOR)


def review(card: Flashcard, quality: int, *, now: datetime | None = None) -> Flashcard:
    """Return a copy of ``card`` rescheduled after a review of ``quality``.

    Again/Hard (q < 2) resets progress to a one-day interval. Good/Easy
    advance the repetition count: 1 day, then 6 days, then the previous
    interval times the new ease factor. ``next_review`` is the start of
    the review day plus the interval, so the time of day never matters.
    """
    q = ReviewQuality(quality)  # raises ValueError outside 0..3
    now = now or _now()

    ease_factor = next_ease_factor(card.ease_factor, q)
    if q < ReviewQuality.GOOD:
        repetitions, interval = 0, 1
    else:
        repetitions = card.repetitions + 1
        if repetitions == 1:
            interval = 1
        elif repetitions == 2:
            interval = 6
        else:
            interval = max(round(card.interval * ease_factor), 1)

    updated = card.model_copy(
        update={
            "ease_factor": ease_factor,
            "repetitions": repetitions,
            "interval": interval,
            "last_reviewed": now,
            "next_review": start_of_day(now) + timedelta(days=interval),
            "last_quality": int(q),
        }
    )
    log.debug(
        "card_reviewed",
        card_id=str(card.id),
        quality=int(q),
        interval=interval,
        ease_factor=round(ease_factor, 3),
    )
    return updated


def due_cards(cards: Iterable[Flashcard], *, now: datetime | None = None) -> list[Flashcard]:
    """Cards whose ``next_review`` has passed, plus every new card."""
    now = now or _now()
    return [card for card in cards if card.is_due(now)]


def cards_due_today(
    cards: Iterable[Flashcard], *, now: datetime | None = None
) -> list[Flashcard]:
    """Cards scheduled for today or earlier, compared at day granularity."""
    now = now or _now()
    today = start_of_day(now)
    due: list[Flashcard] = []
    for card in cards:
        if card.next_review is None:
            due.append(card)
            continue
        review_at = card.next_review
        if review_at.tzinfo is not None and now.tzinfo is not None:
            review_at = review_at.astimezone(now.tzinfo)
        if start_of_day(review_at).replace(tzinfo=today.tzinfo) <= today:
            due.append(card)
    return due


def review_stats(cards: Iterable[Flashcard], *, now: datetime | None = None) -> ReviewStats:
    now = now or _now()
    cards = list(cards)
    return ReviewStats(
        total=len(cards),
        due=len(cards_due_today(cards, now=now)),
        new=sum(1 for c in cards if c.repetitions == 0),
        learning=sum(1 for c in cards if 0 < c.repetitions < MASTERED_REPETITIONS),
        mastered=sum(
            1 for c in cards if c.repetitions >= MASTERED_REPETITIONS and not c.is_due(now)
        ),
    )
