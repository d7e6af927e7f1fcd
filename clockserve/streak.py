"""Consecutive check-in tracking kept in Redis bitmaps."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import Card

logger = logging.getLogger(__name__)

COUNTER_SUFFIX = "_continuous_count"
STREAK_LENGTH = 7


def day_offset(day: date) -> int:
    """Bit offset of a day in a user's check-in bitmap (its ``YYYYMMDD`` number)."""
    return int(day.strftime("%Y%m%d"))


def streak_message(count: int, maximum: int) -> str:
    """Text telling the current and the longest check-in streak."""
    return f"当前连续打卡{count} 次历史最多连续打卡{maximum}次"


class CheckinTracker:
    """Records daily check-ins and keeps the consecutive-day counter."""

    def __init__(self, redis_client: Any) -> None:
        self.redis = redis_client

    @staticmethod
    def _counter(openid: str) -> str:
        return openid + COUNTER_SUFFIX

    def record(self, openid: str, day: date) -> None:
        """Mark ``day`` as checked in for ``openid``."""
        self.redis.setbit(openid, day_offset(day), 1)

    def update_streak(self, openid: str, today: date) -> int:
        """Advance or restart the streak counter and return the current streak.

        After a streak of seven days the counter and the last seven days of
        the bitmap are cleared.
        """
        yesterday = today - timedelta(days=1)
        today_bit = int(self.redis.getbit(openid, day_offset(today)))
        yesterday_bit = int(self.redis.getbit(openid, day_offset(yesterday)))
        counter = self._counter(openid)

        if today_bit and yesterday_bit:
            count = int(self.redis.incr(counter))
        else:
            count = 1 if today_bit and not yesterday_bit else 0
            # A broken run always restarts the stored counter.
            self.redis.set(counter, 0)
        logger.debug("streak of %s: today=%s yesterday=%s count=%s", openid, today_bit, yesterday_bit, count)

        if count >= STREAK_LENGTH:
            self.redis.set(counter, 0)
            for back in range(STREAK_LENGTH):
                self.redis.setbit(openid, day_offset(today - timedelta(days=back)), 0)
        return count

    def summary(self, session: Session, openid: str, today: Optional[date] = None) -> str:
        """Update the streak, keep the longest streak on the user's card, and describe both."""
        today = today or date.today()
        count = self.update_streak(openid, today)
        card = session.scalars(
            select(Card)
            .where(Card.openid == openid)
            .order_by(Card.max_card_num.desc(), Card.id)
            .limit(1)
        ).first()
        maximum = card.max_card_num if card is not None else 0
        if maximum < count:
            if card is None:
                card = Card(openid=openid)
                session.add(card)
            card.max_card_num = count
            maximum = count
            session.commit()
        return streak_message(count, maximum)