"""Scheduling of weather reminders and handling of due clocks."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Any, Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import Clock, User
from .queue import repeat_interval
from .weather import Forecast, weather_title

logger = logging.getLogger(__name__)

SHANGHAI = timezone(timedelta(hours=8), "CST")
EVENING_TIP = time(22, 0)
MORNING_TIP = time(7, 0)

Publish = Callable[[int, timedelta], Any]


def _localize(moment: datetime, tz: tzinfo = SHANGHAI) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=tz)
    return moment.astimezone(tz)


def weather_tip_times(now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """Return tonight at 22:00 and tomorrow at 07:00, Beijing time."""
    local = _localize(now or datetime.now(SHANGHAI))
    today = local.date()
    evening = datetime.combine(today, EVENING_TIP, tzinfo=SHANGHAI)
    morning = datetime.combine(today + timedelta(days=1), MORNING_TIP, tzinfo=SHANGHAI)
    return evening, morning


def schedule_weather_clocks(
    session: Session,
    template: Any,
    publish: Publish,
    now: Optional[datetime] = None,
) -> list[Clock]:
    """Create this evening's and tomorrow morning's reminder and queue both."""
    local_now = _localize(now or datetime.now(SHANGHAI))
    created = []
    for prefix, when in zip(("明天", "今天"), weather_tip_times(local_now)):
        clock = Clock(
            tip_time=when.replace(tzinfo=None),
            describe=template.describe,
            tip_image=template.tip_image,
            openid=template.openid,
            title=prefix + template.title,
            reminder_type=0,
            type=1,
        )
        session.add(clock)
        session.commit()
        delay = when - local_now
        publish(clock.id, delay)
        logger.info("openid %s title %s expires in %s", clock.openid, clock.title, delay)
        created.append(clock)
    return created


def nightly_weather_job(
    session_factory: Callable[[], Session],
    forecast: Callable[[], Forecast],
    publish: Publish,
    now: Optional[datetime] = None,
) -> list[Clock]:
    """Warn every user about tomorrow's weather when it calls for it."""
    logger.info("fetching weather information")
    days = forecast().days
    logger.info("forecast holds %d days", len(days))
    if len(days) < 2:
        return []
    tomorrow = days[1]
    title = weather_title(tomorrow.cloud)
    if not title:
        return []
    created: list[Clock] = []
    with session_factory() as session:
        openids = [user.mini_openid for user in session.scalars(select(User)).all()]
        for openid in openids:
            template = _ClockTemplate(
                title=title,
                describe=tomorrow.date + tomorrow.cloud,
                tip_image=tomorrow.image,
                openid=openid,
            )
            created.extend(schedule_weather_clocks(session, template, publish, now))
        for clock in created:
            session.refresh(clock)
        session.expunge_all()
    return created


@dataclass
class _ClockTemplate:
    title: str
    describe: str
    tip_image: str
    openid: str


def reschedule(session: Session, clock: Clock, publish: Publish) -> Optional[timedelta]:
    """Queue the next run of a repeating clock and mark this run as notified."""
    delay = None
    if clock.reminder_type != 0 and clock.is_circle == 1:
        delay = repeat_interval(clock.reminder_type)
        publish(clock.id, delay)
        logger.info("queued next repetition of clock %s in %s", clock.id, delay)
    clock.is_tip = 1
    session.add(clock)
    session.commit()
    return delay


def handle_due_clock(
    session_factory: Callable[[], Session],
    clock_id: int,
    notify: Callable[[Clock], Any],
    publish: Publish,
) -> Optional[Clock]:
    """Notify the owner of a due clock, mark it and queue its next repetition."""
    with session_factory() as session:
        clock = session.get(Clock, clock_id)
        if clock is None:
            logger.warning("due clock %s does not exist", clock_id)
            return None
        notify(clock)
        clock.is_tip = 1
        session.commit()
        reschedule(session, clock, publish)
        session.refresh(clock)
        session.expunge(clock)
        return clock


@dataclass
class DailySchedule:
    """Runs a job once a day at a fixed wall-clock time."""

    hour: int = 20
    minute: int = 0
    tz: tzinfo = field(default=SHANGHAI)

    def __post_init__(self) -> None:
        if not 0 <= self.hour < 24 or not 0 <= self.minute < 60:
            raise ValueError(f"invalid time of day {self.hour}:{self.minute}")

    def next_run(self, after: Optional[datetime] = None) -> datetime:
        """First run strictly later than ``after``."""
        local = _localize(after or datetime.now(self.tz), self.tz)
        candidate = local.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if candidate <= local:
            candidate += timedelta(days=1)
        return candidate

    def run_forever(self, job: Callable[[], Any], stop: Any = None) -> None:
        """Run ``job`` at every scheduled time until ``stop`` is set."""
        stop = stop if stop is not None else threading.Event()
        while not stop.is_set():
            now = datetime.now(self.tz)
            if stop.wait((self.next_run(now) - now).total_seconds()):
                break
            try:
                job()
            except Exception:
                logger.exception("scheduled job failed")