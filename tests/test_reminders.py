from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from clockserve.models import Clock, User, register_tables
from clockserve.reminders import (
    SHANGHAI,
    DailySchedule,
    handle_due_clock,
    nightly_weather_job,
    reschedule,
    schedule_weather_clocks,
    weather_tip_times,
)
from clockserve.weather import DayForecast, Forecast, weather_title

NOW = datetime(2024, 1, 16, 10, 0, tzinfo=SHANGHAI)


@pytest.fixture
def factory():
    engine = create_engine("sqlite://")
    register_tables(engine)
    return sessionmaker(engine)


class Recorder:
    def __init__(self):
        self.calls = []

    def __call__(self, *args):
        self.calls.append(args)


def test_tip_times_same_day():
    evening, morning = weather_tip_times(NOW)
    assert evening == datetime(2024, 1, 16, 22, 0, tzinfo=SHANGHAI)
    assert morning == datetime(2024, 1, 17, 7, 0, tzinfo=SHANGHAI)


def test_tip_times_cross_month():
    _, morning = weather_tip_times(datetime(2024, 1, 31, 23, 30, tzinfo=SHANGHAI))
    assert morning.date() == datetime(2024, 2, 1).date()


def test_tip_times_convert_from_utc():
    evening, _ = weather_tip_times(datetime(2024, 1, 16, 20, 0, tzinfo=timezone.utc))
    assert evening.date() == datetime(2024, 1, 17).date()


def test_schedule_creates_two_clocks(factory):
    publish = Recorder()
    template = Clock(title="有雨", describe="周三小雨", tip_image="img", openid="user-1")
    with factory() as session:
        clocks = schedule_weather_clocks(session, template, publish, NOW)
        titles = [clock.title for clock in clocks]
        ids = [clock.id for clock in clocks]
        times = [clock.tip_time for clock in clocks]
        assert all(clock.type == 1 and clock.openid == "user-1" for clock in clocks)
    evening, morning = weather_tip_times(NOW)
    assert titles == ["明天有雨", "今天有雨"]
    assert times == [evening.replace(tzinfo=None), morning.replace(tzinfo=None)]
    assert publish.calls == [(ids[0], evening - NOW), (ids[1], morning - NOW)]
    with factory() as session:
        assert len(session.scalars(select(Clock)).all()) == 2


def _forecast(cloud):
    return lambda: Forecast(
        days=[
            DayForecast(date="周二", cloud="晴"),
            DayForecast(date="周三", cloud=cloud, image="img"),
        ]
    )


def test_nightly_job_warns_every_user(factory):
    with factory() as session:
        session.add_all([User(mini_openid="a"), User(mini_openid="b")])
        session.commit()
    publish = Recorder()
    cloud = "小雨3~8℃"
    created = nightly_weather_job(factory, _forecast(cloud), publish, NOW)
    title = weather_title(cloud)
    assert len(created) == 4
    assert {clock.openid for clock in created} == {"a", "b"}
    assert {clock.title for clock in created} == {"明天" + title, "今天" + title}
    assert all(clock.describe == "周三小雨3~8℃" for clock in created)
    assert all(clock.tip_image == "img" for clock in created)
    assert len(publish.calls) == 4


def test_nightly_job_quiet_weather(factory):
    with factory() as session:
        session.add(User(mini_openid="a"))
        session.commit()
    publish = Recorder()
    assert nightly_weather_job(factory, _forecast("晴5~10℃"), publish, NOW) == []
    assert publish.calls == []


def test_nightly_job_short_forecast(factory):
    publish = Recorder()
    result = nightly_weather_job(factory, lambda: Forecast(days=[DayForecast(cloud="雨")]), publish, NOW)
    assert result == []
    assert publish.calls == []


def test_reschedule_repeating(factory):
    publish = Recorder()
    with factory() as session:
        clock = Clock(title="t", reminder_type=1, is_circle=1)
        session.add(clock)
        session.commit()
        delay = reschedule(session, clock, publish)
        assert publish.calls == [(clock.id, timedelta(days=1))]
        assert delay == timedelta(days=1)
        assert clock.is_tip == 1


def test_reschedule_one_shot(factory):
    publish = Recorder()
    with factory() as session:
        clock = Clock(title="t", reminder_type=0)
        session.add(clock)
        session.commit()
        assert reschedule(session, clock, publish) is None
        assert publish.calls == []
        assert clock.is_tip == 1


def test_reschedule_stopped_circle(factory):
    publish = Recorder()
    with factory() as session:
        clock = Clock(title="t", reminder_type=2, is_circle=0)
        session.add(clock)
        session.commit()
        assert reschedule(session, clock, publish) is None
        assert publish.calls == []


def test_handle_due_clock(factory):
    with factory() as session:
        clock = Clock(title="t", reminder_type=2, is_circle=1)
        session.add(clock)
        session.commit()
        clock_id = clock.id
    notified = Recorder()
    publish = Recorder()
    result = handle_due_clock(factory, clock_id, notified, publish)
    assert result.id == clock_id
    assert result.is_tip == 1
    assert len(notified.calls) == 1
    assert publish.calls == [(clock_id, timedelta(days=7))]
    with factory() as session:
        assert session.get(Clock, clock_id).is_tip == 1


def test_handle_missing_clock(factory):
    notified = Recorder()
    assert handle_due_clock(factory, 99, notified, Recorder()) is None
    assert notified.calls == []


def test_next_run_later_today():
    schedule = DailySchedule()
    after = datetime(2024, 1, 16, 19, 0, tzinfo=SHANGHAI)
    assert schedule.next_run(after) == after.replace(hour=20)


def test_next_run_tomorrow():
    schedule = DailySchedule()
    after = datetime(2024, 1, 16, 20, 0, tzinfo=SHANGHAI)
    assert schedule.next_run(after) == after + timedelta(days=1)


def test_next_run_is_in_future_and_within_a_day():
    schedule = DailySchedule(hour=7, minute=30)
    after = datetime(2024, 3, 1, 7, 30, 1, tzinfo=timezone.utc)
    run = schedule.next_run(after)
    assert after < run <= after + timedelta(days=1)
    assert (run.hour, run.minute) == (7, 30)


def test_invalid_schedule():
    with pytest.raises(ValueError):
        DailySchedule(hour=24)


class _Stop:
    def __init__(self):
        self.waits = []

    def is_set(self):
        return len(self.waits) >= 2

    def wait(self, timeout):
        self.waits.append(timeout)
        return len(self.waits) >= 2


def test_run_forever_runs_job_between_waits():
    stop = _Stop()
    calls = []
    DailySchedule().run_forever(lambda: calls.append(1), stop)
    assert calls == [1]
    assert 0 < stop.waits[0] <= 86400


def test_run_forever_survives_failing_job():
    stop = _Stop()
    calls = []

    def job():
        calls.append(1)
        raise RuntimeError("boom")

    DailySchedule().run_forever(job, stop)
    assert calls == [1]
    assert len(stop.waits) == 2