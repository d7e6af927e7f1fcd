from datetime import datetime

import pytest
from sqlalchemy import create_engine, inspect, select
from sqlalchemy.orm import Session

from clockserve.models import (
    Card,
    Clock,
    Goods,
    RequestLog,
    Setting,
    Tip,
    User,
    register_tables,
)


@pytest.fixture()
def engine():
    engine = create_engine("sqlite://")
    register_tables(engine)
    return engine


def test_register_tables_creates_all(engine):
    names = set(inspect(engine).get_table_names())
    assert names == {"cards", "clocks", "goods", "request_logs", "settings", "tips", "users"}


def test_register_tables_is_idempotent(engine):
    register_tables(engine)
    assert len(inspect(engine).get_table_names()) == 7


def test_clock_defaults_on_construction():
    clock = Clock(title="t")
    assert clock.is_circle == 1
    assert clock.is_tip == 0
    assert clock.reminder_type == 0
    assert clock.type == 0
    assert clock.openid == ""


def test_setting_default_area():
    assert Setting().area == "合肥"


def test_explicit_value_overrides_default():
    assert Clock(is_circle=0).is_circle == 0


def test_unknown_keyword_rejected():
    with pytest.raises(TypeError):
        Goods(colour="red")


def test_user_round_trip(engine):
    with Session(engine) as session:
        session.add(User(mini_openid="oid-1", nick_name="nick", email="user@example.com"))
        session.commit()
    with Session(engine) as session:
        user = session.scalars(select(User).where(User.mini_openid == "oid-1")).one()
        data = user.to_dict()
    assert data["openid"] == "oid-1"
    assert data["nickName"] == "nick"
    assert data["email"] == "user@example.com"
    assert data["id"] >= 1
    assert data["CreatedAt"] is not None


def test_ids_increase(engine):
    with Session(engine) as session:
        first, second = Card(openid="a"), Card(openid="a")
        session.add_all([first, second])
        session.flush()
        assert second.id > first.id


def test_clock_to_dict_keys_and_values():
    when = datetime(2024, 1, 16, 22, 0, 0)
    clock = Clock(title="title", describe="desc", tip_time=when, reminder_type=2)
    data = clock.to_dict()
    assert set(data) == {
        "id", "CreatedAt", "UpdatedAt", "title", "des", "tipTime", "openid",
        "tipImage", "isTip", "type", "isCircle", "reminderType",
    }
    assert data["des"] == "desc"
    assert datetime.fromisoformat(data["tipTime"]) == when
    assert data["reminderType"] == 2
    assert data["id"] == 0


def test_goods_and_card_json_names():
    goods = Goods(name="n", remark="r", url="u", num=3).to_dict()
    assert (goods["remarks"], goods["imageUrl"], goods["num"]) == ("r", "u", 3)
    card = Card(card_image="img", max_card_num=4).to_dict()
    assert (card["cardImage"], card["maxCardNum"]) == ("img", 4)


def test_request_log_and_tip_persist(engine):
    with Session(engine) as session:
        session.add_all([RequestLog(request_path="/api/x", sub_time=1500), Tip(name="tip")])
        session.commit()
        log = session.scalars(select(RequestLog)).one()
        tip = session.scalars(select(Tip)).one()
        assert log.sub_time == 1500
        assert log.request_path == "/api/x"
        assert tip.is_tip == 0


def test_updated_at_changes_on_update(engine):
    with Session(engine) as session:
        setting = Setting(describe="a")
        session.add(setting)
        session.commit()
        before = setting.updated_at
        setting.describe = "b"
        session.commit()
        assert setting.updated_at >= before
        assert setting.describe == "b"