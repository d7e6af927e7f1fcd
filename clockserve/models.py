"""Database tables of the service."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import BigInteger, DateTime, Integer, String
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

_CST = timezone(timedelta(hours=8))
_ID = BigInteger().with_variant(Integer, "sqlite")


def _now() -> datetime:
    """Current wall-clock time in China Standard Time, without tzinfo."""
    return datetime.now(_CST).replace(tzinfo=None)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _text(length: int, comment: str) -> Any:
    return mapped_column(String(length), default="", comment=comment)


class Base(DeclarativeBase):
    """Declarative base; scalar column defaults are applied on construction."""

    def __init__(self, **kwargs: Any) -> None:
        cls = type(self)
        for column in self.__table__.columns:
            default = column.default
            if column.key not in kwargs and default is not None and default.is_scalar:
                kwargs[column.key] = default.arg
        for key, value in kwargs.items():
            if not hasattr(cls, key):
                raise TypeError(f"{key!r} is an invalid keyword argument for {cls.__name__}")
            setattr(self, key, value)


class _Model(Base):
    __abstract__ = True

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=_now)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=_now, onupdate=_now)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, index=True, nullable=True)

    def _base_dict(self) -> dict[str, Any]:
        return {
            "id": self.id or 0,
            "CreatedAt": _iso(self.created_at),
            "UpdatedAt": _iso(self.updated_at),
        }


class Card(_Model):
    """A check-in record."""

    __tablename__ = "cards"

    lat: Mapped[str] = _text(100, "latitude")
    lon: Mapped[str] = _text(100, "longitude")
    describe: Mapped[str] = _text(100, "description")
    openid: Mapped[str] = _text(100, "mini program openid")
    card_image: Mapped[str] = _text(100, "check-in image")
    max_card_num: Mapped[int] = mapped_column(BigInteger, default=0, comment="longest check-in streak")

    def to_dict(self) -> dict[str, Any]:
        return {
            **self._base_dict(),
            "lat": self.lat,
            "lon": self.lon,
            "describe": self.describe,
            "openid": self.openid,
            "cardImage": self.card_image,
            "maxCardNum": self.max_card_num,
        }


class Clock(_Model):
    """A reminder that fires at ``tip_time``."""

    __tablename__ = "clocks"

    title: Mapped[str] = _text(100, "title")
    describe: Mapped[str] = _text(100, "description")
    tip_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, comment="alarm time")
    openid: Mapped[str] = _text(100, "mini program openid")
    tip_image: Mapped[str] = _text(100, "alarm image")
    is_tip: Mapped[int] = mapped_column(Integer, default=0, comment="1 when already notified")
    type: Mapped[int] = mapped_column(Integer, default=0, comment="1 for weather")
    is_circle: Mapped[int] = mapped_column(Integer, default=1, comment="1 repeating, 0 stopped")
    reminder_type: Mapped[int] = mapped_column(
        Integer, default=0, comment="0 once, 1 daily, 2 weekly, 3 monthly, 4 yearly"
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            **self._base_dict(),
            "title": self.title,
            "des": self.describe,
            "tipTime": _iso(self.tip_time),
            "openid": self.openid,
            "tipImage": self.tip_image,
            "isTip": self.is_tip,
            "type": self.type,
            "isCircle": self.is_circle,
            "reminderType": self.reminder_type,
        }


class Goods(_Model):
    """An inventory item."""

    __tablename__ = "goods"

    name: Mapped[str] = _text(100, "name")
    remark: Mapped[str] = _text(100, "remark")
    url: Mapped[str] = _text(100, "image url")
    num: Mapped[int] = mapped_column(Integer, default=0, comment="quantity")
    openid: Mapped[str] = _text(100, "mini program openid")

    def to_dict(self) -> dict[str, Any]:
        return {
            **self._base_dict(),
            "name": self.name,
            "remarks": self.remark,
            "imageUrl": self.url,
            "num": self.num,
            "openid": self.openid,
        }


class RequestLog(_Model):
    """One handled HTTP request."""

    __tablename__ = "request_logs"

    request_method: Mapped[str] = _text(100, "request method")
    request_param: Mapped[str] = _text(200, "request parameters")
    start_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, comment="start time")
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, comment="end time")
    user_id: Mapped[int] = mapped_column(Integer, default=0, comment="user id")
    openid: Mapped[str] = _text(100, "mini program openid")
    handler: Mapped[str] = _text(100, "handler")
    request_path: Mapped[str] = _text(100, "request path")
    sub_time: Mapped[int] = mapped_column(BigInteger, default=0, comment="duration in nanoseconds")


class Setting(_Model):
    """Per-user settings such as the splash screen and home area."""

    __tablename__ = "settings"

    describe: Mapped[str] = _text(100, "description")
    image_url: Mapped[str] = _text(100, "image")
    type: Mapped[int] = mapped_column(BigInteger, default=0, comment="1 splash screen")
    openid: Mapped[str] = _text(100, "mini program openid")
    area: Mapped[str] = mapped_column(String(100), default="合肥", comment="area")

    def to_dict(self) -> dict[str, Any]:
        return {
            **self._base_dict(),
            "describe": self.describe,
            "imageUrl": self.image_url,
            "type": self.type,
            "openid": self.openid,
            "area": self.area,
        }


class Tip(_Model):
    """A reminder item."""

    __tablename__ = "tips"

    name: Mapped[str] = _text(100, "name")
    remark: Mapped[str] = _text(100, "remark")
    url: Mapped[str] = _text(100, "image url")
    num: Mapped[int] = mapped_column(Integer, default=0, comment="quantity")
    is_tip: Mapped[int] = mapped_column(Integer, default=0, comment="1 when already notified")


class User(_Model):
    """A mini program user."""

    __tablename__ = "users"

    nick_name: Mapped[str] = _text(100, "name")
    avatar_url: Mapped[str] = _text(200, "avatar")
    mini_openid: Mapped[str] = _text(100, "mini program openid")
    email: Mapped[str] = _text(100, "e-mail")

    def to_dict(self) -> dict[str, Any]:
        return {
            **self._base_dict(),
            "nickName": self.nick_name,
            "avatarUrl": self.avatar_url,
            "openid": self.mini_openid,
            "email": self.email,
        }


def register_tables(engine: Engine) -> None:
    """Create every table that does not exist yet."""
    Base.metadata.create_all(engine)