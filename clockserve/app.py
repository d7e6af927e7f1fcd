"""HTTP API of the mini program back end."""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Any, Callable, Mapping, Optional
from urllib.parse import urlencode

import requests
from flask import Blueprint, Flask, abort, g, jsonify, request, session
from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from .models import Card, Goods, RequestLog, Setting, User
from .streak import CheckinTracker
from .weather import SETTING_IMAGE_NAMES, fetch_forecast, weather_image
from .wechat import (
    CHECKIN_TEMPLATE_ID,
    GREETING_DATA,
    LOGIN_PAGE,
    LOGIN_TEMPLATE_ID,
    checkin_message,
)

logger = logging.getLogger(__name__)

SESSION_COOKIE = "mysession"
SESSION_OPENID = "sssss2ssss"
DEFAULT_UPLOAD_DIR = "/var/www/uploads"
DEFAULT_UPLOAD_BASE_URL = "http://120.27.159.64/uploads/"
DEFAULT_SECRET_KEY = "secret"
LIST_LIMIT = 50
FORECAST_DAYS = "/40/"
LOGIN_USER_ID = "example_user_id"

_HTTP_ERROR_CODES = (400, 401, 403, 404, 405, 406, 409, 410, 411, 412, 413, 414, 415, 429)

_CARD_FIELDS = {
    "lat": ("lat", str),
    "lon": ("lon", str),
    "describe": ("describe", str),
    "openid": ("openid", str),
    "cardImage": ("card_image", str),
    "maxCardNum": ("max_card_num", int),
}
_GOODS_FIELDS = {
    "name": ("name", str),
    "remarks": ("remark", str),
    "imageUrl": ("url", str),
    "num": ("num", int),
    "openid": ("openid", str),
}
_USER_FIELDS = {
    "nickName": "nick_name",
    "avatarUrl": "avatar_url",
    "email": "email",
}


def _bind(data: Mapping[str, Any], fields: Mapping[str, tuple[str, type]]) -> dict[str, Any]:
    """Map JSON keys onto model attributes, checking their types."""
    values: dict[str, Any] = {}
    for key, (attr, kind) in fields.items():
        value = data.get(key)
        if value is None:
            continue
        if kind is int and isinstance(value, float) and value.is_integer():
            value = int(value)
        if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
            abort(400, f"field {key!r} must be {kind.__name__}")
        values[attr] = value
    return values


def _json_object() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        abort(400, "Invalid request")
    return data


def _login_code() -> str:
    data = _json_object()
    code = data.get("code") or ""
    info = data.get("userInfo") or {}
    if not isinstance(code, str) or not isinstance(info, dict):
        abort(400, "Invalid request")
    for key in ("nickName", "avatarUrl"):
        if info.get(key) is not None and not isinstance(info[key], str):
            abort(400, "Invalid request")
    return code


def _live(model: Any) -> Any:
    return select(model).where(model.deleted_at.is_(None))


def _header_openid() -> str:
    return request.headers.get("openid", "")


def create_app(
    session_factory: Callable[[], Session],
    redis_client: Any = None,
    wechat: Any = None,
    forecast_fetcher: Optional[Callable[..., Any]] = None,
    upload_dir: str | Path = DEFAULT_UPLOAD_DIR,
    upload_base_url: str = DEFAULT_UPLOAD_BASE_URL,
    secret_key: str = DEFAULT_SECRET_KEY,
) -> Flask:
    """Build the web application with all routes under ``/api``."""
    app = Flask(__name__, static_folder=None)
    app.secret_key = secret_key
    app.config["SESSION_COOKIE_NAME"] = SESSION_COOKIE
    fetcher = forecast_fetcher if forecast_fetcher is not None else fetch_forecast
    tracker = CheckinTracker(redis_client)
    uploads = Path(upload_dir)
    image_for = partial(weather_image, base_url=upload_base_url, names=SETTING_IMAGE_NAMES)

    api = Blueprint("api", __name__, url_prefix="/api")

    @api.before_request
    def start_timer() -> None:
        g.request_started = datetime.now()
        g.request_clock = time.perf_counter_ns()

    @api.after_request
    def log_request(response: Any) -> Any:
        started = g.get("request_started")
        if started is None:
            return response
        duration_ns = time.perf_counter_ns() - g.request_clock
        ended = datetime.now()
        params = request.args.to_dict(flat=False)
        openid = _header_openid()
        with session_factory() as db:
            user = db.scalars(
                _live(User).where(User.mini_openid == openid).order_by(User.id).limit(1)
            ).first()
            db.add(
                RequestLog(
                    openid=openid,
                    request_method=request.method,
                    request_param=json.dumps(params, sort_keys=True, ensure_ascii=False, separators=(",", ":")),
                    start_time=started,
                    end_time=ended,
                    sub_time=duration_ns,
                    handler=request.endpoint or "",
                    request_path=request.path,
                    user_id=user.id if user is not None else 0,
                )
            )
            db.commit()
        logger.info(
            "[%s] %s %s %s %s %dns",
            ended.strftime("%Y/%m/%d - %H:%M:%S"),
            request.remote_addr,
            request.method,
            request.path,
            urlencode(sorted(params.items()), doseq=True),
            duration_ns,
        )
        return response

    # --- check-ins -------------------------------------------------------

    @api.post("/card/add")
    def card_add() -> Any:
        values = _bind(_json_object(), _CARD_FIELDS)
        session["openid"] = SESSION_OPENID
        openid = _header_openid()
        values["openid"] = openid
        now = datetime.now()
        with session_factory() as db:
            previous = db.scalar(
                select(func.count()).select_from(Card)
                .where(Card.openid == openid, Card.deleted_at.is_(None))
            )
            logger.debug("check-in %d for %s", (previous or 0) + 1, openid)
            db.add(Card(**values))
            db.commit()
            tracker.record(openid, now.date())
            streak_text = tracker.summary(db, openid, now.date())
        try:
            wechat.send_template(openid, CHECKIN_TEMPLATE_ID, checkin_message(now, streak_text))
        except requests.RequestException:
            logger.exception("check-in notification to %s failed", openid)
        return jsonify({"openid": "sssss"})

    @api.get("/card/list")
    def card_list() -> Any:
        openid = _header_openid()
        desc = request.args.get("desc", "")
        with session_factory() as db:
            cards = db.scalars(
                _live(Card)
                .where(Card.openid == openid, Card.describe.like(f"%{desc}%"))
                .order_by(Card.id.desc())
                .limit(LIST_LIMIT)
            ).all()
            listed = [card.to_dict() for card in cards]
        return jsonify({"list": listed, "headeropenid": openid})

    @api.get("/card/detail")
    def card_detail() -> Any:
        raw_id = request.args.get("id", "")
        with session_factory() as db:
            card = None
            if raw_id.isdigit():
                card = db.scalars(_live(Card).where(Card.id == int(raw_id))).first()
            detail = (card or Card()).to_dict()
        return jsonify({"detail": detail})

    # --- goods -----------------------------------------------------------

    @api.get("/goods/test")
    def goods_test() -> Any:
        return jsonify({"openid": session.get("openid")})

    @api.post("/goods/add")
    def goods_add() -> Any:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            abort(400, "Invalid request")
        with session_factory() as db:
            goods = Goods(**_bind(data, _GOODS_FIELDS))
            db.add(goods)
            db.commit()
            created = goods.to_dict()
        return jsonify(created)

    @api.get("/goods/list")
    def goods_list() -> Any:
        name = request.args.get("name", "")
        openid = _header_openid()
        pattern = f"%{name}%"
        with session_factory() as db:
            items = db.scalars(
                _live(Goods)
                .where(Goods.openid == openid)
                .where(or_(Goods.name.like(pattern), Goods.remark.like(pattern)))
                .order_by(Goods.id.desc())
                .limit(LIST_LIMIT)
            ).all()
            listed = [item.to_dict() for item in items]
        return jsonify(listed)

    @api.post("/goodsImage/upload")
    def goods_upload() -> Any:
        upload = request.files.get("file")
        filename = Path(upload.filename or "").name if upload is not None else ""
        if upload is None or not filename:
            return jsonify({"error": "http: no such file"}), 400
        try:
            uploads.mkdir(parents=True, exist_ok=True)
            upload.save(uploads / filename)
        except OSError as error:
            return jsonify({"error": str(error)}), 500
        return jsonify({"message": "文件上传成功", "imageUrl": upload_base_url + filename})

    @api.post("/login")
    def login() -> Any:
        code = _login_code()
        info = wechat.code_to_session(code)
        openid = str(info.get("openid", ""))
        wechat.send_template(openid, LOGIN_TEMPLATE_ID, GREETING_DATA, LOGIN_PAGE)
        return jsonify({"userId": LOGIN_USER_ID})

    # --- users -----------------------------------------------------------

    @api.post("/user/add")
    def user_add() -> Any:
        logger.info("user-add")
        return "", 200

    @api.post("/user/miniLogin")
    def user_mini_login() -> Any:
        code = _login_code()
        info = wechat.code_to_session(code)
        openid = info.get("openid", "")
        openid = openid if isinstance(openid, str) else ""
        with session_factory() as db:
            user = db.scalars(
                _live(User).where(User.mini_openid == openid).order_by(User.id.desc()).limit(1)
            ).first()
            if user is None:
                extra = {
                    attr: info[key]
                    for key, attr in _USER_FIELDS.items()
                    if isinstance(info.get(key), str)
                }
                user = User(mini_openid=openid, **extra)
                db.add(user)
                db.commit()
            data = {"openid": user.mini_openid, "email": user.email, "nickName": user.nick_name}
        session["openid"] = data["openid"]
        return jsonify({"code": 0, "data": data, "msg": "ss"})

    @api.get("/user/clock")
    def user_clock() -> Any:
        return jsonify({"openid": session.get("openid")})

    @api.get("/user/clockSet")
    def user_clock_set() -> Any:
        session["openid"] = SESSION_OPENID
        return jsonify({"openid": "ssss"})

    @api.get("/user/setEmail")
    def user_set_email() -> Any:
        email = request.args.get("email", "")
        openid = _header_openid()
        if email:
            with session_factory() as db:
                db.execute(
                    update(User)
                    .where(User.mini_openid == openid, User.deleted_at.is_(None))
                    .values(email=email)
                )
                db.commit()
        return jsonify("success")

    @api.get("/user/detail")
    def user_detail() -> Any:
        openid = _header_openid()
        with session_factory() as db:
            user = db.scalars(
                _live(User).where(User.mini_openid == openid).order_by(User.id).limit(1)
            ).first()
            detail = (user or User()).to_dict()
        return jsonify(detail)

    @api.post("/user/update")
    def user_update() -> Any:
        data = request.get_json(silent=True)
        data = data if isinstance(data, dict) else {}
        nick_name, avatar_url = data.get("nickName"), data.get("avatarUrl")
        if not isinstance(nick_name, str) or not isinstance(avatar_url, str):
            abort(400, "nickName and avatarUrl must be strings")
        values = {
            attr: value
            for attr, value in (("nick_name", nick_name), ("avatar_url", avatar_url))
            if value
        }
        if values:
            with session_factory() as db:
                db.execute(
                    update(User)
                    .where(User.mini_openid == _header_openid(), User.deleted_at.is_(None))
                    .values(**values)
                )
                db.commit()
        return jsonify({})

    # --- settings --------------------------------------------------------

    def splash_setting() -> Any:
        with session_factory() as db:
            setting = db.scalars(
                _live(Setting).where(Setting.type == 1).order_by(Setting.id).limit(1)
            ).first()
            return jsonify((setting or Setting()).to_dict())

    api.add_url_rule("/setting/list", "setting_list", splash_setting, methods=["GET"])
    api.add_url_rule("/setting/get", "setting_get", splash_setting, methods=["GET"])

    @api.post("/setting/add")
    def setting_add() -> Any:
        logger.info("setting-add")
        return "", 200

    @api.get("/setting/weather")
    def setting_weather() -> Any:
        city = request.args.get("city", "")
        if not city:
            with session_factory() as db:
                setting = db.scalars(_live(Setting).order_by(Setting.id).limit(1)).first()
                city = setting.area if setting is not None else ""
        forecast = fetcher(city, FORECAST_DAYS, image_for)
        return jsonify(forecast.to_dict())

    app.register_blueprint(api)

    def http_error(error: Any) -> Any:
        return jsonify({"error": error.description}), error.code

    for code in _HTTP_ERROR_CODES:
        app.register_error_handler(code, http_error)

    @app.errorhandler(requests.RequestException)
    def upstream_error(error: requests.RequestException) -> Any:
        logger.error("upstream request failed: %s", error)
        return jsonify({"error": str(error)}), 502

    return app