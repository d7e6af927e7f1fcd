"""Mini program API client: access tokens, logins and subscription messages."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

import requests

logger = logging.getLogger(__name__)

TOKEN_URL = "https://api.weixin.qq.com/cgi-bin/token"
SESSION_URL = "https://api.weixin.qq.com/sns/jscode2session"
SEND_URL = "https://api.weixin.qq.com/cgi-bin/message/subscribe/send"

TOKEN_CACHE_KEY = "miniToken"
TOKEN_TTL = timedelta(minutes=110)

DEFAULT_PAGE = "pages/cardList/cardList"
LOGIN_PAGE = "pages/index"
MINIPROGRAM_STATE = "developer"

CLOCK_TEMPLATE_ID = "XKdx0esytPR0ElXybw-d_0VBBBmP-y8I2w7UV8F9uxk"
CHECKIN_TEMPLATE_ID = "VbeyooicNuMv4KLVGNiCCmMnWnsTR6snBnykRrvPhIE"
LOGIN_TEMPLATE_ID = "0RWFOTZw9hhlhQh9fLJlmoFoGcuiwpxf3aB3LtQdV2U"

GREETING_DATA: dict[str, dict[str, str]] = {
    "thing1": {"value": "Hello World"},
    "date2": {"value": "2023-09-08"},
    "thing3": {"value": "Hello World"},
    "thing4": {"value": "Hello World"},
}

_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
_ZERO_TIME = "0001-01-01 00:00:00"


def _format_time(value: Optional[datetime]) -> str:
    return value.strftime(_TIME_FORMAT) if value is not None else _ZERO_TIME


def clock_message(clock: Any) -> dict[str, dict[str, str]]:
    """Template data announcing a due reminder."""
    return {
        "thing1": {"value": clock.title},
        "thing3": {"value": clock.describe},
        "time5": {"value": _format_time(clock.tip_time)},
    }


def checkin_message(when: datetime, streak_text: str) -> dict[str, dict[str, str]]:
    """Template data confirming a check-in."""
    return {
        "thing1": {"value": "就要打卡"},
        "time2": {"value": _format_time(when)},
        "thing4": {"value": "记录点滴"},
        "thing11": {"value": streak_text},
    }


class WeChatClient:
    """Talks to the mini program server API.

    Network failures surface as ``requests`` exceptions.
    """

    def __init__(
        self,
        appid: str,
        secret: str,
        redis_client: Any = None,
        session: Any = None,
        timeout: float = 30,
    ) -> None:
        self.appid = appid
        self.secret = secret
        self.redis = redis_client
        self.http = session if session is not None else requests.Session()
        self.timeout = timeout

    def get_token(self) -> str:
        """Fetch a fresh access token and cache it in Redis."""
        response = self.http.get(
            TOKEN_URL,
            params={
                "appid": self.appid,
                "secret": self.secret,
                "grant_type": "client_credential",
            },
            timeout=self.timeout,
        )
        token = str(response.json().get("access_token", ""))
        if self.redis is not None:
            self.redis.set(TOKEN_CACHE_KEY, token, ex=TOKEN_TTL)
        return token

    def build_message(
        self,
        openid: str,
        template_id: str,
        data: Mapping[str, Mapping[str, str]],
        page: str = DEFAULT_PAGE,
    ) -> dict[str, Any]:
        """Assemble a subscription message body."""
        return {
            "touser": openid,
            "template_id": template_id,
            "page": page,
            "miniprogram_state": MINIPROGRAM_STATE,
            "data": {key: dict(value) for key, value in data.items()},
        }

    def send_template(
        self,
        openid: str,
        template_id: str,
        data: Mapping[str, Mapping[str, str]],
        page: str = DEFAULT_PAGE,
    ) -> dict[str, Any]:
        """Send a subscription message and return the decoded answer."""
        token = self.get_token()
        message = self.build_message(openid, template_id, data, page)
        response = self.http.post(
            SEND_URL,
            params={"access_token": token},
            json=message,
            timeout=self.timeout,
        )
        result = response.json()
        logger.info("subscription message to %s answered %s", openid, result)
        return result

    def code_to_session(self, code: str) -> dict[str, Any]:
        """Exchange a login code for the user's openid and session key."""
        response = self.http.get(
            SESSION_URL,
            params={
                "appid": self.appid,
                "secret": self.secret,
                "js_code": code,
                "grant_type": "authorization_code",
            },
            timeout=self.timeout,
        )
        return response.json()