"""Scraping and interpretation of weather forecasts."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

import requests
from bs4 import BeautifulSoup
from unidecode import unidecode

logger = logging.getLogger(__name__)

FORECAST_URL = "https://www.tianqi.com/"
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/80.0.3987.149 Safari/537.36"
)

# Keyword to image file; when several keywords match, the last one wins.
SETTING_IMAGE_NAMES: tuple[tuple[str, str], ...] = (
    ("多云", "duoyun.png"),
    ("晴", "qing.png"),
    ("雪", "xue.png"),
    ("阴", "yin.png"),
    ("雨", "yu.png"),
)
SERVICE_IMAGE_NAMES: tuple[tuple[str, str], ...] = (
    ("多云", "微信图片_20240116145431.png"),
    ("晴", "微信图片_20240116145508.png"),
    ("雪", "微信图片_20240116145515.png"),
    ("阴", "微信图片_20240116145422.png"),
    ("雨", "微信图片_20240116145447.png"),
)

_HAN_RANGES = (
    (0x3400, 0x4DBF),
    (0x4E00, 0x9FFF),
    (0xF900, 0xFAFF),
    (0x20000, 0x2FA1F),
)
_TEMPERATURE = re.compile(r"(-?[0-9]+)~(-?[0-9]+)℃")


@dataclass
class DayForecast:
    """The forecast of a single day."""

    title: str = ""
    date: str = ""
    cloud: str = ""
    image: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"Title": self.title, "Date": self.date, "Cloud": self.cloud, "Image": self.image}


@dataclass
class Forecast:
    """Today's weather and the forecast for the following days."""

    title: str = ""
    today_weather: str = ""
    today_date: str = ""
    days: list[DayForecast] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "Title": self.title,
            "TodayWeather": self.today_weather,
            "TodayDate": self.today_date,
            "Sons": [day.to_dict() for day in self.days],
        }


def _is_han(char: str) -> bool:
    code = ord(char)
    return any(low <= code <= high for low, high in _HAN_RANGES)


def city_slug(city: str) -> str:
    """Spell the Chinese characters of a city name in toneless lower-case pinyin.

    Characters that are not Chinese are dropped.
    """
    return "".join(
        re.sub(r"[^a-z]", "", unidecode(char).lower()) for char in city if _is_han(char)
    )


def clean_text(text: str) -> str:
    """Remove spaces and newlines."""
    return text.replace(" ", "").replace("\n", "")


def weather_image(
    cloud: str,
    base_url: str,
    names: Iterable[tuple[str, str]] = SETTING_IMAGE_NAMES,
) -> str:
    """Return the image URL for a weather description."""
    image = ""
    for keyword, filename in names:
        if keyword in cloud:
            image = filename
    return base_url + image


def _joined_text(nodes: Iterable[Any]) -> str:
    return "".join(node.get_text() for node in nodes)


def parse_forecast(
    html: str | bytes,
    image_for: Optional[Callable[[str], str]] = None,
) -> Forecast:
    """Extract a forecast from a forecast page."""
    soup = BeautifulSoup(html, "html.parser")
    forecast = Forecast(
        title=clean_text(_joined_text(soup.select("div.weaone_b h1"))),
        today_weather=clean_text(_joined_text(soup.select("div.weaone_ba"))),
        today_date=clean_text(_joined_text(soup.select("div.weaone_bb"))),
    )
    for item in soup.select("ul.weaul li"):
        link = item.find("a")
        title = link.get("title", "") if link is not None else ""
        if isinstance(title, list):
            title = " ".join(title)
        cloud = clean_text(_joined_text(item.select("a div.weaul_z")))
        forecast.days.append(
            DayForecast(
                title=clean_text(title),
                date=clean_text(_joined_text(item.select("a div.weaul_q"))),
                cloud=cloud,
                image=image_for(cloud) if image_for is not None else "",
            )
        )
    return forecast


def fetch_forecast(
    city: str,
    days: str = "/40/",
    image_for: Optional[Callable[[str], str]] = None,
    session: Any = None,
) -> Forecast:
    """Download and parse the forecast of a city.

    A non-200 answer yields an empty forecast; network errors propagate.
    """
    http = session if session is not None else requests
    url = FORECAST_URL + city_slug(city) + days
    response = http.get(url, headers={"User-Agent": USER_AGENT}, timeout=30)
    if response.status_code != 200:
        logger.warning("Failed to retrieve weather information from %s (%s)", url, response.status_code)
        return Forecast()
    return parse_forecast(response.content, image_for)


def weather_title(text: str) -> str:
    """Compose the advice shown for a day's weather description."""
    parts: list[str] = []
    match = _TEMPERATURE.search(text)
    if match:
        low, high = int(match[1]), int(match[2])
        logger.debug("lowest %d℃, highest %d℃", low, high)
        if high <= 2:
            parts.append("最高温度低于3度记得加衣 ")
        if low < 0:
            parts.append(f" 最低温度零下{low}摄氏度记得加衣 ")
    else:
        logger.debug("no temperature found in %r", text)

    for keyword, heavier in (("雨", ("中雨", "大雨", "暴雨")), ("雪", ("中雪", "大雪", "暴雪"))):
        if keyword in text:
            parts.append(f"有{keyword}出门记得带伞")
            parts.extend(f"有{kind}出门记得带伞" for kind in heavier if kind in text)
    return "".join(parts)