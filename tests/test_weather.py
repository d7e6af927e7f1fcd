import pytest

from clockserve.weather import (
    FORECAST_URL,
    SERVICE_IMAGE_NAMES,
    USER_AGENT,
    DayForecast,
    Forecast,
    city_slug,
    clean_text,
    fetch_forecast,
    parse_forecast,
    weather_image,
    weather_title,
)

PAGE = """
<html><body>
<div class="weaone_b"><h1> 合肥 天气
</h1></div>
<div class="weaone_ba"> 晴 5~12℃ </div>
<div class="weaone_bb">2024 01 16</div>
<ul class="weaul">
  <li><a title=" 周二 晴 "><div class="weaul_q">01 16</div><div class="weaul_z"> 晴 </div></a></li>
  <li><a title="周三 小雨"><div class="weaul_q">01-17</div><div class="weaul_z">小雨 -2~1℃</div></a></li>
</ul>
</body></html>
"""


class _Response:
    def __init__(self, status_code, content=b""):
        self.status_code = status_code
        self.content = content


class _Session:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def get(self, url, headers=None, timeout=None):
        self.calls.append((url, headers))
        return self.response


def test_clean_text_removes_spaces_and_newlines():
    assert clean_text(" a b\nc \n") == "abc"
    assert clean_text("a\tb") == "a\tb"


def test_city_slug_spells_pinyin():
    assert city_slug("合肥") == "hefei"


def test_city_slug_drops_latin():
    assert city_slug("hefei") == ""


def test_weather_image_last_keyword_wins():
    assert weather_image("多云转晴", "http://example.com/") == "http://example.com/qing.png"
    assert weather_image("阴转小雨", "http://example.com/") == "http://example.com/yu.png"


def test_weather_image_no_match_is_base_url():
    assert weather_image("大风", "http://example.com/") == "http://example.com/"


def test_weather_image_with_other_names():
    assert weather_image("雪", "http://example.com/", SERVICE_IMAGE_NAMES).endswith(
        "微信图片_20240116145515.png"
    )


def test_parse_forecast():
    forecast = parse_forecast(PAGE, lambda cloud: "img:" + cloud)
    assert forecast.title == "合肥天气"
    assert forecast.today_weather == "晴5~12℃"
    assert forecast.today_date == "20240116"
    assert forecast.days == [
        DayForecast(title="周二晴", date="0116", cloud="晴", image="img:晴"),
        DayForecast(title="周三小雨", date="01-17", cloud="小雨-2~1℃", image="img:小雨-2~1℃"),
    ]


def test_parse_forecast_without_image_function():
    forecast = parse_forecast(PAGE)
    assert [day.image for day in forecast.days] == ["", ""]


def test_parse_forecast_empty_page():
    assert parse_forecast("<html></html>") == Forecast()


def test_forecast_to_dict():
    data = Forecast(title="t", days=[DayForecast(cloud="晴")]).to_dict()
    assert data["Title"] == "t"
    assert data["Sons"] == [{"Title": "", "Date": "", "Cloud": "晴", "Image": ""}]
    assert set(data) == {"Title", "TodayWeather", "TodayDate", "Sons"}


def test_fetch_forecast_builds_url_and_parses():
    session = _Session(_Response(200, PAGE.encode("utf-8")))
    forecast = fetch_forecast("合肥", "/7/", None, session)
    url, headers = session.calls[0]
    assert url == FORECAST_URL + "hefei" + "/7/"
    assert headers["User-Agent"] == USER_AGENT
    assert len(forecast.days) == 2
    assert forecast.days[1].cloud == "小雨-2~1℃"


def test_fetch_forecast_failure_returns_empty():
    session = _Session(_Response(500))
    assert fetch_forecast("合肥", session=session) == Forecast()


def test_weather_title_cold_day():
    assert weather_title("晴-3~2℃") == (
        "最高温度低于3度记得加衣 " + " 最低温度零下-3摄氏度记得加衣 "
    )


def test_weather_title_rain_levels():
    assert weather_title("中雨转大雨10~15℃") == (
        "有雨出门记得带伞" + "有中雨出门记得带伞" + "有大雨出门记得带伞"
    )


def test_weather_title_snow():
    assert weather_title("暴雪5~8℃") == "有雪出门记得带伞" + "有暴雪出门记得带伞"


@pytest.mark.parametrize("text", ["晴5~12℃", "多云", ""])
def test_weather_title_mild_is_empty(text):
    assert weather_title(text) == ""