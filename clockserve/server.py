"""Command that starts the web service, the reminder consumer and the daily job."""

from __future__ import annotations

import argparse
import json
import logging
import os
import threading
from datetime import timedelta
from functools import partial
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

import pika
import redis
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from .app import DEFAULT_UPLOAD_BASE_URL, DEFAULT_UPLOAD_DIR, create_app
from .config import RedisConfig, ServerConfig, load_rabbitmq_url
from .logs import setup_logger
from .models import register_tables
from .queue import ClockQueue
from .reminders import DailySchedule, handle_due_clock, nightly_weather_job
from .weather import SERVICE_IMAGE_NAMES, fetch_forecast, weather_image
from .wechat import CLOCK_TEMPLATE_ID, WeChatClient, clock_message

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8082
DEFAULT_HOST = "0.0.0.0"
DEFAULT_RABBITMQ_CONFIG = "config/config.ini"
WEATHER_CITY = "瑶海"
WEATHER_DAYS = "/7/"
SERVICE_IMAGE_BASE_URL = "http://s687dm7qx.hn-bkt.clouddn.com/"

_DEFAULTS: dict[str, Any] = {
    "mysql": {
        "path": "127.0.0.1",
        "port": "3306",
        "db-name": "inventory",
        "username": "root",
        "config": "charset=utf8&parseTime=True&loc=Local",
    },
    "redis": {"addr": "127.0.0.1:6379", "db": 0},
}


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse the command line."""
    parser = argparse.ArgumentParser(prog="clockserve", description="Run the reminder service.")
    parser.add_argument("--config", help="JSON configuration file")
    parser.add_argument("--rabbitmq-config", default=DEFAULT_RABBITMQ_CONFIG,
                        help="INI file holding the message broker URL")
    parser.add_argument("--database-url", help="SQLAlchemy URL overriding the MySQL settings")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--log-dir", help="directory of the daily log files")
    parser.add_argument("--upload-dir", default=DEFAULT_UPLOAD_DIR)
    parser.add_argument("--upload-base-url", default=DEFAULT_UPLOAD_BASE_URL)
    parser.add_argument("--appid", default=os.environ.get("WECHAT_APPID", ""))
    parser.add_argument("--app-secret", default=os.environ.get("WECHAT_SECRET", ""))
    return parser.parse_args(argv)


def load_config(path: str | Path | None = None) -> ServerConfig:
    """Read a JSON configuration file, or return the built-in defaults."""
    if path is None:
        return ServerConfig.from_mapping(_DEFAULTS)
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"configuration in {path} must be a JSON object")
    return ServerConfig.from_mapping(data)


def _redis_client(settings: RedisConfig) -> redis.Redis:
    host, _, port = settings.addr.rpartition(":")
    return redis.Redis(
        host=host or "127.0.0.1",
        port=int(port or 6379),
        password=settings.password or None,
        db=settings.db,
    )


def _publisher(url: str) -> Callable[[int, timedelta], None]:
    def publish(clock_id: int, delay: timedelta) -> None:
        with pika.BlockingConnection(pika.URLParameters(url)) as connection:
            ClockQueue(connection).publish(clock_id, delay)

    return publish


def _consume(url: str, session_factory: Callable[[], Any], notify: Callable[[Any], Any]) -> None:
    try:
        with pika.BlockingConnection(pika.URLParameters(url)) as connection:
            queue = ClockQueue(connection)
            queue.consume(
                lambda clock_id: handle_due_clock(session_factory, clock_id, notify, queue.publish)
            )
    except Exception:
        logger.exception("new consumer error")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Start every part of the service and serve HTTP until stopped."""
    args = parse_args(argv)
    config = load_config(args.config)
    setup_logger(args.log_dir)

    engine = create_engine(args.database_url or config.mysql.sqlalchemy_url())
    try:
        register_tables(engine)
        session_factory = sessionmaker(bind=engine)
        redis_client = _redis_client(config.redis)
        wechat = WeChatClient(args.appid, args.app_secret, redis_client)

        rabbitmq_url = load_rabbitmq_url(args.rabbitmq_config)
        logger.info("message broker %s", rabbitmq_url)
        publish = _publisher(rabbitmq_url)

        def notify(clock: Any) -> Any:
            return wechat.send_template(clock.openid, CLOCK_TEMPLATE_ID, clock_message(clock))

        image_for = partial(weather_image, base_url=SERVICE_IMAGE_BASE_URL, names=SERVICE_IMAGE_NAMES)
        schedule = DailySchedule(hour=20, minute=0)
        threading.Thread(
            target=schedule.run_forever,
            args=(
                lambda: nightly_weather_job(
                    session_factory,
                    lambda: fetch_forecast(WEATHER_CITY, WEATHER_DAYS, image_for),
                    publish,
                ),
            ),
            name="weather-job",
            daemon=True,
        ).start()
        threading.Thread(
            target=_consume,
            args=(rabbitmq_url, session_factory, notify),
            name="clock-consumer",
            daemon=True,
        ).start()

        app = create_app(
            session_factory,
            redis_client,
            wechat,
            upload_dir=args.upload_dir,
            upload_base_url=args.upload_base_url,
        )
        app.run(host=args.host, port=args.port)
    finally:
        engine.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())