"""Server configuration: database, cache and message-queue settings."""

from __future__ import annotations

import configparser
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import parse_qsl, quote, urlencode

# Connection options understood by the PyMySQL driver; everything else in the
# free-form ``config`` string is specific to other drivers and is dropped.
_PYMYSQL_OPTIONS = frozenset({"charset"})


def _option(default: Any, key: str) -> Any:
    return field(default=default, metadata={"key": key})


def _build(cls, data: Mapping[str, Any]) -> dict[str, Any]:
    """Collect constructor arguments for a dataclass from a hyphen-keyed mapping."""
    kwargs: dict[str, Any] = {}
    for item in fields(cls):
        key = item.metadata.get("key", item.name)
        if key in data:
            kwargs[item.name] = data[key]
    return kwargs


@dataclass
class GeneralDB:
    """Settings shared by every kind of database connection."""

    prefix: str = _option("", "prefix")
    port: str = _option("", "port")
    config: str = _option("", "config")
    dbname: str = _option("", "db-name")
    username: str = _option("", "username")
    password: str = _option("", "password")
    path: str = _option("", "path")
    engine: str = _option("InnoDB", "engine")
    log_mode: str = _option("", "log-mode")
    max_idle_conns: int = _option(0, "max-idle-conns")
    max_open_conns: int = _option(0, "max-open-conns")
    singular: bool = _option(False, "singular")
    log_zap: bool = _option(False, "log-zap")

    @classmethod
    def _from_mapping(cls, data: Mapping[str, Any] | None):
        return cls(**_build(cls, data or {}))


@dataclass
class SpecializedDB(GeneralDB):
    """An additional named database connection."""

    type: str = _option("", "type")
    alias_name: str = _option("", "alias-name")
    disable: bool = _option(False, "disable")


@dataclass
class MysqlConfig(GeneralDB):
    """MySQL connection settings."""

    def dsn(self) -> str:
        """Return the connection string in ``user:pass@tcp(host:port)/db?opts`` form."""
        return (
            f"{self.username}:{self.password}@tcp({self.path}:{self.port})/"
            f"{self.dbname}?{self.config}"
        )

    def sqlalchemy_url(self) -> str:
        """Return a SQLAlchemy URL using the PyMySQL driver."""
        user = quote(self.username, safe="")
        secret = quote(self.password, safe="")
        url = f"mysql+pymysql://{user}:{secret}@{self.path}:{self.port}/{self.dbname}"
        options = {
            key: value
            for key, value in parse_qsl(self.config)
            if key in _PYMYSQL_OPTIONS
        }
        if options:
            url += "?" + urlencode(options)
        return url


@dataclass
class RedisConfig:
    """Redis connection settings."""

    addr: str = _option("", "addr")
    password: str = _option("", "password")
    db: int = _option(0, "db")


@dataclass
class ServerConfig:
    """Top-level server configuration."""

    redis: RedisConfig = field(default_factory=RedisConfig)
    mysql: MysqlConfig = field(default_factory=MysqlConfig)
    db_list: list[SpecializedDB] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "ServerConfig":
        """Build a configuration from a parsed YAML/JSON document."""
        data = data or {}
        redis_data = data.get("redis") or {}
        return cls(
            redis=RedisConfig(**_build(RedisConfig, redis_data)),
            mysql=MysqlConfig._from_mapping(data.get("mysql")),
            db_list=[SpecializedDB._from_mapping(item) for item in data.get("db-list") or []],
        )


def load_rabbitmq_url(path: str | Path = "config/config.ini") -> str:
    """Read the ``Rabbitmq`` key of the ``[rabbitmq]`` section of an INI file.

    A missing section or key yields an empty string; a missing file raises.
    """
    parser = configparser.ConfigParser(interpolation=None)
    if not parser.read(path, encoding="utf-8"):
        raise FileNotFoundError(f"configuration file not found: {path}")
    return parser.get("rabbitmq", "Rabbitmq", fallback="")