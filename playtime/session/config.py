"""Server settings, cache TTL, milestone schedule."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Mapping

from playtime.session.durations import DEFAULT_FORMAT
from playtime.session.leaderboard import DEFAULT_TTL_MS, validate_ttl
from playtime.session.milestones import Milestone, parse_milestones

logger = logging.getLogger(__name__)

DEFAULT_CHECK_INTERVAL_SEC = 60


class ConfigError(Exception):
    pass


def validate_interval(value: Any) -> int:
    try:
        interval = int(value)
    except (TypeError, ValueError):
        interval = 0
    if interval <= 0:
        logger.warning("Invalid check-interval (%rs). Using default %ss.", value, DEFAULT_CHECK_INTERVAL_SEC)
        return DEFAULT_CHECK_INTERVAL_SEC
    return interval


@dataclass
class ServerConfig:
    # Versions
    server_version: str = "0.1.0"
    protocol_version: int = 1

    # Network
    host: str = "0.0.0.0"
    port: int = 8766
    cors_allow_all: bool = True
    cors_allowed_origins: list[str] = field(default_factory=list)

    # Host link quotas (presence messages per connection)
    presence_rate_per_sec: float = 50.0
    presence_burst: float = 200.0

    debug: bool = False

    # Leaderboard
    cache_ttl_ms: int = DEFAULT_TTL_MS
    leaderboard_limit: int = 25

    # Milestones
    milestones_enabled: bool = False
    check_interval_sec: int = DEFAULT_CHECK_INTERVAL_SEC
    milestones: list[Milestone] = field(default_factory=list)

    # Formatting
    default_format: str = "full"
    time_formats: dict[str, str] = field(default_factory=dict)

    config_path: str | None = None

    def __post_init__(self):
        if not self.time_formats:
            self.time_formats = {
                "full": DEFAULT_FORMAT,
                "short": "{hours}h {minutes}m",
                "custom": "{days}:{hours}:{minutes}:{seconds}",
            }

    @property
    def scan_scheduled(self) -> bool:
        return self.milestones_enabled and bool(self.milestones)

    def time_format(self, name: str | None = None) -> str:
        name = name or self.default_format
        fmt = self.time_formats.get(name)
        if fmt is None:
            fmt = self.time_formats.get("full")
        if fmt is None:
            logger.warning("Format '%s' not found in config! Using default.", name)
            fmt = DEFAULT_FORMAT
        return fmt

    @staticmethod
    def _parse_bool(v: Any, default: bool) -> bool:
        if v is None:
            return default
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() in ("1", "true", "yes", "on")

    def apply(self, data: Mapping[str, Any]) -> None:
        """Overlay values from a config file mapping, validating each."""
        if "debug" in data:
            self.debug = self._parse_bool(data.get("debug"), self.debug)
        if "cacheTtlMs" in data:
            self.cache_ttl_ms = validate_ttl(data.get("cacheTtlMs"))
        if "leaderboardLimit" in data:
            try:
                self.leaderboard_limit = max(1, int(data["leaderboardLimit"]))
            except (TypeError, ValueError):
                logger.warning("Invalid leaderboardLimit (%r). Keeping %s.", data["leaderboardLimit"], self.leaderboard_limit)
        if "defaultFormat" in data and isinstance(data["defaultFormat"], str):
            self.default_format = data["defaultFormat"]
        formats = data.get("timeFormats")
        if isinstance(formats, dict):
            self.time_formats.update({str(k): v for k, v in formats.items() if isinstance(v, str)})

        ms = data.get("milestones")
        if isinstance(ms, dict):
            self.milestones_enabled = self._parse_bool(ms.get("enabled"), False)
            if "checkInterval" in ms:
                self.check_interval_sec = validate_interval(ms.get("checkInterval"))
            if self.milestones_enabled:
                self.milestones = parse_milestones(ms.get("list"))
                if not self.milestones:
                    logger.warning("No milestones configured!")
            else:
                self.milestones = []
                logger.info("Milestones are disabled in config")
        elif ms is not None:
            logger.warning("'milestones' must be an object. Ignoring.")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "ServerConfig":
        env = os.environ if env is None else env
        cfg = cls()
        cfg.host = env.get("PLAYTIME_HOST", cfg.host)
        try:
            cfg.port = int(env.get("PLAYTIME_PORT", str(cfg.port)))
        except ValueError:
            logger.warning("Invalid PLAYTIME_PORT. Using %s.", cfg.port)
        cfg.cors_allow_all = cls._parse_bool(env.get("PLAYTIME_CORS_ALLOW_ALL"), cfg.cors_allow_all)
        cfg.debug = cls._parse_bool(env.get("PLAYTIME_DEBUG"), cfg.debug)
        origins = env.get("PLAYTIME_CORS_ORIGINS")
        if origins:
            cfg.cors_allowed_origins = [o.strip() for o in origins.split(",") if o.strip()]
        cfg.config_path = env.get("PLAYTIME_CONFIG") or default_config_path()
        return cfg


def default_config_path() -> str:
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
    return os.path.join(repo_root, "config", "playtime.json")


class ConfigSource:
    """Reads env + JSON file into a fresh ServerConfig on every load."""

    def __init__(self, path: str | None = None, env: Mapping[str, str] | None = None):
        self.path = path
        self.env = env

    def load(self, strict: bool = False) -> ServerConfig:
        """Build a config from env and the JSON file.

        A missing file yields defaults unless `strict` is set, in which case it
        raises ConfigError like any other unreadable file.
        """
        cfg = ServerConfig.from_env(self.env)
        if self.path:
            cfg.config_path = self.path
        path = cfg.config_path
        if not path or not os.path.exists(path):
            if strict:
                raise ConfigError(f"config file {path} not found")
            logger.warning("Config file %s not found. Using defaults.", path)
            return cfg
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigError(f"cannot read {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: top level must be an object")
        cfg.apply(data)
        return cfg
