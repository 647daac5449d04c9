"""Configuration module — frozen dataclasses loaded from a YAML overlay, env vars and CLI args."""

import argparse
import copy
import logging
import os
from dataclasses import dataclass
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class CLSConfig:
    endpoint: str
    topic_id: str
    max_count: int = 100
    max_size: float = 0.1
    retry_count: int = 2
    flush_interval: int = 5000
    region: str = "ap-guangzhou"
    source: str = "midscene-server"
    timeout: float = 10.0

    @property
    def max_size_bytes(self) -> float:
        return self.max_size * BYTES_PER_MB

    @property
    def flush_interval_seconds(self) -> float:
        return self.flush_interval / 1000


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "DEBUG"
    app_env: str = "development"
    app_id: str = "midscene-server"
    app_version: str = "1.0.0"


@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 3000
    debug: bool = False


@dataclass(frozen=True)
class AppConfig:
    server: ServerConfig
    logging: LoggingConfig
    cls: Optional[CLSConfig] = None


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override dict into base dict."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def read_config_file(path: Optional[str], defaults: Optional[dict] = None) -> dict:
    """Load the optional YAML overlay and merge it over *defaults*.

    A missing file or a file that is not a YAML mapping leaves the defaults
    untouched.
    """
    result = copy.deepcopy(defaults or {})
    if not path:
        return result

    try:
        with open(path, "r") as f:
            user_config = yaml.safe_load(f)
    except FileNotFoundError:
        logger.debug("Config file %s not found, using defaults", path)
        return result
    except yaml.YAMLError as exc:
        logger.warning("Invalid YAML in %s, using defaults: %s", path, exc)
        return result

    if user_config and isinstance(user_config, dict):
        result = _deep_merge(result, user_config)
    return result


def _setting(env_name: str, section: dict, key: str, default):
    """Resolve one option: env var first, then the YAML section, then the default."""
    value = os.environ.get(env_name)
    if value is not None and value != "":
        return value
    value = section.get(key)
    if value is not None:
        return value
    return default


def load_cls_config(file_values: Optional[dict] = None) -> Optional[CLSConfig]:
    """Build CLSConfig, or return None when the endpoint or topic is missing.

    An absent config means the forwarder is not created at all.
    """
    section = (file_values or {}).get("cls") or {}

    endpoint = _setting("CLS_ENDPOINT", section, "endpoint", "")
    topic_id = _setting("CLS_TOPIC_ID", section, "topic_id", "")
    if not endpoint or not topic_id:
        return None

    return CLSConfig(
        endpoint=str(endpoint),
        topic_id=str(topic_id),
        max_count=int(_setting("CLS_MAX_COUNT", section, "max_count", CLSConfig.max_count)),
        max_size=float(_setting("CLS_MAX_SIZE", section, "max_size", CLSConfig.max_size)),
        retry_count=int(_setting("CLS_RETRY_COUNT", section, "retry_count", CLSConfig.retry_count)),
        flush_interval=int(
            _setting("CLS_FLUSH_INTERVAL", section, "flush_interval", CLSConfig.flush_interval)
        ),
        region=str(_setting("CLS_REGION", section, "region", CLSConfig.region)),
        source=str(_setting("CLS_SOURCE", section, "source", CLSConfig.source)),
        timeout=float(_setting("CLS_TIMEOUT", section, "timeout", CLSConfig.timeout)),
    )


def load_logging_config(file_values: Optional[dict] = None) -> LoggingConfig:
    """Build LoggingConfig; the default level depends on the environment."""
    section = (file_values or {}).get("logging") or {}

    app_env = str(_setting("APP_ENV", section, "app_env", LoggingConfig.app_env))
    default_level = "INFO" if app_env == "production" else LoggingConfig.level

    return LoggingConfig(
        level=str(_setting("LOG_LEVEL", section, "level", default_level)).upper(),
        app_env=app_env,
        app_id=str(_setting("APP_ID", section, "app_id", LoggingConfig.app_id)),
        app_version=str(_setting("APP_VERSION", section, "app_version", LoggingConfig.app_version)),
    )


def load_server_config(file_values: Optional[dict] = None) -> ServerConfig:
    """Build ServerConfig from environment variables with sensible defaults."""
    section = (file_values or {}).get("server") or {}
    return ServerConfig(
        host=str(_setting("SERVER_HOST", section, "host", ServerConfig.host)),
        port=int(_setting("SERVER_PORT", section, "port", ServerConfig.port)),
        debug=_parse_bool(_setting("SERVER_DEBUG", section, "debug", ServerConfig.debug)),
    )


def load_config(argv=None) -> AppConfig:
    """Build AppConfig from defaults <- YAML file <- env vars <- CLI args.

    Pass argv for testability; when None, argparse reads sys.argv.
    """
    parser = argparse.ArgumentParser(description="Midscene debug server with CLS log shipping")
    parser.add_argument("--config", type=str, default=None)
    parser.add_argument("--host", type=str, default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--log-level", type=str, default=None)
    parser.add_argument("--debug", action="store_true", default=False)

    args = parser.parse_args(argv)

    file_values = read_config_file(args.config or os.environ.get("CONFIG_PATH"))

    server = load_server_config(file_values)
    server = ServerConfig(
        host=args.host if args.host is not None else server.host,
        port=args.port if args.port is not None else server.port,
        debug=True if args.debug else server.debug,
    )

    logging_config = load_logging_config(file_values)
    if args.log_level is not None:
        logging_config = LoggingConfig(
            level=args.log_level.upper(),
            app_env=logging_config.app_env,
            app_id=logging_config.app_id,
            app_version=logging_config.app_version,
        )

    return AppConfig(
        server=server,
        logging=logging_config,
        cls=load_cls_config(file_values),
    )
