"""Configuration loading and Pydantic models for BleepSwift."""

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

# 1 GiB, the default maximum object size of a Swift cluster
DEFAULT_SEGMENT_SIZE = 1 << 30


class AuthConfig(BaseModel):
    """Credentials for the Swift account.

    Either ``storage_url`` and ``token`` (pre-obtained token) or
    ``auth_url``, ``user`` and ``key`` (v1 authentication) must be set.
    """

    auth_url: str = ""
    user: str = ""
    key: str = ""
    storage_url: str = ""
    token: str = ""


class HTTPConfig(BaseModel):
    """HTTP client configuration."""

    timeout: float = 30.0
    user_agent: str = ""


class SegmentConfig(BaseModel):
    """Defaults for large object uploads."""

    segment_size: int = DEFAULT_SEGMENT_SIZE
    strategy: Literal["static", "dynamic"] = "static"
    container_suffix: str = "_segments"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "text"


class MetricsConfig(BaseModel):
    """Prometheus metrics configuration."""

    enabled: bool = False


class BleepSwiftConfig(BaseModel):
    """Top-level BleepSwift configuration."""

    auth: AuthConfig = Field(default_factory=AuthConfig)
    http: HTTPConfig = Field(default_factory=HTTPConfig)
    segments: SegmentConfig = Field(default_factory=SegmentConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


def _parse_auth(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the auth section from YAML data.

    Handles nested structure: auth.v1.url -> auth_url, etc.
    """
    if data is None:
        return {}
    result: dict[str, Any] = {
        "storage_url": data.get("storage_url", ""),
        "token": data.get("token", ""),
    }
    v1_section = data.get("v1")
    if isinstance(v1_section, dict):
        result["auth_url"] = v1_section.get("url", "")
        result["user"] = v1_section.get("user", "")
        result["key"] = v1_section.get("key", "")
    return result


def _parse_http(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the http section from YAML data."""
    if data is None:
        return {}
    return {
        "timeout": data.get("timeout", 30.0),
        "user_agent": data.get("user_agent", ""),
    }


def _parse_segments(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the segments section from YAML data."""
    if data is None:
        return {}
    return {
        "segment_size": data.get("segment_size", DEFAULT_SEGMENT_SIZE),
        "strategy": data.get("strategy", "static"),
        "container_suffix": data.get("container_suffix", "_segments"),
    }


def _parse_logging(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the logging section from YAML data."""
    if data is None:
        return {}
    return {
        "level": data.get("level", "INFO"),
        "format": data.get("format", "text"),
    }


def _parse_metrics(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the metrics section from YAML data."""
    if data is None:
        return {}
    return {"enabled": data.get("enabled", False)}


def load_config(path: Path) -> BleepSwiftConfig:
    """Load a BleepSwiftConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated BleepSwiftConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return BleepSwiftConfig(
        auth=AuthConfig(**_parse_auth(raw.get("auth"))),
        http=HTTPConfig(**_parse_http(raw.get("http"))),
        segments=SegmentConfig(**_parse_segments(raw.get("segments"))),
        logging=LoggingConfig(**_parse_logging(raw.get("logging"))),
        metrics=MetricsConfig(**_parse_metrics(raw.get("metrics"))),
    )
