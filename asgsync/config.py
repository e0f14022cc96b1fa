"""Configuration file loading and validation.

One YAML file carries the common keys (NGINX Plus API endpoint, sync interval,
cloud provider, custom headers) and the provider-specific keys (region or
subscription, and the upstream list). Unknown keys are ignored so both parts
can live side by side.
"""
from __future__ import annotations

import re
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .durations import is_valid_time
from .errors import ConfigError
from .models import DEFAULT_FAIL_TIMEOUT, DEFAULT_SLOW_START, Upstream

MAX_HEADERS = 20

PROVIDER_AWS = "AWS"
PROVIDER_AZURE = "Azure"
CLOUD_PROVIDERS = (PROVIDER_AWS, PROVIDER_AZURE)

_INTERVAL_RE = re.compile(r"([0-9]+(?:\.[0-9]+)?)([smh]?)")
_INTERVAL_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600}


def validate_cloud_provider(name: str) -> bool:
    return name in CLOUD_PROVIDERS


def parse_interval(value: Any) -> float:
    """Turn ``5``, ``"5"``, ``"5s"``, ``"1m"`` or ``"1h"`` into seconds."""
    if isinstance(value, bool):
        raise ValueError("sync_interval must be a number of seconds or a <n>s|m|h string")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        m = _INTERVAL_RE.fullmatch(str(value).strip())
        if not m:
            raise ValueError(f"invalid sync_interval {value!r}")
        seconds = float(m.group(1)) * _INTERVAL_UNITS[m.group(2)]
    if seconds <= 0:
        raise ValueError("sync_interval must be greater than zero")
    return seconds


class _Base(BaseModel):
    model_config = {"extra": "ignore"}


class UpstreamConfig(_Base):
    name: str = Field(..., min_length=1)
    port: int = Field(..., ge=1, le=65535)
    kind: Literal["http", "stream"]
    max_conns: int | None = Field(None, ge=0)
    max_fails: int | None = Field(None, ge=0)
    fail_timeout: str = ""
    slow_start: str = ""

    @field_validator("fail_timeout", "slow_start", mode="before")
    @classmethod
    def _time_string(cls, v: Any) -> str:
        if v is None:
            return ""
        v = str(v)
        if not is_valid_time(v):
            raise ValueError(f"invalid time string {v!r}")
        return v

    def _upstream(self, scaling_group: str, in_service: bool = False) -> Upstream:
        return Upstream(
            name=self.name,
            port=self.port,
            kind=self.kind,
            scaling_group=scaling_group,
            max_conns=self.max_conns,
            max_fails=self.max_fails,
            fail_timeout=self.fail_timeout or DEFAULT_FAIL_TIMEOUT,
            slow_start=self.slow_start or DEFAULT_SLOW_START,
            in_service=in_service,
        )


class AWSUpstreamConfig(UpstreamConfig):
    autoscaling_group: str = Field(..., min_length=1)
    in_service: bool = False

    def to_upstream(self) -> Upstream:
        return self._upstream(self.autoscaling_group, self.in_service)


class AzureUpstreamConfig(UpstreamConfig):
    virtual_machine_scale_set: str = Field(..., min_length=1)

    def to_upstream(self) -> Upstream:
        return self._upstream(self.virtual_machine_scale_set)


def _unique_names(upstreams: list[UpstreamConfig]) -> None:
    seen: set[str] = set()
    for u in upstreams:
        if u.name in seen:
            raise ValueError(f"duplicate upstream name {u.name!r}")
        seen.add(u.name)


class AWSConfig(_Base):
    region: str = Field(..., min_length=1, description="AWS region, or 'self' to ask the instance metadata service")
    upstreams: list[AWSUpstreamConfig] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _check_names(self) -> AWSConfig:
        _unique_names(self.upstreams)
        return self


class AzureConfig(_Base):
    subscription_id: str = Field(..., min_length=1)
    resource_group_name: str = Field(..., min_length=1)
    upstreams: list[AzureUpstreamConfig] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _check_names(self) -> AzureConfig:
        _unique_names(self.upstreams)
        return self


class CommonConfig(_Base):
    api_endpoint: str = Field(..., min_length=1, description="NGINX Plus API base URL, e.g. http://127.0.0.1:8080/api")
    sync_interval: float = 5.0
    cloud_provider: str = PROVIDER_AWS
    custom_headers: dict[str, str] = Field(default_factory=dict)
    api_version: int | None = Field(None, ge=1)

    @field_validator("api_endpoint")
    @classmethod
    def _http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("api_endpoint must be an http(s) URL")
        return v.rstrip("/")

    @field_validator("sync_interval", mode="before")
    @classmethod
    def _interval(cls, v: Any) -> float:
        if v is None:
            return 5.0
        return parse_interval(v)

    @field_validator("cloud_provider", mode="before")
    @classmethod
    def _provider(cls, v: Any) -> str:
        v = v or PROVIDER_AWS
        if not validate_cloud_provider(v):
            raise ValueError(f"{v!r} is not a valid cloud provider, expected one of {', '.join(CLOUD_PROVIDERS)}")
        return v

    @field_validator("custom_headers", mode="before")
    @classmethod
    def _headers(cls, v: Any) -> dict[str, str]:
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("custom_headers must be a mapping of header name to value")
        if len(v) > MAX_HEADERS:
            raise ValueError(f"at most {MAX_HEADERS} custom headers are allowed, got {len(v)}")
        return {str(k): str(val) for k, val in v.items()}


class AppConfig:
    """Validated configuration: common settings plus the provider section."""

    def __init__(self, common: CommonConfig, provider: AWSConfig | AzureConfig):
        self.common = common
        self.provider = provider

    @property
    def cloud_provider(self) -> str:
        return self.common.cloud_provider

    def upstreams(self) -> list[Upstream]:
        return [u.to_upstream() for u in self.provider.upstreams]


def _format_validation_error(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "<root>"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def parse_config(data: dict[str, Any]) -> AppConfig:
    if not isinstance(data, dict):
        raise ConfigError("configuration must be a YAML mapping")
    try:
        common = CommonConfig.model_validate(data)
        if common.cloud_provider == PROVIDER_AZURE:
            provider: AWSConfig | AzureConfig = AzureConfig.model_validate(data)
        else:
            provider = AWSConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"error validating config: {_format_validation_error(e)}") from e
    return AppConfig(common, provider)


def load_config(path: str) -> AppConfig:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"couldn't read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"couldn't parse config file {path}: {e}") from e
    return parse_config(data or {})
