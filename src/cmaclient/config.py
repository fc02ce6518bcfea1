# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""Immutable client configuration, read from ``CMA_*`` environment variables."""

import re

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ("ClientConfig",)

_PERCENTAGE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*%\s*$")


def _default_headers() -> dict[str, str]:
    return {"content-type": "application/vnd.contentful.management.v1+json"}


class ClientConfig(BaseSettings):
    """
    Settings shared by every layer of the client.

    Values come from keyword arguments, then ``CMA_*`` environment
    variables, then ``.env`` and ``.secrets.env`` files. Instances are
    frozen: build a new one to change a setting.

    Example:
        ```python
        config = ClientConfig(access_token="CFPAT-...", rate_limit="80%")
        client = ManagementClient(config)
        ```
    """

    model_config = SettingsConfigDict(
        env_prefix="CMA_",
        env_file=(".env", ".secrets.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    host: str = "https://api.contentful.com"
    access_token: SecretStr | None = None
    user_agent: str = "cmaclient"
    default_headers: dict[str, str] = Field(default_factory=_default_headers)
    timeout: float = Field(default=30.0, gt=0)

    # retries
    retry_on_error: bool = True
    retry_limit: int = Field(default=5, ge=1)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=64.0, ge=0)
    retry_on_status: tuple[int, ...] = (500, 502, 503)
    conflict_retry_limit: int = Field(default=3, ge=0)

    # "auto", a number of requests per second, or a percentage like "80%"
    rate_limit: str | float = "auto"

    # polling and bulk operations
    poll_interval: float = Field(default=1.0, ge=0)
    poll_max_attempts: int | None = Field(default=30, ge=1)
    poll_max_duration: float | None = Field(default=None, gt=0)
    batch_concurrency: int = Field(default=5, ge=1)

    # external API contract
    rate_limit_limit_header: str = "X-Contentful-RateLimit-Second-Limit"
    rate_limit_remaining_header: str = "X-Contentful-RateLimit-Second-Remaining"
    rate_limit_reset_header: str = "X-Contentful-RateLimit-Reset"
    version_header: str = "X-Contentful-Version"
    source_environment_header: str = "X-Contentful-Source-Environment"

    @field_validator("host")
    def _strip_host(cls, v: str) -> str:
        v = v.rstrip("/")
        if not v.startswith(("http://", "https://")):
            v = f"https://{v}"
        return v

    @field_validator("rate_limit")
    def _validate_rate_limit(cls, v):
        if isinstance(v, (int, float)):
            if v <= 0:
                raise ValueError("rate_limit must be positive")
            return float(v)
        text = v.strip().lower()
        if text == "auto":
            return text
        match = _PERCENTAGE.match(text)
        if match:
            pct = float(match.group(1))
            if not 0 < pct <= 100:
                raise ValueError("rate_limit percentage must be in (0, 100]")
            return f"{match.group(1)}%"
        try:
            rate = float(text)
        except ValueError:
            raise ValueError(
                f"Invalid rate_limit {v!r}: expected 'auto', a number or 'NN%'"
            ) from None
        if rate <= 0:
            raise ValueError("rate_limit must be positive")
        return rate

    @model_validator(mode="after")
    def _validate_poll_bounds(self):
        if self.poll_max_attempts is None and self.poll_max_duration is None:
            raise ValueError("Set poll_max_attempts or poll_max_duration")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must not be smaller than base_delay")
        return self

    def auth_headers(self) -> dict[str, str]:
        if self.access_token is None:
            return {}
        return {"authorization": f"Bearer {self.access_token.get_secret_value()}"}
