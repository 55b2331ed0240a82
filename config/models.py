"""Pydantic configuration models for pagetrace."""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from exceptions import ConfigFileNotFoundError, ConfigurationError
from page_info import InfoType


# Load .env file if present
load_dotenv()


class BrowserConfig(BaseModel):
    """Browser backend configuration."""

    browser: str = Field(
        default="firefox",
        description="Registered backend name (firefox, chrome, headless, safari, ie, ...)",
    )
    headless: bool = Field(
        default=True,
        description="Run browser in headless mode",
    )
    viewport_width: int = Field(
        default=1280,
        ge=320,
        le=3840,
        description="Browser viewport width",
    )
    viewport_height: int = Field(
        default=800,
        ge=240,
        le=2160,
        description="Browser viewport height",
    )
    proxy: Optional[str] = Field(
        default=None,
        description="Proxy server passed to the backend, e.g. http://localhost:8080",
    )
    remote_url: Optional[str] = Field(
        default=None,
        description="Remote WebDriver URL for Selenium backends",
    )
    timeout_ms: int = Field(
        default=30000,
        ge=100,
        le=600000,
        description="Default timeout for driver operations in milliseconds",
    )
    slow_mo: int = Field(
        default=0,
        ge=0,
        le=5000,
        description="Slow down browser operations by this many ms",
    )

    @field_validator("browser")
    @classmethod
    def normalize_browser(cls, v: str) -> str:
        """Backend names are case-insensitive."""
        return v.strip().lower()

    @model_validator(mode="before")
    @classmethod
    def load_from_env(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Load values from environment variables if not explicitly set."""
        env_mapping = {
            "browser": "PAGETRACE_BROWSER",
            "proxy": "PAGETRACE_PROXY",
            "remote_url": "PAGETRACE_REMOTE_URL",
        }
        for field_name, env_var in env_mapping.items():
            if field_name not in data or data[field_name] is None:
                env_value = os.getenv(env_var)
                if env_value:
                    data[field_name] = env_value
        return data


class ExecutionConfig(BaseModel):
    """Command execution and diagnostics configuration."""

    max_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Extra attempts for a command failing with a transient driver error",
    )
    retry_wait_min: float = Field(
        default=0.5,
        ge=0.0,
        le=60.0,
        description="Initial backoff between retries in seconds",
    )
    retry_wait_max: float = Field(
        default=4.0,
        ge=0.0,
        le=300.0,
        description="Upper bound of the backoff between retries in seconds",
    )
    disabled_page_info: List[str] = Field(
        default_factory=list,
        description="Page information not captured after commands: title, url, cookie",
    )
    parallel_workers: int = Field(
        default=1,
        ge=1,
        le=16,
        description="Number of scripts run at the same time, each in its own session",
    )

    @field_validator("disabled_page_info", mode="before")
    @classmethod
    def parse_disabled(cls, v: Any) -> List[str]:
        """Accept a comma separated string or a list and check the names."""
        if v is None:
            return []
        if isinstance(v, str):
            v = [item for item in v.split(",") if item.strip()]
        return sorted(t.value for t in InfoType.parse(v))

    @model_validator(mode="after")
    def check_wait_bounds(self) -> "ExecutionConfig":
        if self.retry_wait_min > self.retry_wait_max:
            raise ValueError("retry_wait_min must not exceed retry_wait_max")
        return self

    @property
    def disabled_info_types(self) -> frozenset[InfoType]:
        return InfoType.parse(self.disabled_page_info)


class PagetraceConfig(BaseModel):
    """Root configuration model combining all config sections."""

    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)

    verbose: bool = Field(
        default=False,
        description="Enable verbose logging",
    )
    log_file: Optional[Path] = Field(
        default=None,
        description="Also write logs to this file (rotated)",
    )

    @classmethod
    def from_flat_dict(cls, data: dict[str, Any]) -> "PagetraceConfig":
        """Create config from a flat dictionary (legacy format compatibility)."""
        browser_keys = set(BrowserConfig.model_fields)
        execution_keys = set(ExecutionConfig.model_fields)

        nested: dict[str, Any] = {
            "browser": {},
            "execution": {},
        }

        for key, value in data.items():
            if key in browser_keys:
                nested["browser"][key] = value
            elif key in execution_keys:
                nested["execution"][key] = value
            elif key in ("verbose", "log_file"):
                nested[key] = value

        return cls.model_validate(nested)


def load_config(
    config_path: Optional[Path] = None,
    cli_overrides: Optional[dict[str, Any]] = None,
) -> PagetraceConfig:
    """
    Load configuration from file with CLI overrides.

    Priority (highest to lowest):
    1. CLI arguments
    2. Config file
    3. Environment variables
    4. Defaults

    An explicitly given config_path must exist; the default pagetrace.json
    is optional.
    """
    config_data: dict[str, Any] = {}

    if config_path is None:
        config_path = Path("pagetrace.json")
    elif not config_path.exists():
        raise ConfigFileNotFoundError(str(config_path))

    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                if config_path.suffix in {".yaml", ".yml"}:
                    config_data = yaml.safe_load(f) or {}
                else:
                    config_data = json.load(f)
        except (ValueError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Invalid config file: {exc}", {"file_path": str(config_path)}) from exc

    # Check if it's flat or nested format
    is_flat = not any(isinstance(config_data.get(key), dict) for key in ("browser", "execution"))

    if is_flat:
        config = PagetraceConfig.from_flat_dict(config_data)
    else:
        config = PagetraceConfig.model_validate(config_data)

    if cli_overrides:
        config_dict = config.model_dump()
        _apply_overrides(config_dict, cli_overrides)
        config = PagetraceConfig.model_validate(config_dict)

    return config


def _apply_overrides(config_dict: dict[str, Any], overrides: dict[str, Any]) -> None:
    """Apply CLI overrides to config dictionary."""
    override_mapping = {
        "browser": ("browser", "browser"),
        "headless": ("browser", "headless"),
        "proxy": ("browser", "proxy"),
        "remote_url": ("browser", "remote_url"),
        "max_retries": ("execution", "max_retries"),
        "disabled_page_info": ("execution", "disabled_page_info"),
        "parallel": ("execution", "parallel_workers"),
        "verbose": ("verbose", None),
        "log_file": ("log_file", None),
    }

    for key, value in overrides.items():
        if value is None:
            continue

        if key == "headful":
            config_dict["browser"]["headless"] = not value
            continue

        mapping = override_mapping.get(key)
        if mapping:
            section, field = mapping
            if field is None:
                config_dict[section] = value
            else:
                config_dict[section][field] = value
