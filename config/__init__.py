"""Configuration module for pagetrace."""
from config.models import (
    BrowserConfig,
    ExecutionConfig,
    PagetraceConfig,
    load_config,
)

__all__ = [
    "BrowserConfig",
    "ExecutionConfig",
    "PagetraceConfig",
    "load_config",
]
