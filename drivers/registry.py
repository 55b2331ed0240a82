"""Registry mapping backend identifiers to driver constructors."""
from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from config.models import BrowserConfig
from drivers.base import DriverHandle
from drivers.playwright_driver import PlaywrightDriver
from drivers.selenium_driver import SeleniumDriver
from exceptions import BackendNotFoundError, ConfigurationError

DriverConstructor = Callable[[BrowserConfig, logging.Logger], DriverHandle]


class DriverRegistry:
    """Named driver constructors. Add-on backends register themselves here."""

    def __init__(self) -> None:
        self._constructors: Dict[str, DriverConstructor] = {}

    def register(self, name: str, constructor: DriverConstructor, replace: bool = False) -> None:
        key = name.strip().lower()
        if key in self._constructors and not replace:
            raise ConfigurationError(f"Browser backend already registered: {key}")
        self._constructors[key] = constructor

    def names(self) -> List[str]:
        return sorted(self._constructors)

    def __contains__(self, name: str) -> bool:
        return name.strip().lower() in self._constructors

    def build(self, name: str, config: BrowserConfig, logger: Optional[logging.Logger] = None) -> DriverHandle:
        """Construct an unstarted handle."""
        constructor = self._constructors.get(name.strip().lower())
        if constructor is None:
            raise BackendNotFoundError(name, self.names())
        return constructor(config, logger or logging.getLogger("pagetrace.driver"))

    async def create(self, name: str, config: BrowserConfig, logger: Optional[logging.Logger] = None) -> DriverHandle:
        """Construct and start a handle. A handle that fails to start is quit before the error propagates."""
        logger = logger or logging.getLogger("pagetrace.driver")
        driver = self.build(name, config, logger)
        try:
            await driver.start()
        except BaseException:
            try:
                await driver.quit()
            except Exception as e:
                logger.debug(f"Ignoring error while closing half-started driver {name}: {e}")
            raise
        return driver


def _playwright(engine: str, name: str, force_headless: bool = False) -> DriverConstructor:
    def construct(config: BrowserConfig, logger: logging.Logger) -> DriverHandle:
        return PlaywrightDriver(
            browser_type=engine,
            headless=True if force_headless else config.headless,
            viewport_width=config.viewport_width,
            viewport_height=config.viewport_height,
            proxy=config.proxy,
            timeout_ms=config.timeout_ms,
            slow_mo=config.slow_mo,
            name=name,
            logger=logger,
        )

    return construct


def _selenium(browser: str) -> DriverConstructor:
    def construct(config: BrowserConfig, logger: logging.Logger) -> DriverHandle:
        return SeleniumDriver(
            browser=browser,
            headless=config.headless,
            proxy=config.proxy,
            remote_url=config.remote_url,
            timeout_ms=config.timeout_ms,
            logger=logger,
        )

    return construct


def default_registry() -> DriverRegistry:
    """Registry with the built-in backends."""
    registry = DriverRegistry()
    registry.register("firefox", _playwright("firefox", "firefox"))
    registry.register("chrome", _playwright("chromium", "chrome"))
    registry.register("chromium", _playwright("chromium", "chromium"))
    registry.register("headless", _playwright("chromium", "headless", force_headless=True))
    registry.register("safari", _playwright("webkit", "safari"))
    registry.register("webkit", _playwright("webkit", "webkit"))
    registry.register("ie", _selenium("ie"))
    registry.register("edge", _selenium("edge"))
    return registry
