"""Selenium WebDriver-backed driver handle."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional, TypeVar

from selenium import webdriver
from selenium.common.exceptions import (
    ElementNotInteractableException,
    InvalidSessionIdException,
    NoAlertPresentException,
    NoSuchElementException,
    NoSuchFrameException,
    NoSuchWindowException,
    StaleElementReferenceException,
    TimeoutException,
    UnexpectedAlertPresentException,
    WebDriverException,
)
from selenium.webdriver.common.by import By

from drivers.base import Cookie, DriverHandle, parse_locator
from exceptions import (
    DriverError,
    DriverSessionLostError,
    DriverTimeoutError,
    ElementNotFoundError,
    ElementNotInteractableError,
    FrameNotFoundError,
    StaleReferenceError,
    UnhandledAlertError,
    WindowNotFoundError,
)

T = TypeVar("T")

_BY = {
    "id": By.ID,
    "name": By.NAME,
    "css": By.CSS_SELECTOR,
    "xpath": By.XPATH,
    "link": By.LINK_TEXT,
}


def translate_error(exc: WebDriverException, locator: Optional[str] = None) -> DriverError:
    """Map a Selenium exception onto the driver error hierarchy."""
    # exc.msg excludes the stacktrace block appended by str(exc)
    text = exc.msg or type(exc).__name__
    if isinstance(exc, NoSuchWindowException):
        return WindowNotFoundError(text)
    if isinstance(exc, NoSuchFrameException):
        return FrameNotFoundError(text)
    if isinstance(exc, NoSuchElementException):
        return ElementNotFoundError(text, locator=locator)
    if isinstance(exc, StaleElementReferenceException):
        return StaleReferenceError(text)
    if isinstance(exc, UnexpectedAlertPresentException):
        return UnhandledAlertError(text, alert_text=exc.alert_text)
    if isinstance(exc, ElementNotInteractableException):
        return ElementNotInteractableError(text, locator=locator)
    if isinstance(exc, TimeoutException):
        return DriverTimeoutError(text)
    if isinstance(exc, InvalidSessionIdException):
        return DriverSessionLostError(text)
    if isinstance(exc, NoAlertPresentException):
        return DriverError("no such alert")
    return DriverError(text)


class SeleniumDriver(DriverHandle):
    """Driver handle over a blocking Selenium WebDriver.

    Calls run in a worker thread so the event loop stays responsive; one
    handle still only ever runs one call at a time.
    """

    def __init__(
        self,
        browser: str = "ie",
        headless: bool = True,
        proxy: Optional[str] = None,
        remote_url: Optional[str] = None,
        timeout_ms: int = 30000,
        name: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
        driver_factory: Optional[Callable[[], Any]] = None,
    ):
        self.browser = browser
        self.headless = headless
        self.proxy = proxy
        self.remote_url = remote_url
        self.timeout_ms = timeout_ms
        self.name = name or browser
        self.logger = logger or logging.getLogger("pagetrace.driver")
        self._driver_factory = driver_factory or self._build_webdriver
        self.webdriver: Any = None

    def _build_options(self) -> Any:
        if self.browser == "ie":
            options = webdriver.IeOptions()
        elif self.browser == "edge":
            options = webdriver.EdgeOptions()
        elif self.browser == "chrome":
            options = webdriver.ChromeOptions()
        elif self.browser == "firefox":
            options = webdriver.FirefoxOptions()
        else:
            raise DriverError(f"Selenium backend does not support {self.browser}")
        if self.headless and self.browser in ("chrome", "edge", "firefox"):
            options.add_argument("--headless")
        if self.proxy:
            if self.browser == "firefox":
                options.set_preference("network.proxy.type", 1)
                host, _, port = self.proxy.split("://")[-1].partition(":")
                options.set_preference("network.proxy.http", host)
                options.set_preference("network.proxy.http_port", int(port or 80))
                options.set_preference("network.proxy.ssl", host)
                options.set_preference("network.proxy.ssl_port", int(port or 80))
            else:
                options.add_argument(f"--proxy-server={self.proxy}")
        return options

    def _build_webdriver(self) -> Any:
        options = self._build_options()
        if self.remote_url:
            return webdriver.Remote(command_executor=self.remote_url, options=options)
        constructors = {
            "ie": webdriver.Ie,
            "edge": webdriver.Edge,
            "chrome": webdriver.Chrome,
            "firefox": webdriver.Firefox,
        }
        return constructors[self.browser](options=options)

    async def _call(self, fn: Callable[..., T], *args: Any, locator: Optional[str] = None) -> T:
        if self.webdriver is None:
            raise DriverSessionLostError("WebDriver session is not running")
        try:
            return await asyncio.to_thread(fn, *args)
        except WebDriverException as e:
            raise translate_error(e, locator) from e

    async def start(self) -> None:
        try:
            self.webdriver = await asyncio.to_thread(self._driver_factory)
        except WebDriverException as e:
            raise translate_error(e) from e
        self.webdriver.set_page_load_timeout(self.timeout_ms / 1000)
        self.logger.info(
            f"Browser started: {self.name} (selenium {self.browser}"
            f"{', remote=' + self.remote_url if self.remote_url else ''}"
            f"{', proxy=' + self.proxy if self.proxy else ''})"
        )

    async def quit(self) -> None:
        if self.webdriver is None:
            return
        driver, self.webdriver = self.webdriver, None
        try:
            await asyncio.to_thread(driver.quit)
        except WebDriverException as e:
            raise translate_error(e) from e
        finally:
            self.logger.info(f"Browser closed: {self.name}")

    # ─────────────────────────────────────────────────────────────────────────
    # Page-state queries
    # ─────────────────────────────────────────────────────────────────────────

    async def get_window_handle(self) -> str:
        return await self._call(lambda: self.webdriver.current_window_handle)

    async def switch_to_window(self, handle: str) -> None:
        await self._call(lambda: self.webdriver.switch_to.window(handle))

    async def get_current_url(self) -> str:
        return await self._call(lambda: self.webdriver.current_url)

    async def get_title(self) -> str:
        return await self._call(lambda: self.webdriver.title)

    async def get_cookies(self) -> List[Cookie]:
        cookies = await self._call(lambda: self.webdriver.get_cookies())
        return [Cookie.from_dict(c) for c in cookies]

    # ─────────────────────────────────────────────────────────────────────────
    # Commands
    # ─────────────────────────────────────────────────────────────────────────

    def _find(self, locator: str) -> Any:
        strategy, value = parse_locator(locator)
        return self.webdriver.find_element(_BY[strategy], value)

    async def get(self, url: str) -> None:
        await self._call(lambda: self.webdriver.get(url))

    async def click(self, locator: str) -> None:
        await self._call(lambda: self._find(locator).click(), locator=locator)

    async def type(self, locator: str, text: str) -> None:
        def _type() -> None:
            element = self._find(locator)
            element.clear()
            element.send_keys(text)

        await self._call(_type, locator=locator)

    async def get_text(self, locator: str) -> str:
        return await self._call(lambda: self._find(locator).text, locator=locator)

    async def _close_alert(self, accept: bool) -> str:
        def _close() -> str:
            alert = self.webdriver.switch_to.alert
            text = alert.text
            if accept:
                alert.accept()
            else:
                alert.dismiss()
            return text

        return await self._call(_close)

    async def accept_alert(self) -> str:
        return await self._close_alert(accept=True)

    async def dismiss_alert(self) -> str:
        return await self._close_alert(accept=False)
