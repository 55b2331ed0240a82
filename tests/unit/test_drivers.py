"""Unit tests for driver backends and the backend registry."""
from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, PropertyMock

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeout
from selenium.common.exceptions import (
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

from config import BrowserConfig
from drivers.base import Cookie, parse_locator
from drivers.playwright_driver import PlaywrightDriver, to_selector
from drivers.registry import DriverRegistry, default_registry
from drivers.selenium_driver import SeleniumDriver, translate_error
from exceptions import (
    BackendNotFoundError,
    ConfigurationError,
    DriverError,
    DriverSessionLostError,
    DriverTimeoutError,
    ElementNotFoundError,
    FrameNotFoundError,
    StaleReferenceError,
    UnhandledAlertError,
    WindowNotFoundError,
)
from page_info import PageInfoStatus, capture_page_info


class TestLocators:
    """Tests for locator parsing."""

    @pytest.mark.parametrize(
        "locator, expected",
        [
            ("id=user", ("id", "user")),
            ("name=q", ("name", "q")),
            ("css=div > a", ("css", "div > a")),
            ("xpath=//a[@href='x']", ("xpath", "//a[@href='x']")),
            ("link=Sign in", ("link", "Sign in")),
            ("//button", ("xpath", "//button")),
            ("(//a)[2]", ("xpath", "(//a)[2]")),
            ("input[type=text]", ("css", "input[type=text]")),
        ],
    )
    def test_parse_locator(self, locator, expected):
        assert parse_locator(locator) == expected

    def test_to_selector(self):
        assert to_selector("id=user") == '[id="user"]'
        assert to_selector("//button") == "xpath=//button"
        assert to_selector("link=Home") == 'a:has-text("Home")'
        assert to_selector("h1") == "css=h1"


class TestCookie:
    """Tests for Cookie.from_dict."""

    def test_playwright_session_cookie(self):
        cookie = Cookie.from_dict(
            {"name": "sid", "value": "1", "domain": "a.com", "path": "/", "expires": -1, "httpOnly": True}
        )
        assert cookie.expiry is None
        assert cookie.http_only is True

    def test_selenium_cookie(self):
        cookie = Cookie.from_dict({"name": "sid", "value": "1", "expiry": 1700000000, "secure": True})
        assert cookie.expiry == 1700000000
        assert cookie.secure is True
        assert cookie.http_only is False


class TestPlaywrightDriver:
    """Tests for PlaywrightDriver behaviour that needs no browser."""

    @pytest.mark.asyncio
    async def test_queries_before_start_mean_lost_session(self):
        driver = PlaywrightDriver()
        with pytest.raises(DriverSessionLostError):
            await driver.get_current_url()

    @pytest.mark.asyncio
    async def test_quit_before_start_is_harmless(self):
        driver = PlaywrightDriver(name="firefox")
        await driver.quit()
        await driver.quit()

    @pytest.mark.asyncio
    async def test_unknown_window(self):
        driver = PlaywrightDriver()
        with pytest.raises(WindowNotFoundError):
            await driver.switch_to_window("page-9")

    @pytest.mark.asyncio
    async def test_pending_dialog_blocks_queries(self):
        driver = PlaywrightDriver()
        driver.context = MagicMock()
        driver.page = MagicMock()
        driver.page.is_closed.return_value = False
        driver._handle_dialog(SimpleNamespace(type="confirm", message="Leave?"))

        with pytest.raises(UnhandledAlertError) as exc_info:
            await driver.get_title()
        assert exc_info.value.alert_text == "Leave?"

    @pytest.mark.asyncio
    async def test_dismiss_without_dialog(self):
        driver = PlaywrightDriver()
        with pytest.raises(DriverError, match="no such alert"):
            await driver.dismiss_alert()

    @pytest.mark.asyncio
    async def test_click_returns_when_dialog_opens(self):
        driver = PlaywrightDriver()
        closed = asyncio.Event()
        dialog = SimpleNamespace(type="alert", message="Saved", accept=AsyncMock(side_effect=closed.set))

        async def click(selector):
            # A page with a dialog listener stays blocked until the dialog is closed.
            driver._handle_dialog(dialog)
            await closed.wait()

        driver.context = MagicMock()
        driver.page = MagicMock()
        driver.page.is_closed.return_value = False
        driver.page.click = click

        await asyncio.wait_for(driver.click("id=alertButton"), timeout=1)
        blocked = driver._blocked_action
        assert blocked is not None
        with pytest.raises(UnhandledAlertError):
            await driver.get_title()

        assert await driver.accept_alert() == "Saved"
        await asyncio.wait_for(blocked, timeout=1)
        assert driver._blocked_action is None

    @pytest.mark.asyncio
    async def test_click_timeout_means_element_not_found(self):
        driver = PlaywrightDriver()
        driver.context = MagicMock()
        driver.page = MagicMock()
        driver.page.is_closed.return_value = False
        driver.page.click = AsyncMock(side_effect=PlaywrightTimeout("Timeout 30000ms exceeded."))

        with pytest.raises(ElementNotFoundError) as exc_info:
            await driver.click("id=missing")
        assert exc_info.value.locator == "id=missing"
        assert driver._blocked_action is None

    @pytest.mark.asyncio
    async def test_quit_runs_every_close_step(self):
        driver = PlaywrightDriver()
        context, browser, playwright = MagicMock(), MagicMock(), MagicMock()
        context.close = AsyncMock(side_effect=RuntimeError("Target closed"))
        browser.close = AsyncMock()
        playwright.stop = AsyncMock()
        driver.context, driver.browser, driver._playwright = context, browser, playwright

        with pytest.raises(RuntimeError, match="Target closed"):
            await driver.quit()

        browser.close.assert_awaited_once_with()
        playwright.stop.assert_awaited_once_with()
        assert driver.context is None
        await driver.quit()


class TestTranslateError:
    """Tests for Selenium error translation."""

    @pytest.mark.parametrize(
        "exc, expected",
        [
            (NoSuchWindowException("no such window"), WindowNotFoundError),
            (NoSuchFrameException("no such frame"), FrameNotFoundError),
            (NoSuchElementException("no such element"), ElementNotFoundError),
            (StaleElementReferenceException("stale"), StaleReferenceError),
            (TimeoutException("timeout"), DriverTimeoutError),
            (InvalidSessionIdException("invalid session id"), DriverSessionLostError),
            (WebDriverException("something else"), DriverError),
        ],
    )
    def test_mapping(self, exc, expected):
        translated = translate_error(exc)
        assert type(translated) is expected

    def test_alert_text_is_kept(self):
        exc = UnexpectedAlertPresentException(msg="unexpected alert open", alert_text="Sure?")
        translated = translate_error(exc)
        assert isinstance(translated, UnhandledAlertError)
        assert translated.alert_text == "Sure?"

    def test_missing_alert(self):
        assert str(translate_error(NoAlertPresentException())) == "no such alert"

    def test_message_excludes_stacktrace(self):
        exc = NoSuchElementException("no such element", stacktrace=["frame 1", "frame 2"])
        translated = str(translate_error(exc))
        assert translated.startswith("no such element")
        assert "frame 1" not in translated

    def test_locator_is_attached(self):
        translated = translate_error(NoSuchElementException("no such element"), locator="id=x")
        assert translated.locator == "id=x"


@pytest.fixture
def webdriver_mock():
    mock = MagicMock()
    mock.current_window_handle = "CDwindow-1"
    mock.current_url = "http://intranet.local:8080/app"
    mock.title = "Intranet"
    mock.get_cookies.return_value = [{"name": "JSESSIONID", "value": "x1", "path": "/"}]
    return mock


class TestSeleniumDriver:
    """Tests for SeleniumDriver over a mocked WebDriver."""

    @pytest.mark.asyncio
    async def test_start_sets_page_load_timeout(self, webdriver_mock):
        driver = SeleniumDriver(browser="edge", timeout_ms=5000, driver_factory=lambda: webdriver_mock)
        await driver.start()

        webdriver_mock.set_page_load_timeout.assert_called_once_with(5.0)
        assert driver.name == "edge"

    @pytest.mark.asyncio
    async def test_calls_before_start_mean_lost_session(self):
        driver = SeleniumDriver(driver_factory=MagicMock)
        with pytest.raises(DriverSessionLostError):
            await driver.get_title()

    @pytest.mark.asyncio
    async def test_capture(self, webdriver_mock):
        driver = SeleniumDriver(driver_factory=lambda: webdriver_mock)
        await driver.start()

        info = await capture_page_info(driver)

        webdriver_mock.switch_to.window.assert_called_once_with("CDwindow-1")
        assert info.message == "URL: [http://intranet.local:8080/app] / Title: [Intranet]"
        assert info.origin == "http://intranet.local:8080"
        assert info.cookies["JSESSIONID"].value == "x1"

    @pytest.mark.asyncio
    async def test_capture_with_closed_window(self, webdriver_mock):
        type(webdriver_mock).current_window_handle = PropertyMock(
            side_effect=NoSuchWindowException("no such window: target window already closed")
        )
        driver = SeleniumDriver(driver_factory=lambda: webdriver_mock)
        await driver.start()

        info = await capture_page_info(driver)

        assert info.status is PageInfoStatus.NO_FOCUS
        assert info.message == "No focused window/frame."

    @pytest.mark.asyncio
    async def test_capture_with_open_alert(self, webdriver_mock):
        type(webdriver_mock).title = PropertyMock(
            side_effect=UnexpectedAlertPresentException(
                msg="unexpected alert open: {Alert text : Sure?}", alert_text="Sure?"
            )
        )
        driver = SeleniumDriver(driver_factory=lambda: webdriver_mock)
        await driver.start()

        info = await capture_page_info(driver)

        assert info.status is PageInfoStatus.ALERT_BLOCKED
        assert info.message == "No page information: [unexpected alert open: {Alert text : Sure?}]"

    @pytest.mark.asyncio
    async def test_click_missing_element(self, webdriver_mock):
        webdriver_mock.find_element.side_effect = NoSuchElementException("no such element")
        driver = SeleniumDriver(driver_factory=lambda: webdriver_mock)
        await driver.start()

        with pytest.raises(ElementNotFoundError) as exc_info:
            await driver.click("id=submit")
        assert exc_info.value.locator == "id=submit"
        webdriver_mock.find_element.assert_called_once_with("id", "submit")

    @pytest.mark.asyncio
    async def test_type_clears_first(self, webdriver_mock):
        element = webdriver_mock.find_element.return_value
        driver = SeleniumDriver(driver_factory=lambda: webdriver_mock)
        await driver.start()

        await driver.type("name=q", "pagetrace")

        element.clear.assert_called_once_with()
        element.send_keys.assert_called_once_with("pagetrace")

    @pytest.mark.asyncio
    async def test_accept_alert(self, webdriver_mock):
        alert = webdriver_mock.switch_to.alert
        alert.text = "Saved"
        driver = SeleniumDriver(driver_factory=lambda: webdriver_mock)
        await driver.start()

        assert await driver.accept_alert() == "Saved"
        alert.accept.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_quit_is_idempotent(self, webdriver_mock):
        driver = SeleniumDriver(driver_factory=lambda: webdriver_mock)
        await driver.start()

        await driver.quit()
        await driver.quit()

        webdriver_mock.quit.assert_called_once_with()


class TestRegistry:
    """Tests for DriverRegistry."""

    def test_default_backends(self):
        names = default_registry().names()
        for name in ("firefox", "chrome", "headless", "safari", "ie", "edge"):
            assert name in names

    def test_lookup_is_case_insensitive(self):
        assert "Firefox" in default_registry()

    def test_unknown_backend(self):
        with pytest.raises(BackendNotFoundError) as exc_info:
            default_registry().build("netscape", BrowserConfig())
        assert "firefox" in exc_info.value.available

    def test_duplicate_registration(self, driver_class):
        registry = DriverRegistry()
        registry.register("fake", lambda config, logger: driver_class())
        with pytest.raises(ConfigurationError):
            registry.register("fake", lambda config, logger: driver_class())
        registry.register("fake", lambda config, logger: driver_class(name="other"), replace=True)
        assert registry.build("fake", BrowserConfig()).name == "other"

    def test_headless_backend_forces_headless(self):
        driver = default_registry().build("headless", BrowserConfig(headless=False))
        assert isinstance(driver, PlaywrightDriver)
        assert driver.headless is True
        assert driver.name == "headless"

    def test_selenium_backend_gets_proxy(self):
        driver = default_registry().build("ie", BrowserConfig(proxy="http://proxy:3128"))
        assert isinstance(driver, SeleniumDriver)
        assert driver.proxy == "http://proxy:3128"

    @pytest.mark.asyncio
    async def test_create_starts_driver(self, driver_class):
        registry = DriverRegistry()
        registry.register("fake", lambda config, logger: driver_class())

        driver = await registry.create("fake", BrowserConfig())

        assert driver.started

    @pytest.mark.asyncio
    async def test_create_quits_driver_that_fails_to_start(self, driver_class):
        created = []

        def construct(config, logger):
            driver = driver_class()
            driver.fail("start", RuntimeError("Executable doesn't exist"))
            created.append(driver)
            return driver

        registry = DriverRegistry()
        registry.register("fake", construct)

        with pytest.raises(RuntimeError, match="Executable doesn't exist"):
            await registry.create("fake", BrowserConfig())
        assert created[0].quit_count == 1

    @pytest.mark.asyncio
    async def test_create_keeps_start_error_when_cleanup_fails(self, driver_class):
        def construct(config, logger):
            driver = driver_class()
            driver.fail("start", RuntimeError("launch failed"))
            driver.fail("quit", RuntimeError("already gone"))
            return driver

        registry = DriverRegistry()
        registry.register("fake", construct)

        with pytest.raises(RuntimeError, match="launch failed"):
            await registry.create("fake", BrowserConfig())
