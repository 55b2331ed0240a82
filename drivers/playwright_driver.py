"""Playwright-backed driver handle."""
from __future__ import annotations

import asyncio
import itertools
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Dict, List, Literal, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Dialog,
    Error as PlaywrightError,
    Page,
    Playwright,
    async_playwright,
    TimeoutError as PlaywrightTimeout,
)

from drivers.base import Cookie, DriverHandle, parse_locator
from exceptions import (
    DriverError,
    DriverSessionLostError,
    DriverTimeoutError,
    ElementNotFoundError,
    StaleReferenceError,
    UnhandledAlertError,
    WindowNotFoundError,
)

BrowserType = Literal["chromium", "firefox", "webkit"]


def to_selector(locator: str) -> str:
    """Convert a script locator into a Playwright selector."""
    strategy, value = parse_locator(locator)
    if strategy == "id":
        return f'[id="{value}"]'
    if strategy == "name":
        return f'[name="{value}"]'
    if strategy == "xpath":
        return f"xpath={value}"
    if strategy == "link":
        return f'a:has-text("{value}")'
    return f"css={value}"


class PlaywrightDriver(DriverHandle):
    """Driver handle over one Playwright browser context.

    Every page of the context gets a stable handle ("page-1", "page-2", ...).
    Dialogs are held open instead of being auto-dismissed, so page queries
    raise UnhandledAlertError until the script accepts or dismisses them.
    """

    def __init__(
        self,
        browser_type: BrowserType = "firefox",
        headless: bool = True,
        viewport_width: int = 1280,
        viewport_height: int = 800,
        proxy: Optional[str] = None,
        timeout_ms: int = 30000,
        slow_mo: int = 0,
        name: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.browser_type = browser_type
        self.headless = headless
        self.viewport_width = viewport_width
        self.viewport_height = viewport_height
        self.proxy = proxy
        self.timeout_ms = timeout_ms
        self.slow_mo = slow_mo
        self.name = name or browser_type
        self.logger = logger or logging.getLogger("pagetrace.driver")

        self._playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self._handles: Dict[str, Page] = {}
        self._counter = itertools.count(1)
        self._pending_dialog: Optional[Dialog] = None
        self._dialog_opened: Optional[asyncio.Future] = None
        self._blocked_action: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the browser with specified engine."""
        self._playwright = await async_playwright().start()

        browser_launcher = getattr(self._playwright, self.browser_type)
        launch_options: dict[str, Any] = {"headless": self.headless}
        if self.slow_mo > 0:
            launch_options["slow_mo"] = self.slow_mo
        if self.proxy:
            launch_options["proxy"] = {"server": self.proxy}

        self.browser = await browser_launcher.launch(**launch_options)
        self.context = await self.browser.new_context(
            viewport={"width": self.viewport_width, "height": self.viewport_height}
        )
        self.context.set_default_timeout(self.timeout_ms)
        self.context.on("page", self._track_page)
        self.page = await self.context.new_page()
        self._track_page(self.page)

        self.logger.info(
            f"Browser started: {self.name} ({self.browser_type}, headless={self.headless}"
            f"{', proxy=' + self.proxy if self.proxy else ''})"
        )

    async def quit(self) -> None:
        """Close the browser and clean up resources.

        Every close step runs even when an earlier one fails (a crashed
        browser rejects context.close()). The first error is raised afterwards.
        """
        if self._blocked_action is not None:
            self._blocked_action.cancel()
            self._blocked_action = None
        steps = []
        if self.context:
            steps.append(self.context.close)
        if self.browser:
            steps.append(self.browser.close)
        if self._playwright:
            steps.append(self._playwright.stop)
        self.context = self.browser = self._playwright = None
        self.page = None
        self._pending_dialog = None
        self._handles.clear()

        first_error: Optional[Exception] = None
        for step in steps:
            try:
                await step()
            except Exception as e:
                self.logger.debug(f"Close step failed for {self.name}: {e}")
                first_error = first_error or e
        if first_error is not None:
            raise first_error
        self.logger.info(f"Browser closed: {self.name}")

    def _track_page(self, page: Page) -> None:
        if self._handle_of(page) is not None:
            return
        handle = f"page-{next(self._counter)}"
        self._handles[handle] = page
        page.on("dialog", self._handle_dialog)

    def _handle_dialog(self, dialog: Dialog) -> None:
        self.logger.debug(f"Dialog opened: {dialog.type} [{dialog.message}]")
        self._pending_dialog = dialog
        if self._dialog_opened is not None and not self._dialog_opened.done():
            self._dialog_opened.set_result(dialog)

    async def _run_action(self, action: Awaitable[None]) -> None:
        """
        Run a page action that may open a dialog.

        While a dialog listener is registered, Playwright keeps the action
        pending until the dialog is closed. Return as soon as a dialog opens
        and leave the action to finish in the background once the script
        accepts or dismisses it.
        """
        self._dialog_opened = asyncio.get_running_loop().create_future()
        task = asyncio.ensure_future(action)
        try:
            done, _ = await asyncio.wait({task, self._dialog_opened}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            task.cancel()
            raise
        finally:
            self._dialog_opened.cancel()
            self._dialog_opened = None

        if task in done:
            task.result()
            return
        self._blocked_action = task
        task.add_done_callback(self._blocked_action_done)

    def _blocked_action_done(self, task: asyncio.Task) -> None:
        if self._blocked_action is task:
            self._blocked_action = None
        if not task.cancelled() and task.exception() is not None:
            self.logger.debug(f"Action interrupted by dialog ended with: {task.exception()}")

    def _handle_of(self, page: Page) -> Optional[str]:
        for handle, candidate in self._handles.items():
            if candidate is page:
                return handle
        return None

    def _check_alert(self) -> None:
        if self._pending_dialog is not None:
            text = self._pending_dialog.message
            raise UnhandledAlertError(f"unexpected alert open: {{Alert text : {text}}}", alert_text=text)

    def _live_page(self) -> Page:
        if self.context is None:
            raise DriverSessionLostError("Browser session is not running")
        if self.page is None or self.page.is_closed():
            raise WindowNotFoundError("no such window: target window already closed")
        return self.page

    @asynccontextmanager
    async def _translate(self, locator: Optional[str] = None) -> AsyncIterator[None]:
        """Translate Playwright errors into driver errors."""
        try:
            yield
        except PlaywrightTimeout as e:
            if locator:
                raise ElementNotFoundError(f"Element not found: {e.message}", locator=locator) from e
            raise DriverTimeoutError(e.message, timeout=self.timeout_ms) from e
        except PlaywrightError as e:
            text = e.message or ""
            if "not attached to the DOM" in text:
                raise StaleReferenceError(text) from e
            if self.browser is not None and not self.browser.is_connected():
                raise DriverSessionLostError(text) from e
            if "Browser has been closed" in text or "Connection closed" in text:
                raise DriverSessionLostError(text) from e
            if "has been closed" in text:
                raise WindowNotFoundError(text) from e
            raise DriverError(text) from e

    # ─────────────────────────────────────────────────────────────────────────
    # Page-state queries
    # ─────────────────────────────────────────────────────────────────────────

    async def get_window_handle(self) -> str:
        page = self._live_page()
        handle = self._handle_of(page)
        if handle is None:
            raise WindowNotFoundError("no such window: focused page is not tracked")
        return handle

    async def switch_to_window(self, handle: str) -> None:
        page = self._handles.get(handle)
        if page is None or page.is_closed():
            raise WindowNotFoundError(f"no such window: {handle}", handle=handle)
        self._check_alert()
        async with self._translate():
            await page.bring_to_front()
        self.page = page

    async def get_current_url(self) -> str:
        return self._live_page().url

    async def get_title(self) -> str:
        page = self._live_page()
        self._check_alert()
        async with self._translate():
            return await page.title()

    async def get_cookies(self) -> List[Cookie]:
        self._live_page()
        self._check_alert()
        async with self._translate():
            cookies = await self.context.cookies()
        return [Cookie.from_dict(dict(c)) for c in cookies]

    # ─────────────────────────────────────────────────────────────────────────
    # Commands
    # ─────────────────────────────────────────────────────────────────────────

    async def get(self, url: str) -> None:
        page = self._live_page()
        self._check_alert()
        async with self._translate():
            await self._run_action(page.goto(url, wait_until="load"))

    async def click(self, locator: str) -> None:
        page = self._live_page()
        self._check_alert()
        async with self._translate(locator):
            await self._run_action(page.click(to_selector(locator)))

    async def type(self, locator: str, text: str) -> None:
        page = self._live_page()
        self._check_alert()
        async with self._translate(locator):
            await self._run_action(page.fill(to_selector(locator), text))

    async def get_text(self, locator: str) -> str:
        page = self._live_page()
        self._check_alert()
        async with self._translate(locator):
            return await page.inner_text(to_selector(locator))

    async def _close_dialog(self, accept: bool) -> str:
        dialog = self._pending_dialog
        if dialog is None:
            raise DriverError("no such alert")
        self._pending_dialog = None
        async with self._translate():
            if accept:
                await dialog.accept()
            else:
                await dialog.dismiss()
        return dialog.message

    async def accept_alert(self) -> str:
        return await self._close_dialog(accept=True)

    async def dismiss_alert(self) -> str:
        return await self._close_dialog(accept=False)
