"""Pytest fixtures for pagetrace tests."""
from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from commands import Command
from drivers.base import Cookie, DriverHandle
from exceptions import DriverError, ElementNotFoundError, UnhandledAlertError, WindowNotFoundError
from script_types import TestScript


class FakeDriver(DriverHandle):
    """In-memory driver. Errors can be queued per method with fail()."""

    def __init__(
        self,
        url: str = "https://example.com/",
        title: str = "Example",
        cookies: Optional[List[Cookie]] = None,
        name: str = "fake",
    ):
        self.name = name
        self.url = url
        self.title = title
        self.cookies = list(cookies or [])
        self.handle = "window-1"
        self.pages: Dict[str, str] = {}
        self.texts: Dict[str, str] = {}
        self.typed: Dict[str, str] = {}
        self.alert_text: Optional[str] = None
        self.calls: List[str] = []
        self.errors: Dict[str, List[BaseException]] = {}
        self.started = False
        self.quit_count = 0

    def fail(self, method: str, exc: BaseException, times: int = 1) -> None:
        self.errors.setdefault(method, []).extend([exc] * times)

    def _hit(self, method: str) -> None:
        self.calls.append(method)
        queue = self.errors.get(method)
        if queue:
            raise queue.pop(0)

    async def start(self) -> None:
        self._hit("start")
        self.started = True

    async def quit(self) -> None:
        self._hit("quit")
        self.quit_count += 1

    async def get_window_handle(self) -> str:
        self._hit("get_window_handle")
        return self.handle

    async def switch_to_window(self, handle: str) -> None:
        self._hit("switch_to_window")
        if handle != self.handle:
            raise WindowNotFoundError(f"no such window: {handle}", handle=handle)

    async def get_current_url(self) -> str:
        self._hit("get_current_url")
        return self.url

    async def get_title(self) -> str:
        self._hit("get_title")
        if self.alert_text is not None:
            raise UnhandledAlertError(
                f"unexpected alert open: {{Alert text : {self.alert_text}}}", alert_text=self.alert_text
            )
        return self.title

    async def get_cookies(self) -> List[Cookie]:
        self._hit("get_cookies")
        return list(self.cookies)

    async def get(self, url: str) -> None:
        self._hit("get")
        self.url = url
        self.title = self.pages.get(url, self.title)

    async def click(self, locator: str) -> None:
        self._hit("click")
        if locator not in self.texts:
            raise ElementNotFoundError(f"Element not found: {locator}", locator=locator)

    async def type(self, locator: str, text: str) -> None:
        self._hit("type")
        self.typed[locator] = text

    async def get_text(self, locator: str) -> str:
        self._hit("get_text")
        try:
            return self.texts[locator]
        except KeyError:
            raise ElementNotFoundError(f"Element not found: {locator}", locator=locator)

    async def _close_alert(self, method: str) -> str:
        self._hit(method)
        if self.alert_text is None:
            raise DriverError("no such alert")
        text, self.alert_text = self.alert_text, None
        return text

    async def accept_alert(self) -> str:
        return await self._close_alert("accept_alert")

    async def dismiss_alert(self) -> str:
        return await self._close_alert("dismiss_alert")


@pytest.fixture
def fake_driver() -> FakeDriver:
    """Driver positioned on https://example.com/ with one session cookie."""
    driver = FakeDriver(
        url="https://example.com/",
        title="Example",
        cookies=[Cookie(name="session", value="abc123", domain="example.com", path="/")],
    )
    driver.pages = {
        "https://example.com/login": "Login",
        "https://example.com/home": "Home",
        "https://other.example.org/": "Other",
    }
    driver.texts = {"id=submit": "Sign in", "css=h1": "Welcome back"}
    return driver


@pytest.fixture
def driver_class() -> type:
    return FakeDriver


@pytest.fixture
def sample_script() -> TestScript:
    """Login flow touching two pages."""
    return TestScript(
        id="login",
        name="Login flow",
        base_url="https://example.com",
        commands=[
            Command("open", "/login", line=1),
            Command("type", "id=user", "alice", line=2),
            Command("click", "id=submit", line=3),
            Command("assertTitle", "Login", line=4),
            Command("open", "/home", line=5),
            Command("verifyText", "css=h1", "Welcome*", line=6),
        ],
        tags={"smoke", "auth"},
    )


@pytest.fixture
def temp_dir() -> Path:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_script_yaml() -> str:
    """Sample YAML script definition."""
    return """
id: signup
name: Signup flow
base_url: https://example.com
tags:
  - smoke
  - signup
commands:
  - [open, /signup]
  - [type, id=email, test@example.com]
  - command: click
    target: id=submit
  - [assertTitle, "glob:Welcome*"]
"""
