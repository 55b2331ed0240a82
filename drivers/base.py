"""Driver handle contract shared by all browser backends."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

LOCATOR_STRATEGIES = ("id", "name", "css", "xpath", "link")


@dataclass(frozen=True)
class Cookie:
    """Cookie visible to the browser at capture time."""

    name: str
    value: str
    domain: Optional[str] = None
    path: Optional[str] = None
    secure: bool = False
    http_only: bool = False
    expiry: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Cookie":
        """Build from a Playwright or Selenium cookie mapping."""
        expiry = data.get("expiry", data.get("expires"))
        if expiry is not None and expiry < 0:
            # Playwright reports session cookies with expires=-1
            expiry = None
        return cls(
            name=str(data["name"]),
            value=str(data.get("value", "")),
            domain=data.get("domain"),
            path=data.get("path"),
            secure=bool(data.get("secure", False)),
            http_only=bool(data.get("httpOnly", data.get("http_only", False))),
            expiry=expiry,
        )


def parse_locator(locator: str) -> Tuple[str, str]:
    """
    Split a locator into (strategy, value).

    Accepts "id=...", "name=...", "css=...", "xpath=..." and "link=...".
    A bare locator starting with "//" is an XPath, anything else is CSS.
    """
    prefix, sep, rest = locator.partition("=")
    if sep and prefix in LOCATOR_STRATEGIES:
        return prefix, rest
    if locator.startswith("//") or locator.startswith("("):
        return "xpath", locator
    return "css", locator


class DriverHandle(ABC):
    """Capability-bounded handle to one live browser session."""

    name: str = "driver"

    @abstractmethod
    async def start(self) -> None:
        """Open the session."""

    @abstractmethod
    async def quit(self) -> None:
        """Tear the session down. Must be safe to call twice."""

    # Page-state queries

    @abstractmethod
    async def get_window_handle(self) -> str:
        """Return the handle of the focused window."""

    @abstractmethod
    async def switch_to_window(self, handle: str) -> None:
        """Focus the window identified by handle."""

    @abstractmethod
    async def get_current_url(self) -> str:
        pass

    @abstractmethod
    async def get_title(self) -> str:
        pass

    @abstractmethod
    async def get_cookies(self) -> List[Cookie]:
        pass

    # Commands

    @abstractmethod
    async def get(self, url: str) -> None:
        """Navigate the focused window to url."""

    @abstractmethod
    async def click(self, locator: str) -> None:
        pass

    @abstractmethod
    async def type(self, locator: str, text: str) -> None:
        """Replace the value of an input element with text."""

    @abstractmethod
    async def get_text(self, locator: str) -> str:
        pass

    @abstractmethod
    async def accept_alert(self) -> str:
        """Accept the open alert and return its text."""

    @abstractmethod
    async def dismiss_alert(self) -> str:
        """Dismiss the open alert and return its text."""
