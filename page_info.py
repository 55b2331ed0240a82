"""Page information snapshots captured after each command.

A snapshot records what the focused page looked like (URL, title, cookies) at
one instant. Capturing never raises: driver failures are folded into one of a
few fixed outcomes so the command engine can always log something useful.
"""
from __future__ import annotations

import logging
import os
import re
import traceback
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import AbstractSet, Dict, Iterable, Iterator, Optional, Union
from urllib.parse import urlsplit

from drivers.base import Cookie, DriverHandle
from exceptions import NotFoundError, PagetraceError, StaleReferenceError, UnhandledAlertError

logger = logging.getLogger("pagetrace.page_info")

NO_FOCUS_MESSAGE = "No focused window/frame."

# Drivers append build/environment metadata to their error messages.
_METADATA_SUFFIX = re.compile(r"\r?\n(?:Build info|Stacktrace):.*", re.DOTALL)


class InfoType(str, Enum):
    """Categories of page information that can be disabled."""

    TITLE = "title"
    URL = "url"
    COOKIE = "cookie"

    @classmethod
    def parse(cls, values: Iterable[Union[str, "InfoType"]]) -> frozenset["InfoType"]:
        """Parse names like "title" or "COOKIE" into a frozenset."""
        result = set()
        for value in values:
            if isinstance(value, InfoType):
                result.add(value)
                continue
            try:
                result.add(cls(str(value).strip().lower()))
            except ValueError:
                names = ", ".join(t.value for t in cls)
                raise ValueError(f"Unknown page information type: {value!r} (expected one of: {names})")
        return frozenset(result)


ALL_INFO_TYPES: frozenset[InfoType] = frozenset(InfoType)


class PageInfoStatus(str, Enum):
    """Outcome of a capture."""

    OK = "ok"
    NO_FOCUS = "no_focus"
    ALERT_BLOCKED = "alert_blocked"
    EXTRACTION_FAILED = "extraction_failed"


class CookieMap(Mapping):
    """Cookies keyed by name. Adding a cookie with a known name replaces it."""

    def __init__(self, cookies: Iterable[Cookie] = ()):
        self._cookies: Dict[str, Cookie] = {}
        for cookie in cookies:
            self.add(cookie)

    def add(self, cookie: Cookie) -> None:
        self._cookies[cookie.name] = cookie

    def __getitem__(self, name: str) -> Cookie:
        return self._cookies[name]

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._cookies))

    def __len__(self) -> int:
        return len(self._cookies)

    def __repr__(self) -> str:
        return f"CookieMap({list(self.values())!r})"

    def __str__(self) -> str:
        return "; ".join(f"{cookie.name}={cookie.value}" for cookie in self.values())


@dataclass(frozen=True)
class PageInformation:
    """Immutable snapshot of the focused page.

    ``origin`` is None only for the empty sentinel; failed captures use "".
    """

    message: str = ""
    origin: Optional[str] = None
    cookies: CookieMap = field(default_factory=CookieMap, hash=False)
    status: PageInfoStatus = PageInfoStatus.OK

    @classmethod
    def empty(cls) -> "PageInformation":
        """Return a "no previous snapshot" value."""
        return cls(message="", origin=None)

    @property
    def is_empty(self) -> bool:
        return self.origin is None

    def first_message(self, previous: "PageInformation", indent: str, *prefixes: str) -> str:
        """
        Build a log line from indent and prefixes, followed by the page message.

        The message is left out when neither origin nor message changed since
        previous, so consecutive steps on one page do not repeat it.
        """
        line = indent + "".join(f"{prefix} " for prefix in prefixes)
        if self.origin is None or self.origin != previous.origin or self.message != previous.message:
            return line + self.message
        return line[:-1] if prefixes else line

    def is_same_origin(self, other: "PageInformation") -> bool:
        return self.origin is not None and self.origin == other.origin


EMPTY = PageInformation.empty()


def format_url_and_title(url: Optional[str], title: Optional[str]) -> str:
    clauses = []
    if url is not None:
        clauses.append(f"URL: [{url}]")
    if title is not None:
        clauses.append(f"Title: [{title}]")
    return " / ".join(clauses)


def get_origin(url: str) -> str:
    """
    Return scheme://host[:port], with the port only when it is explicit.

    URLs without a host (about:blank, data:, file:///) have no origin and give "".
    """
    parts = urlsplit(url)
    port = parts.port  # raises ValueError on a malformed port
    host = parts.hostname
    if not host:
        return ""
    if ":" in host:
        host = f"[{host}]"
    if port is None:
        return f"{parts.scheme}://{host}"
    return f"{parts.scheme}://{host}:{port}"


def _same_file(left: str, right: str) -> bool:
    return os.path.normcase(os.path.abspath(left)) == os.path.normcase(os.path.abspath(right))


def describe_error(exc: BaseException, boundary: Optional[str] = __file__) -> str:
    """
    Describe exc for display.

    Uses the error message without trailing driver metadata. An error with no
    message is described by its type and the frames between the raise site and
    the first frame inside ``boundary`` (a source file path).
    """
    message = exc.message if isinstance(exc, PagetraceError) else str(exc)
    if message:
        return _METADATA_SUFFIX.sub("", message, count=1)
    parts = [type(exc).__name__]
    for frame in reversed(traceback.extract_tb(exc.__traceback__)):
        if boundary and _same_file(frame.filename, boundary):
            break
        parts.append(f"{frame.filename}:{frame.lineno} in {frame.name}")
    return " / at ".join(parts)


async def capture_page_info(
    driver: DriverHandle,
    disabled: AbstractSet[InfoType] = frozenset(),
    *,
    boundary: Optional[str] = __file__,
) -> PageInformation:
    """Capture a snapshot of the focused page. Never raises."""
    try:
        # Some drivers report a handle for a window that is already gone and
        # hang when its URL is queried. Switching to it first raises instead.
        handle = await driver.get_window_handle()
        await driver.switch_to_window(handle)
        url = None if InfoType.URL in disabled else await driver.get_current_url()
        title = None if InfoType.TITLE in disabled else await driver.get_title()
        message = format_url_and_title(url, title)
        origin = "" if url is None else get_origin(url)
        cookies = CookieMap()
        if InfoType.COOKIE not in disabled:
            for cookie in await driver.get_cookies():
                cookies.add(cookie)
    except (NotFoundError, StaleReferenceError) as e:
        logger.debug(f"No focused window/frame: {e}")
        return PageInformation(NO_FOCUS_MESSAGE, "", status=PageInfoStatus.NO_FOCUS)
    except UnhandledAlertError as e:
        return PageInformation(
            f"No page information: [{describe_error(e, boundary)}]",
            "",
            status=PageInfoStatus.ALERT_BLOCKED,
        )
    except Exception as e:
        logger.debug("Page information capture failed", exc_info=True)
        return PageInformation(
            f"Failed to get page information: [{describe_error(e, boundary)}]",
            "",
            status=PageInfoStatus.EXTRACTION_FAILED,
        )
    return PageInformation(message, origin, cookies)
