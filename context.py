"""Session-scoped execution state."""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, Optional, Union
from urllib.parse import urljoin

from drivers.base import DriverHandle
from page_info import InfoType, PageInformation

_VARIABLE = re.compile(r"\$\{(\w+)\}")


class ExecutionContext:
    """State for one browser session: the driver handle and what to capture.

    One context is used by a single script at a time. Parallel scripts each
    get their own context.
    """

    def __init__(
        self,
        driver: DriverHandle,
        disabled_page_info: Iterable[Union[str, InfoType]] = (),
        base_url: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._driver = driver
        self._disabled_page_info = InfoType.parse(disabled_page_info)
        self.base_url = base_url
        self.logger = logger or logging.getLogger("pagetrace.context")
        self.latest_page_info: PageInformation = PageInformation.empty()
        self.variables: Dict[str, Any] = {}

    @property
    def driver(self) -> DriverHandle:
        return self._driver

    @property
    def disabled_page_info(self) -> frozenset[InfoType]:
        return self._disabled_page_info

    def replace_driver(self, driver: DriverHandle) -> None:
        """Swap in a new handle after the session was re-established."""
        self.logger.info(f"Driver replaced: {self._driver.name} -> {driver.name}")
        self._driver = driver
        self.latest_page_info = PageInformation.empty()

    def expand(self, text: str) -> str:
        """Substitute ${name} with stored variables. Unknown names are kept."""

        def _lookup(match: re.Match) -> str:
            name = match.group(1)
            if name in self.variables:
                return str(self.variables[name])
            return match.group(0)

        return _VARIABLE.sub(_lookup, text)

    def resolve_url(self, url: str) -> str:
        """Join a relative URL with base_url."""
        if self.base_url and "://" not in url:
            return urljoin(self.base_url, url)
        return url
