"""Browser driver backends.

Backends live in their own modules so importing the contract does not pull in
Playwright or Selenium; see drivers.registry for the built-in set.
"""
from drivers.base import Cookie, DriverHandle, parse_locator

__all__ = [
    "Cookie",
    "DriverHandle",
    "parse_locator",
]
