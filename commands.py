"""Script commands and their handlers."""
from __future__ import annotations

import asyncio
import fnmatch
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Tuple

from context import ExecutionContext
from exceptions import CommandFailure, ScriptValidationError, UnknownCommandError

CommandHandler = Callable[[ExecutionContext, str, str], Awaitable[Optional[str]]]
Accessor = Callable[[ExecutionContext, str, str], Awaitable[Tuple[str, str]]]

COMMANDS: Dict[str, CommandHandler] = {}


@dataclass(frozen=True)
class Command:
    """One step of a script: a command name with up to two arguments."""

    name: str
    target: str = ""
    value: str = ""
    line: Optional[int] = None

    @property
    def is_assertion(self) -> bool:
        return self.name.startswith("assert")

    @property
    def is_verification(self) -> bool:
        return self.name.startswith("verify")

    def describe(self) -> str:
        args = ", ".join(f'"{arg}"' for arg in (self.target, self.value) if arg)
        return f"{self.name}({args})"

    def validate(self) -> None:
        if self.name not in COMMANDS:
            raise UnknownCommandError(self.name)


def command(name: str) -> Callable[[CommandHandler], CommandHandler]:
    """Register a handler under name."""

    def decorator(handler: CommandHandler) -> CommandHandler:
        COMMANDS[name] = handler
        return handler

    return decorator


async def execute(cmd: Command, context: ExecutionContext) -> Optional[str]:
    """Run cmd against the context's driver. Returns an optional log message."""
    handler = COMMANDS.get(cmd.name)
    if handler is None:
        raise UnknownCommandError(cmd.name)
    return await handler(context, context.expand(cmd.target), context.expand(cmd.value))


def match_pattern(pattern: str, actual: str) -> bool:
    """Match actual against a "glob:", "regexp:", "regexpi:" or "exact:" pattern."""
    if pattern.startswith("regexp:"):
        return re.search(pattern[len("regexp:"):], actual) is not None
    if pattern.startswith("regexpi:"):
        return re.search(pattern[len("regexpi:"):], actual, re.IGNORECASE) is not None
    if pattern.startswith("exact:"):
        return actual == pattern[len("exact:"):]
    if pattern.startswith("glob:"):
        pattern = pattern[len("glob:"):]
    return fnmatch.fnmatchcase(actual, pattern)


# ─────────────────────────────────────────────────────────────────────────────
# Actions
# ─────────────────────────────────────────────────────────────────────────────


@command("open")
async def _open(context: ExecutionContext, target: str, value: str) -> None:
    await context.driver.get(context.resolve_url(target))


@command("click")
async def _click(context: ExecutionContext, target: str, value: str) -> None:
    await context.driver.click(target)


@command("type")
async def _type(context: ExecutionContext, target: str, value: str) -> None:
    await context.driver.type(target, value)


@command("store")
async def _store(context: ExecutionContext, target: str, value: str) -> None:
    if not value:
        raise ScriptValidationError("store needs a variable name as its value", field="value")
    context.variables[value] = target


@command("echo")
async def _echo(context: ExecutionContext, target: str, value: str) -> str:
    return target


@command("pause")
async def _pause(context: ExecutionContext, target: str, value: str) -> None:
    await asyncio.sleep(int(target or 0) / 1000)


@command("acceptAlert")
async def _accept_alert(context: ExecutionContext, target: str, value: str) -> str:
    text = await context.driver.accept_alert()
    return f"Accepted alert: [{text}]"


@command("dismissAlert")
async def _dismiss_alert(context: ExecutionContext, target: str, value: str) -> str:
    text = await context.driver.dismiss_alert()
    return f"Dismissed alert: [{text}]"


# ─────────────────────────────────────────────────────────────────────────────
# Assertions and verifications
# ─────────────────────────────────────────────────────────────────────────────


async def _title(context: ExecutionContext, target: str, value: str) -> Tuple[str, str]:
    return target, await context.driver.get_title()


async def _location(context: ExecutionContext, target: str, value: str) -> Tuple[str, str]:
    return target, await context.driver.get_current_url()


async def _text(context: ExecutionContext, target: str, value: str) -> Tuple[str, str]:
    return value, await context.driver.get_text(target)


async def _cookie_by_name(context: ExecutionContext, target: str, value: str) -> Tuple[str, str]:
    for cookie in await context.driver.get_cookies():
        if cookie.name == target:
            return value, cookie.value
    raise CommandFailure(f"Cookie not found: {target}", expected=value)


def _register_check(label: str, accessor: Accessor) -> None:
    async def check(context: ExecutionContext, target: str, value: str) -> None:
        pattern, actual = await accessor(context, target, value)
        if not match_pattern(pattern, actual):
            raise CommandFailure(f"{label} did not match", expected=pattern, actual=actual)

    COMMANDS[f"assert{label}"] = check
    COMMANDS[f"verify{label}"] = check


_register_check("Title", _title)
_register_check("Location", _location)
_register_check("Text", _text)
_register_check("CookieByName", _cookie_by_name)
