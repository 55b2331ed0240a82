"""Command execution engine: runs a script on one context with retry policy."""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

import commands
from context import ExecutionContext
from drivers.base import DriverHandle
from exceptions import (
    CommandFailure,
    DriverSessionLostError,
    DriverTimeoutError,
    ElementNotFoundError,
    ElementNotInteractableError,
    StaleReferenceError,
)
from page_info import PageInfoStatus, PageInformation, capture_page_info, describe_error
from script_types import CommandResult, CommandStatus, ScriptResult, TestScript

# Backend hiccups that usually go away when the command is simply sent again.
TRANSIENT_ERRORS = (
    StaleReferenceError,
    ElementNotFoundError,
    ElementNotInteractableError,
    DriverTimeoutError,
)

DriverFactory = Callable[[], Awaitable[DriverHandle]]


class CommandRunner:
    """Runs the commands of a script strictly in order against one context."""

    def __init__(
        self,
        context: ExecutionContext,
        driver_factory: Optional[DriverFactory] = None,
        max_retries: int = 2,
        retry_wait_min: float = 0.5,
        retry_wait_max: float = 4.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.context = context
        self.driver_factory = driver_factory
        self.max_retries = max_retries
        self.retry_wait_min = retry_wait_min
        self.retry_wait_max = retry_wait_max
        self.logger = logger or logging.getLogger("pagetrace.engine")
        self._driver_lost = False
        self._current: Optional[CommandResult] = None

    async def run(self, script: TestScript) -> ScriptResult:
        """Run every command of script and collect per-command results."""
        started = datetime.now(timezone.utc)
        results = [CommandResult(index=i, command=cmd) for i, cmd in enumerate(script.commands, 1)]
        script_result = ScriptResult(
            script=script,
            started_at=started,
            finished_at=started,
            command_results=results,
            backend=self.context.driver.name,
        )
        self.logger.info(f"Start: {script.title} ({len(results)} command(s))")

        for result in results:
            if await self._run_command(result, script_result):
                for rest in results[result.index:]:
                    rest.status = CommandStatus.SKIPPED
                break

        script_result.finished_at = datetime.now(timezone.utc)
        self.logger.info(
            f"End: {script.title} => {script_result.status.upper()} "
            f"({script_result.count(CommandStatus.SUCCEEDED)} succeeded, "
            f"{script_result.count(CommandStatus.FAILED)} failed, "
            f"{script_result.count(CommandStatus.SKIPPED)} skipped)"
        )
        return script_result

    def _is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, DriverSessionLostError):
            return self.driver_factory is not None
        return isinstance(exc, TRANSIENT_ERRORS)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        index = self._current.index if self._current else "?"
        self.logger.debug(
            f"[{index}] attempt {retry_state.attempt_number}/{self.max_retries + 1} "
            f"failed with {type(exc).__name__}: {exc}; retrying"
        )

    async def _renew_driver(self) -> None:
        old = self.context.driver
        try:
            await old.quit()
        except Exception as e:
            self.logger.debug(f"Ignoring error while closing lost driver: {e}")
        new = await self.driver_factory()
        self.context.replace_driver(new)
        self._driver_lost = False

    async def _attempt(self, result: CommandResult) -> Optional[str]:
        if self._driver_lost:
            await self._renew_driver()
        try:
            return await commands.execute(result.command, self.context)
        except DriverSessionLostError:
            self._driver_lost = self.driver_factory is not None
            raise
        finally:
            # Snapshot after every attempt so a failure can be explained.
            result.page_info = await capture_page_info(
                self.context.driver, self.context.disabled_page_info
            )

    async def _run_command(self, result: CommandResult, script_result: ScriptResult) -> bool:
        """Run one command. Returns True when the rest of the script must be skipped."""
        cmd = result.command
        result.status = CommandStatus.RUNNING
        self._current = result
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_wait_min, min=self.retry_wait_min, max=self.retry_wait_max),
            retry=retry_if_exception(self._is_retryable),
            before_sleep=self._log_retry,
            reraise=True,
        )
        start = time.monotonic()
        message: Optional[str] = None
        abort = False
        try:
            async for attempt in retrying:
                with attempt:
                    result.attempts = attempt.retry_state.attempt_number
                    message = await self._attempt(result)
            result.status = CommandStatus.SUCCEEDED
        except CommandFailure as e:
            result.status = CommandStatus.FAILED
            result.reason = f"{cmd.name}: {e}"
            abort = cmd.is_assertion
        except Exception as e:
            result.status = CommandStatus.FAILED
            result.reason = f"{cmd.name}: {describe_error(e, __file__)}"
            abort = True
            script_result.aborted = True
            script_result.reason = result.reason
        finally:
            result.duration_ms = (time.monotonic() - start) * 1000
            self._current = None

        self._report(result, script_result, message)
        return abort

    def _report(self, result: CommandResult, script_result: ScriptResult, message: Optional[str]) -> None:
        previous = self.context.latest_page_info
        page_info = result.page_info
        prefixes = (f"[{result.index}]", result.command.describe(), f"=> {result.status.value.upper()}")

        if result.status is CommandStatus.SUCCEEDED:
            self.logger.info(page_info.first_message(previous, "", *prefixes))
            if message:
                self.logger.info(f"[{result.index}] {message}")
        else:
            # Failures always show the page they happened on.
            line = page_info.first_message(PageInformation.empty(), "", *prefixes)
            level = logging.WARNING if result.command.is_verification else logging.ERROR
            self.logger.log(level, line)
            self.logger.log(level, f"[{result.index}] {result.reason}")

        if page_info.status is not PageInfoStatus.OK and not page_info.is_same_origin(previous):
            self.logger.warning(f"Page information unavailable: {page_info.message}")
        elif page_info.status is PageInfoStatus.OK and not page_info.is_same_origin(previous):
            script_result.origin_changes += 1
        if page_info.cookies and page_info.cookies != previous.cookies:
            self.logger.debug(f"[{result.index}] Cookies: {page_info.cookies}")

        self.context.latest_page_info = page_info
