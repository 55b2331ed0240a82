"""CLI-friendly orchestrator for running recorded browser test scripts."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional, Sequence, Set

from config import PagetraceConfig, load_config
from context import ExecutionContext
from drivers.base import DriverHandle
from drivers.registry import DriverRegistry, default_registry
from engine import CommandRunner
from exceptions import PagetraceError, ScriptLoadError, ScriptValidationError
from page_info import InfoType
from script_loader import discover_scripts
from script_types import CommandResult, CommandStatus, ScriptResult, SuiteResult, TestScript


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ScriptRunner:
    """Runs scripts, one isolated browser session per script."""

    def __init__(
        self,
        config: PagetraceConfig,
        registry: Optional[DriverRegistry] = None,
        base_url: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.registry = registry or default_registry()
        self.base_url = base_url
        self.logger = logger or logging.getLogger("pagetrace.runner")

    async def _new_driver(self) -> DriverHandle:
        return await self.registry.create(self.config.browser.browser, self.config.browser, self.logger)

    def _skipped(self, script: TestScript) -> ScriptResult:
        reason = f"Skipped: {script.skip_reason or 'marked as skip'}"
        self.logger.info(f"Skipping {script.id}: {script.skip_reason or 'marked as skip'}")
        now = _now()
        return ScriptResult(
            script=script,
            started_at=now,
            finished_at=now,
            command_results=[
                CommandResult(index=i, command=cmd, status=CommandStatus.SKIPPED)
                for i, cmd in enumerate(script.commands, 1)
            ],
            skipped=True,
            reason=reason,
            backend=self.config.browser.browser,
        )

    async def run_script(self, script: TestScript) -> ScriptResult:
        """Run a single script in a fresh session and always tear it down."""
        if script.skip:
            return self._skipped(script)

        start = _now()
        driver: Optional[DriverHandle] = None
        context: Optional[ExecutionContext] = None
        try:
            driver = await self._new_driver()
            context = ExecutionContext(
                driver,
                disabled_page_info=self.config.execution.disabled_info_types,
                base_url=self.base_url or script.base_url,
                logger=self.logger,
            )
            runner = CommandRunner(
                context,
                driver_factory=self._new_driver,
                max_retries=self.config.execution.max_retries,
                retry_wait_min=self.config.execution.retry_wait_min,
                retry_wait_max=self.config.execution.retry_wait_max,
                logger=self.logger,
            )
            return await runner.run(script)
        except Exception as exc:
            self.logger.error(f"Script {script.id} crashed: {exc}", exc_info=True)
            return ScriptResult(
                script=script,
                started_at=start,
                finished_at=_now(),
                command_results=[
                    CommandResult(index=i, command=cmd, status=CommandStatus.SKIPPED)
                    for i, cmd in enumerate(script.commands, 1)
                ],
                aborted=True,
                reason=f"Runner exception: {exc}",
                backend=self.config.browser.browser,
            )
        finally:
            # The engine may have replaced the driver mid-script
            current = context.driver if context is not None else driver
            if current is not None:
                await self._close(current)

    async def _close(self, driver: DriverHandle) -> None:
        try:
            await driver.quit()
        except Exception as exc:
            self.logger.warning(f"Failed to close driver {driver.name}: {exc}")

    async def run_sequential(self, scripts: Sequence[TestScript]) -> List[ScriptResult]:
        """Run scripts one after another."""
        results: List[ScriptResult] = []
        for i, script in enumerate(scripts, 1):
            self.logger.info(f"=== Running script {script.id} ({i}/{len(scripts)}) ===")
            results.append(await self.run_script(script))
        return results

    async def run_parallel(self, scripts: Sequence[TestScript], max_workers: int = 4) -> List[ScriptResult]:
        """Run scripts concurrently, each in its own session, with limited concurrency."""
        semaphore = asyncio.Semaphore(max_workers)

        async def run_with_limit(script: TestScript, index: int) -> ScriptResult:
            async with semaphore:
                self.logger.info(f"=== Starting script {script.id} ({index}/{len(scripts)}) ===")
                return await self.run_script(script)

        tasks = [run_with_limit(script, i + 1) for i, script in enumerate(scripts)]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        final_results = []
        for script, result in zip(scripts, results):
            if isinstance(result, Exception):
                self.logger.error(f"Script {script.id} failed with exception: {result}")
                now = _now()
                final_results.append(ScriptResult(
                    script=script,
                    started_at=now,
                    finished_at=now,
                    aborted=True,
                    reason=f"Exception: {result}",
                    backend=self.config.browser.browser,
                ))
            else:
                final_results.append(result)
        return final_results

    async def run_all(self, scripts: Sequence[TestScript]) -> SuiteResult:
        """Run all scripts with configured parallelism."""
        start_time = _now()
        workers = self.config.execution.parallel_workers
        if workers > 1:
            self.logger.info(f"Running {len(scripts)} scripts with {workers} parallel sessions")
            results = await self.run_parallel(scripts, workers)
        else:
            results = await self.run_sequential(scripts)
        return SuiteResult(results=results, started_at=start_time, finished_at=_now())


def configure_logging(verbose: bool = False, quiet: bool = False, log_file: Optional[Path] = None) -> logging.Logger:
    """Configure root logging for the CLI and return the runner logger."""
    if quiet:
        log_level = logging.WARNING
    elif verbose:
        log_level = logging.DEBUG
    else:
        log_level = logging.INFO

    logging.basicConfig(
        level=log_level,
        format="[%(levelname)s] %(message)s" if not verbose else "[%(levelname)s] %(name)s: %(message)s",
        force=True,
    )
    if log_file:
        attach_log_file(log_file)
    # Playwright and Selenium transport chatter is not useful at DEBUG
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("selenium").setLevel(logging.WARNING)
    return logging.getLogger("pagetrace.runner")


def attach_log_file(log_file: Path) -> None:
    """Send all log records to a rotating file as well."""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
    handler.setFormatter(logging.Formatter("[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"))
    logging.getLogger().addHandler(handler)


def print_summary(suite: SuiteResult) -> None:
    print("\n" + "=" * 60)
    print("SCRIPT SUITE SUMMARY")
    print("=" * 60)
    print(f"Total:   {suite.total}")
    print(f"Passed:  {suite.passed}")
    print(f"Failed:  {suite.failed}")
    print(f"Skipped: {suite.skipped}")
    print(f"Pass Rate: {suite.pass_rate:.1f}%")
    print(f"Duration: {suite.duration_seconds:.1f}s")
    print("=" * 60)

    if suite.failed_scripts:
        print("\nFailed Scripts:")
        for result in suite.failed_scripts:
            reason = result.reason or "; ".join(r.reason for r in result.failed_commands)
            print(f"  - {result.script.id}: {reason[:120]}")


async def run_from_cli_args(
    args: argparse.Namespace,
    logger: logging.Logger,
    registry: Optional[DriverRegistry] = None,
) -> int:
    """Entry point shared by the CLI script."""
    include_tags: Optional[Set[str]] = set(args.tag) if args.tag else None
    exclude_tags: Optional[Set[str]] = set(args.exclude_tag) if args.exclude_tag else None

    try:
        scripts = discover_scripts(
            Path(args.scripts_dir),
            only_ids=args.script if args.script else None,
            include_tags=include_tags,
            exclude_tags=exclude_tags,
            include_skipped=args.include_skipped,
        )
    except (ScriptLoadError, ScriptValidationError) as exc:
        logger.error(str(exc))
        return 1

    if not scripts:
        logger.warning("No scripts found matching filters")
        return 0

    config_path = Path(args.config) if args.config else None
    cli_overrides = {
        "browser": args.browser,
        "headful": args.headful or None,
        "proxy": args.proxy,
        "remote_url": args.remote_url,
        "max_retries": args.max_retries,
        "disabled_page_info": args.disable_page_info,
        "parallel": args.parallel,
    }
    cli_overrides = {k: v for k, v in cli_overrides.items() if v is not None}

    try:
        config = load_config(config_path, cli_overrides)
    except Exception as exc:
        logger.error(f"Failed to load config: {exc}")
        return 1

    if config.log_file and not args.log_file:
        attach_log_file(config.log_file)
    if config.verbose and not args.quiet:
        logging.getLogger().setLevel(logging.DEBUG)

    registry = registry or default_registry()
    if config.browser.browser not in registry:
        logger.error(f"Unknown browser backend: {config.browser.browser} (available: {', '.join(registry.names())})")
        return 1

    logger.info(f"Loaded {len(scripts)} script(s)")
    logger.debug(
        f"Browser: {config.browser.browser}, Headless: {config.browser.headless}, "
        f"Proxy: {config.browser.proxy or 'none'}, Retries: {config.execution.max_retries}, "
        f"Disabled page info: {', '.join(config.execution.disabled_page_info) or 'none'}"
    )

    runner = ScriptRunner(config=config, registry=registry, base_url=args.base_url, logger=logger)
    suite_result = await runner.run_all(scripts)
    print_summary(suite_result)

    return 1 if suite_result.failed > 0 else 0


def _build_arg_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Run recorded browser test scripts and log the page state after each step.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                  # Run all scripts
  %(prog)s --script login                   # Run one script
  %(prog)s --tag smoke --browser chrome     # Smoke scripts on Chrome
  %(prog)s --proxy http://localhost:8080    # Route traffic through a proxy
  %(prog)s --disable-page-info cookie       # Do not capture cookies
        """,
    )

    script_group = parser.add_argument_group("Script Selection")
    script_group.add_argument(
        "--scripts-dir",
        default="scripts",
        help="Directory containing script YAML/JSON files (default: scripts)",
    )
    script_group.add_argument(
        "--script",
        action="append",
        help="Specific script ID to run (can be used multiple times)",
    )
    script_group.add_argument(
        "--tag",
        action="append",
        help="Only run scripts with this tag (can be used multiple times)",
    )
    script_group.add_argument(
        "--exclude-tag",
        action="append",
        help="Exclude scripts with this tag (can be used multiple times)",
    )
    script_group.add_argument(
        "--include-skipped",
        action="store_true",
        help="Include scripts marked as skip=true",
    )

    browser_group = parser.add_argument_group("Browser Options")
    browser_group.add_argument(
        "--browser",
        choices=default_registry().names(),
        help="Browser backend to use (default: firefox)",
    )
    browser_group.add_argument(
        "--headful",
        action="store_true",
        help="Run browser in headful mode (show GUI)",
    )
    browser_group.add_argument(
        "--proxy",
        help="Proxy server for the browser, e.g. http://localhost:8080",
    )
    browser_group.add_argument(
        "--remote-url",
        help="Remote WebDriver URL for Selenium backends",
    )
    browser_group.add_argument(
        "--base-url",
        help="Override the base URL of every script",
    )

    exec_group = parser.add_argument_group("Execution Options")
    exec_group.add_argument(
        "--max-retries",
        type=int,
        metavar="N",
        help="Retries for commands failing with transient driver errors (default: 2)",
    )
    exec_group.add_argument(
        "--disable-page-info",
        action="append",
        choices=[t.value for t in InfoType],
        help="Page information not to capture (can be used multiple times)",
    )
    exec_group.add_argument(
        "--parallel",
        type=int,
        metavar="N",
        help="Number of scripts run at the same time (default: 1)",
    )
    exec_group.add_argument(
        "--config",
        help="Path to config file (default: pagetrace.json if exists)",
    )

    output_group = parser.add_argument_group("Output Options")
    output_group.add_argument(
        "--log-file",
        help="Also write logs to this file",
    )
    output_group.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output",
    )
    output_group.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-essential output",
    )

    return parser


def main() -> None:
    """Main entry point."""
    parser = _build_arg_parser()
    args = parser.parse_args()
    logger = configure_logging(
        verbose=args.verbose,
        quiet=args.quiet,
        log_file=Path(args.log_file) if args.log_file else None,
    )

    try:
        exit_code = asyncio.run(run_from_cli_args(args, logger))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        exit_code = 130
    except PagetraceError as exc:
        logger.error(f"Error: {exc}")
        exit_code = 1
    except Exception as exc:
        logger.exception(f"Unexpected error: {exc}")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
