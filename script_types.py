"""Typed objects for scripted browser tests."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Set

from commands import Command
from page_info import PageInformation


class CommandStatus(str, Enum):
    """Lifecycle of a single command."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class TestScript:
    """Recorded command sequence plus execution metadata."""

    __test__ = False  # keep pytest from collecting this class

    id: str
    commands: List[Command]
    name: Optional[str] = None
    base_url: Optional[str] = None
    tags: Set[str] = field(default_factory=set)
    skip: bool = False
    skip_reason: Optional[str] = None

    @property
    def title(self) -> str:
        return self.name or self.id

    def has_any_tag(self, tags: Set[str]) -> bool:
        """Check if script has any of the specified tags."""
        lower_tags = {t.lower() for t in tags}
        return bool(lower_tags & {t.lower() for t in self.tags})

    def matches_filter(
        self,
        include_tags: Optional[Set[str]] = None,
        exclude_tags: Optional[Set[str]] = None,
    ) -> bool:
        """Check if script matches tag filters."""
        if include_tags and not self.has_any_tag(include_tags):
            return False
        if exclude_tags and self.has_any_tag(exclude_tags):
            return False
        return True


@dataclass
class CommandResult:
    """Outcome of one command, with the page snapshot taken after it."""

    index: int
    command: Command
    status: CommandStatus = CommandStatus.PENDING
    reason: str = ""
    page_info: PageInformation = field(default_factory=PageInformation.empty)
    attempts: int = 0
    duration_ms: Optional[float] = None

    @property
    def success(self) -> bool:
        return self.status is CommandStatus.SUCCEEDED


@dataclass
class ScriptResult:
    """Outcome of a script execution."""

    script: TestScript
    started_at: datetime
    finished_at: datetime
    command_results: List[CommandResult] = field(default_factory=list)
    aborted: bool = False
    skipped: bool = False
    reason: str = ""
    backend: Optional[str] = None
    origin_changes: int = 0

    @property
    def success(self) -> bool:
        return not self.aborted and not self.skipped and all(
            r.status is not CommandStatus.FAILED for r in self.command_results
        )

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.finished_at - self.started_at).total_seconds())

    @property
    def status(self) -> str:
        if self.skipped:
            return "skipped"
        return "passed" if self.success else "failed"

    @property
    def failed_commands(self) -> List[CommandResult]:
        return [r for r in self.command_results if r.status is CommandStatus.FAILED]

    def count(self, status: CommandStatus) -> int:
        return sum(1 for r in self.command_results if r.status is status)


@dataclass
class SuiteResult:
    """Aggregated results for a suite run."""

    results: List[ScriptResult]
    started_at: datetime
    finished_at: datetime

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    @property
    def failed(self) -> int:
        return self.total - self.passed - self.skipped

    @property
    def pass_rate(self) -> float:
        return (self.passed / self.total * 100) if self.total else 0.0

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.finished_at - self.started_at).total_seconds())

    @property
    def failed_scripts(self) -> List[ScriptResult]:
        return [r for r in self.results if not r.success and not r.skipped]
