"""Run context threaded through every mutation step."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from .config import Settings
from .files import FileEditor
from .prompts import Prompter
from .registry import Tool, ToolRegistry
from .shell import CommandRunner
from .system_state import HostFacts


class StepStatus(str, Enum):
    APPLIED = "applied"
    FAILED = "failed"
    DECLINED = "declined"
    SKIPPED = "skipped"


@dataclass
class StepResult:
    tool: Tool
    title: str
    status: StepStatus
    message: str = ""


@dataclass
class RunContext:
    settings: Settings
    runner: CommandRunner
    files: FileEditor
    registry: ToolRegistry
    prompter: Prompter
    facts: HostFacts
    reboot_required: bool = False

    @property
    def codename(self) -> str:
        return self.facts.os_codename

    def request_reboot(self) -> None:
        self.reboot_required = True


StepAction = Callable[[RunContext], StepStatus]


@dataclass(frozen=True)
class Step:
    tool: Tool
    title: str
    action: StepAction
    needs_reboot: bool = False


@dataclass
class RunReport:
    results: List[StepResult] = field(default_factory=list)
    reboot_required: bool = False
    rebooted: bool = False

    def status_of(self, tool: Tool) -> Optional[StepStatus]:
        for result in self.results:
            if result.tool == tool:
                return result.status
        return None

    @property
    def failed(self) -> List[StepResult]:
        return [result for result in self.results if result.status is StepStatus.FAILED]
