from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from pve_faster.config import Settings
from pve_faster.context import RunContext
from pve_faster.files import FileEditor
from pve_faster.prompts import Prompter
from pve_faster.registry import ToolRegistry
from pve_faster.shell import APT_GET, CommandResult, CommandRunner
from pve_faster.system_state import HostFacts, NetworkInterface


class FakeRunner(CommandRunner):
    """Records commands instead of running them.

    ``responses`` maps a substring of the joined command line to the
    ``(returncode, stdout)`` it should produce; everything else succeeds
    with empty output.
    """

    def __init__(
        self,
        responses: Optional[Dict[str, Tuple[int, str]]] = None,
        available: Optional[Dict[str, str]] = None,
        dry_run: bool = False,
    ) -> None:
        super().__init__(dry_run=dry_run)
        self.responses = responses or {}
        self.available = available or {}
        self.calls: List[List[str]] = []

    def run(self, cmd, env=None, cwd=None, input_text=None, stream=False):
        cmd = [str(part) for part in cmd]
        self.calls.append(cmd)
        line = " ".join(cmd)
        for needle, (returncode, stdout) in self.responses.items():
            if needle in line:
                return CommandResult(cmd=cmd, returncode=returncode, stdout=stdout)
        return CommandResult(cmd=cmd, returncode=0)

    def which(self, name):
        return self.available.get(name)

    def ran(self, needle: str) -> bool:
        return any(needle in " ".join(call) for call in self.calls)

    def apt_calls(self) -> List[List[str]]:
        return [call[len(APT_GET):] for call in self.calls if call[: len(APT_GET)] == APT_GET]


class FakePrompter(Prompter):
    def __init__(self, answer: bool = True, assume_yes: bool = False) -> None:
        super().__init__(assume_yes=assume_yes)
        self.answer = answer
        self.questions: List[str] = []

    def confirm(self, question, default=False):
        self.questions.append(question)
        return True if self.assume_yes else self.answer

    def ask(self, question, default=""):
        self.questions.append(question)
        return default


def snapshot(root: Path) -> Dict[str, bytes]:
    """Every regular file below ``root`` with its content."""
    return {str(path.relative_to(root)): path.read_bytes() for path in sorted(root.rglob("*")) if path.is_file()}


@pytest.fixture
def root(tmp_path):
    path = tmp_path / "root"
    path.mkdir()
    return path


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def prompter():
    return FakePrompter(answer=True)


@pytest.fixture
def facts():
    return HostFacts(
        os_codename="bookworm",
        ram_total=16 * 1024**3,
        root_disk="nvme0n1",
        root_disk_solid_state=True,
        interfaces=[NetworkInterface(name="enp1s0", mac="aa:bb:cc:dd:ee:01")],
    )


@pytest.fixture
def ctx(tmp_path, root, runner, prompter, facts):
    settings = Settings(root=root, registry_path=tmp_path / "installed_tools.json", log_file=None)
    return RunContext(
        settings=settings,
        runner=runner,
        files=FileEditor(root),
        registry=ToolRegistry(settings.registry_path),
        prompter=prompter,
        facts=facts,
    )
