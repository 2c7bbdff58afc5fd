"""Thin wrapper around subprocess used by every mutation step."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from .errors import CommandError

logger = logging.getLogger(__name__)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}
APT_GET = ["apt-get", "-y", "-o", "Dpkg::Options::=--force-confdef"]


@dataclass
class CommandResult:
    cmd: Sequence[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def check(self) -> "CommandResult":
        if not self.ok:
            raise CommandError(self.cmd, self.returncode, self.stderr)
        return self


class CommandRunner:
    """Execute commands, or only log them when ``dry_run`` is set.

    Output is always captured so the console stays readable; it is logged at
    debug level and ends up in the log file.
    """

    def __init__(self, dry_run: bool = False) -> None:
        self.dry_run = dry_run

    def run(
        self,
        cmd: Sequence[str],
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
        input_text: Optional[str] = None,
        stream: bool = False,
    ) -> CommandResult:
        pretty = " ".join(str(part) for part in cmd)
        if self.dry_run:
            logger.info("[dry-run] %s", pretty)
            return CommandResult(cmd=list(cmd), returncode=0)

        logger.debug("Running: %s", pretty)
        full_env = None
        if env:
            full_env = dict(os.environ)
            full_env.update(env)
        try:
            completed = subprocess.run(
                [str(part) for part in cmd],
                env=full_env,
                cwd=cwd,
                input=input_text,
                capture_output=not stream,
                text=True,
                check=False,
            )
        except FileNotFoundError:
            logger.warning("Command not found: %s", cmd[0])
            return CommandResult(cmd=list(cmd), returncode=127, stderr=f"{cmd[0]}: not found")

        result = CommandResult(
            cmd=list(cmd),
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if result.stdout:
            logger.debug("stdout: %s", result.stdout.rstrip())
        if not result.ok:
            logger.debug("%s exited %s: %s", pretty, result.returncode, result.stderr.rstrip())
        return result

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)

    def apt_get(self, *args: str, stream: bool = False) -> CommandResult:
        """Run ``apt-get -y`` non-interactively, keeping existing config files."""
        return self.run([*APT_GET, *args], env=APT_ENV, stream=stream)

    def systemctl(self, *args: str) -> CommandResult:
        return self.run(["systemctl", *args])
