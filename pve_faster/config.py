"""Runtime settings, overridable from the environment and the command line."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_REGISTRY = Path("/usr/local/share/pve-faster/installed_tools.json")
DEFAULT_LOG_FILE = Path("/var/log/pve-faster.log")
DEFAULT_ISO_DIR = Path("/var/lib/vz/template/iso")
DEFAULT_UUP_BASE = Path("/root/uup-temp")


@dataclass(frozen=True)
class Settings:
    root: Path = Path("/")
    registry_path: Path = DEFAULT_REGISTRY
    log_file: Optional[Path] = DEFAULT_LOG_FILE
    iso_dir: Path = DEFAULT_ISO_DIR
    uup_base: Path = DEFAULT_UUP_BASE
    dry_run: bool = False
    assume_yes: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        settings = cls()
        overrides = {}
        if env.get("PVE_FASTER_ROOT"):
            overrides["root"] = Path(env["PVE_FASTER_ROOT"])
        if env.get("PVE_FASTER_REGISTRY"):
            overrides["registry_path"] = Path(env["PVE_FASTER_REGISTRY"])
        if "PVE_FASTER_LOG_FILE" in env:
            # An empty value turns the log file off.
            overrides["log_file"] = Path(env["PVE_FASTER_LOG_FILE"]) if env["PVE_FASTER_LOG_FILE"] else None
        if env.get("PVE_FASTER_ISO_DIR"):
            overrides["iso_dir"] = Path(env["PVE_FASTER_ISO_DIR"])
        if env.get("PVE_FASTER_UUP_BASE"):
            overrides["uup_base"] = Path(env["PVE_FASTER_UUP_BASE"])
        return replace(settings, **overrides)

    def with_overrides(self, **changes) -> "Settings":
        """Return a copy with every non-None keyword applied."""
        return replace(self, **{key: value for key, value in changes.items() if value is not None})
