"""JSON-backed record of which optimization tools have been applied."""

from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, Tuple, Union

logger = logging.getLogger(__name__)


class Tool(str, Enum):
    REPOSITORIES = "repositories"
    APT_UPGRADE = "apt_upgrade"
    LVM_REPAIR = "lvm_repair"
    REPO_CLEANUP = "repo_cleanup"
    SUBSCRIPTION_BANNER = "subscription_banner"
    TIME_SYNC = "time_sync"
    APT_LANGUAGES = "apt_languages"
    JOURNALD = "journald"
    LOGROTATE = "logrotate"
    SYSTEM_LIMITS = "system_limits"
    ENTROPY = "entropy"
    MEMORY_SETTINGS = "memory_settings"
    KERNEL_PANIC = "kernel_panic"
    APT_IPV4 = "apt_ipv4"
    NETWORK_OPTIMIZATION = "network_optimization"
    DISABLE_RPC = "disable_rpc"
    BASHRC_CUSTOM = "bashrc_custom"
    LOG2RAM = "log2ram"
    PERSISTENT_NETWORK = "persistent_network"


ToolName = Union[Tool, str]


def _key(name: ToolName) -> str:
    return name.value if isinstance(name, Tool) else str(name)


class ToolRegistry:
    """Flat ``{tool: bool}`` mapping persisted as a JSON object.

    Keys this package does not know about are kept as they are, since other
    scripts share the file.  Every :meth:`mark_applied` re-reads the file and
    writes it back atomically.
    """

    def __init__(self, path: Path, dry_run: bool = False) -> None:
        self.path = Path(path)
        self.dry_run = dry_run
        self.data: Dict[str, bool] = {}

    def load(self) -> Dict[str, bool]:
        self.data = self._read()
        return self.data

    def _read(self) -> Dict[str, bool]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as fh:
                raw = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("Registry %s is unreadable (%s); starting empty", self.path, exc)
            return {}
        if not isinstance(raw, dict):
            logger.warning("Registry %s does not hold a JSON object; starting empty", self.path)
            return {}
        return {str(key): bool(value) for key, value in raw.items()}

    def ensure(self) -> None:
        """Create the file as ``{}`` when missing, or rewrite it when corrupt."""
        self.load()
        self.save()

    def save(self) -> None:
        if self.dry_run:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(self.data, fh, indent=2, sort_keys=True)
            fh.write("\n")
        tmp.replace(self.path)

    def is_applied(self, name: ToolName) -> bool:
        return self.data.get(_key(name), False)

    def mark_applied(self, name: ToolName, state: bool = True) -> None:
        if not self.dry_run:
            self.data = self._read()
        self.data[_key(name)] = state
        self.save()
        logger.debug("Registered %s=%s", _key(name), state)

    def items(self) -> Iterator[Tuple[str, bool]]:
        return iter(sorted(self.data.items()))
