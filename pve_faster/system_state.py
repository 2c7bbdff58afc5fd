"""Collect the host facts the optimization steps branch on."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re
from typing import Dict, List, Optional

import psutil

from .files import FileEditor
from .shell import CommandRunner

logger = logging.getLogger(__name__)

MAC_RE = re.compile(r"^([0-9a-fA-F]{2}:){5}[0-9a-fA-F]{2}$")
VIRTUAL_IFACE_RE = re.compile(r"^(lo|docker|veth|br-|vmbr|tap|fwpr|fwln|virbr|bond|cilium|zt|wg)")
DEFAULT_SYSTEM_DISK = "sda"


@dataclass
class NetworkInterface:
    name: str
    mac: str


@dataclass
class HostFacts:
    os_codename: str
    ram_total: int
    root_disk: str
    root_disk_solid_state: bool
    interfaces: List[NetworkInterface] = field(default_factory=list)

    @property
    def ram_gb(self) -> int:
        return self.ram_total // (1024**3)


def gather_host_facts(runner: CommandRunner, files: FileEditor) -> HostFacts:
    """Collect the facts once, before any step runs."""
    root_disk = _root_disk(runner)
    return HostFacts(
        os_codename=read_os_codename(files),
        ram_total=psutil.virtual_memory().total,
        root_disk=root_disk,
        root_disk_solid_state=is_solid_state(files, root_disk),
        interfaces=physical_interfaces(files),
    )


def read_os_codename(files: FileEditor) -> str:
    text = files.read("/etc/os-release") or ""
    for line in text.splitlines():
        key, _, value = line.strip().partition("=")
        if key == "VERSION_CODENAME":
            return value.strip().strip('"')
    logger.warning("VERSION_CODENAME missing from /etc/os-release")
    return ""


def _root_disk(runner: CommandRunner) -> str:
    listing = runner.run(["lsblk", "-rno", "NAME,MOUNTPOINT"])
    root_part: Optional[str] = None
    for line in listing.stdout.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[1] == "/":
            root_part = parts[0]
            break
    if root_part is None:
        return DEFAULT_SYSTEM_DISK
    parent = runner.run(["lsblk", "-no", "PKNAME", f"/dev/{root_part}"])
    name = parent.stdout.strip().splitlines()[0].strip() if parent.ok and parent.stdout.strip() else ""
    return name or DEFAULT_SYSTEM_DISK


def is_solid_state(files: FileEditor, disk: str) -> bool:
    """NVMe devices, or any disk the kernel reports as non-rotational."""
    if disk.startswith("nvme"):
        return True
    rotational = files.read(f"/sys/block/{disk}/queue/rotational")
    return rotational is not None and rotational.strip() == "0"


def physical_interfaces(files: FileEditor) -> List[NetworkInterface]:
    """Interfaces backed by a device (wired or wireless) with a usable MAC."""
    macs = _link_addresses()
    interfaces: List[NetworkInterface] = []
    for net_path in files.glob("/sys/class/net", "*"):
        name = net_path.name
        if VIRTUAL_IFACE_RE.match(name):
            continue
        if not (files.exists(f"{net_path}/device") or files.exists(f"{net_path}/phy80211")):
            continue
        mac = macs.get(name) or (files.read(f"{net_path}/address") or "").strip()
        if MAC_RE.match(mac):
            interfaces.append(NetworkInterface(name=name, mac=mac.lower()))
    return interfaces


def _link_addresses() -> Dict[str, str]:
    addresses: Dict[str, str] = {}
    try:
        table = psutil.net_if_addrs()
    except OSError:
        return addresses
    for name, entries in table.items():
        for entry in entries:
            if entry.family == psutil.AF_LINK and entry.address:
                addresses[name] = entry.address.replace("-", ":")
    return addresses
