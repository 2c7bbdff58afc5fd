"""Console-friendly formatting utilities."""

from __future__ import annotations

from typing import Iterable, Sequence, Tuple

from .context import RunReport
from .system_state import HostFacts


def format_bytes(num: float) -> str:
    suffixes = ["B", "KiB", "MiB", "GiB", "TiB"]
    value = float(num)
    for suffix in suffixes:
        if value < 1024 or suffix == suffixes[-1]:
            return f"{value:.1f} {suffix}"
        value /= 1024
    return f"{value:.1f} TiB"


def render_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    widths = [len(h) for h in headers]
    for row in rows:
        for index, cell in enumerate(row):
            widths[index] = max(widths[index], len(cell))
    lines = []
    lines.append(_format_row(headers, widths))
    lines.append(_format_row(["-" * w for w in widths], widths))
    for row in rows:
        lines.append(_format_row(row, widths))
    return "\n".join(lines)


def format_registry(entries: Iterable[Tuple[str, bool]]) -> str:
    rows = [[name, "yes" if applied else "no"] for name, applied in entries]
    return render_table(["Tool", "Applied"], rows) if rows else "No tools registered yet"


def format_report(report: RunReport) -> str:
    rows = [[result.title, result.tool.value, result.status.value, result.message] for result in report.results]
    lines = [render_table(["Step", "Tool", "Status", "Details"], rows) if rows else "No steps were run"]
    if report.rebooted:
        lines.append("Rebooting.")
    elif report.reboot_required:
        lines.append("A reboot is required for some changes to take effect.")
    return "\n".join(lines)


def format_facts(facts: HostFacts) -> str:
    disk_kind = "SSD/NVMe" if facts.root_disk_solid_state else "rotational"
    lines = [
        f"Debian codename: {facts.os_codename or 'unknown'}",
        f"Memory: {format_bytes(facts.ram_total)}",
        f"System disk: {facts.root_disk} ({disk_kind})",
    ]
    if facts.interfaces:
        lines.append("Physical interfaces:")
        lines.append(render_table(["Name", "MAC"], [[iface.name, iface.mac] for iface in facts.interfaces]))
    else:
        lines.append("Physical interfaces: none found")
    return "\n".join(lines)


def _format_row(row: Sequence[str], widths: Sequence[int]) -> str:
    padded = [cell.ljust(width) for cell, width in zip(row, widths)]
    return " | ".join(padded)
