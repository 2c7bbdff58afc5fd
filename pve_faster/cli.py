"""Entry point for the pve-faster command line tool."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import Settings
from .context import RunReport, StepStatus
from .errors import PveFasterError
from .formatting import format_bytes, format_facts, format_registry, format_report
from .logs import setup_logging
from .orchestrator import build_context, finish, run_optimization, select_steps
from .prompts import Prompter
from .registry import Tool
from .shell import CommandRunner
from .system_state import HostFacts
from .uupdump import run_uupdump_creator

logger = logging.getLogger(__name__)

STATUS_STYLES = {
    StepStatus.APPLIED: "bold green",
    StepStatus.FAILED: "bold red",
    StepStatus.DECLINED: "yellow",
    StepStatus.SKIPPED: "dim",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pve-faster",
        description="Post-install optimization and Windows ISO helper for Proxmox VE hosts.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--root", type=Path, help="apply every change below this directory instead of /")
    parser.add_argument("--registry", type=Path, help="path of the installed-tools registry (JSON)")
    parser.add_argument("--log-file", type=Path, help="append the detailed log to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="show command output on the console")
    parser.add_argument("--ui", action="store_true", help="render results as Rich tables")
    sub = parser.add_subparsers(dest="command", required=True)

    optimize = sub.add_parser("optimize", help="run the post-installation optimization")
    optimize.add_argument("--dry-run", action="store_true", help="log commands and file writes without executing them")
    optimize.add_argument("-y", "--yes", action="store_true", help="answer yes to every confirmation")
    optimize.add_argument(
        "--only",
        nargs="+",
        choices=[tool.value for tool in Tool],
        metavar="TOOL",
        help="run only these tools (still in the fixed order)",
    )
    reboot = optimize.add_mutually_exclusive_group()
    reboot.add_argument("--reboot", dest="reboot", action="store_true", default=None, help="reboot without asking when required")
    reboot.add_argument("--no-reboot", dest="reboot", action="store_false", help="never reboot")
    optimize.set_defaults(func=_cmd_optimize)

    status = sub.add_parser("status", help="show which tools are applied and the detected host facts")
    status.add_argument("--json", action="store_true", help="print the registry and host facts as JSON")
    status.set_defaults(func=_cmd_status)

    uup = sub.add_parser("uupdump", help="build a Windows ISO from a UUP Dump link")
    uup.add_argument("--url", help="UUP Dump link containing id, pack and edition")
    uup.add_argument("--base-dir", help="folder for temporary files and the converter")
    uup.add_argument("--dry-run", action="store_true", help="log commands without downloading anything")
    uup.add_argument("-y", "--yes", action="store_true", help="accept defaults for every question")
    uup.set_defaults(func=_cmd_uupdump)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = Settings.from_env().with_overrides(
        root=args.root,
        registry_path=args.registry,
        log_file=args.log_file,
        dry_run=getattr(args, "dry_run", False),
        assume_yes=getattr(args, "yes", False),
    )
    console = Console()
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, settings.log_file)

    if args.command != "status" and not settings.dry_run and settings.root == Path("/") and os.geteuid() != 0:
        logger.error("pve-faster must run as root (or use --dry-run)")
        return 1

    try:
        return args.func(args, settings, console)
    except PveFasterError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        console.print()
        logger.warning("Interrupted")
        return 130


def _cmd_optimize(args: argparse.Namespace, settings: Settings, console: Console) -> int:
    ctx = build_context(settings, Prompter(assume_yes=settings.assume_yes, console=console))
    console.print(Panel(f"pve-faster {__version__} - post-installation optimization", style="bold cyan"))
    if args.ui:
        console.print(_rich_facts(ctx.facts))

    report = run_optimization(ctx, select_steps(args.only))
    if report.failed:
        logger.warning("%d step(s) finished with errors, see the log for details", len(report.failed))
    finish(ctx, report, reboot=args.reboot)

    if args.ui:
        console.print(_rich_report(report))
    else:
        print(format_report(report))
    return 0


def _cmd_status(args: argparse.Namespace, settings: Settings, console: Console) -> int:
    ctx = build_context(settings)
    entries = list(ctx.registry.items())

    if args.json:
        print(_to_json(entries, ctx.facts))
        return 0
    if args.ui:
        console.print(_rich_facts(ctx.facts))
        console.print(_rich_registry(entries))
        return 0

    print(format_facts(ctx.facts))
    print()
    print(format_registry(entries))
    return 0


def _cmd_uupdump(args: argparse.Namespace, settings: Settings, console: Console) -> int:
    console.print(Panel("UUP Dump ISO creator", style="bold cyan"))
    runner = CommandRunner(dry_run=settings.dry_run)
    prompter = Prompter(assume_yes=settings.assume_yes, console=console)
    iso = run_uupdump_creator(settings, runner, prompter, url=args.url, base_dir=args.base_dir)
    if iso is None:
        return 0 if settings.dry_run else 1
    console.print(Panel(f"ISO created successfully: {iso}", style="bold green"))
    return 0


def _to_json(entries: List[Any], facts: HostFacts) -> str:
    payload: Dict[str, Any] = {"registry": dict(entries), "facts": asdict(facts)}
    return json.dumps(payload, ensure_ascii=False, indent=2)


def _rich_facts(facts: HostFacts) -> Table:
    summary = Table(title="Host", show_header=False, box=box.ROUNDED)
    summary.add_row("Debian", facts.os_codename or "unknown")
    summary.add_row("Memory", format_bytes(facts.ram_total))
    summary.add_row(
        "System disk", f"{facts.root_disk} ({'SSD/NVMe' if facts.root_disk_solid_state else 'rotational'})"
    )
    summary.add_row("Interfaces", ", ".join(f"{iface.name} {iface.mac}" for iface in facts.interfaces) or "-")
    return summary


def _rich_registry(entries: List[Any]) -> Table:
    table = Table(title="Registered tools", box=box.SIMPLE_HEAD)
    table.add_column("Tool", style="bold")
    table.add_column("Applied", justify="center")
    if not entries:
        table.add_row("-", "no tools registered yet")
        return table
    for name, applied in entries:
        table.add_row(name, "[green]yes[/]" if applied else "[red]no[/]")
    return table


def _rich_report(report: RunReport) -> Table:
    table = Table(title="Optimization results", box=box.SIMPLE_HEAD)
    table.add_column("#", justify="right")
    table.add_column("Step", style="bold")
    table.add_column("Status")
    table.add_column("Details")
    for index, result in enumerate(report.results, start=1):
        table.add_row(
            str(index),
            result.title,
            f"[{STATUS_STYLES[result.status]}]{result.status.value}[/]",
            result.message,
        )
    if report.reboot_required and not report.rebooted:
        table.caption = "A reboot is required for some changes to take effect."
    return table


if __name__ == "__main__":
    sys.exit(main())
