"""Install log2ram on solid-state system disks and size it from RAM."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .context import RunContext, StepStatus

logger = logging.getLogger(__name__)

REPO_URL = "https://github.com/azlux/log2ram.git"
CLONE_DIR = "/tmp/log2ram"
INSTALL_LOG = "/tmp/log2ram_install.log"
CONF_FILE = "/etc/log2ram.conf"
CHECK_SCRIPT = "/usr/local/bin/log2ram-check.sh"
WRITE_CRON = "/etc/cron.d/log2ram"
AUTOSYNC_CRON = "/etc/cron.d/log2ram-auto-sync"
HOURLY_CRON = "/etc/cron.hourly/log2ram"

LEFTOVERS = (
    ("/etc/systemd/system", "log2ram*"),
    ("/etc/cron.d", "log2ram*"),
)
LEFTOVER_PATHS = ("/usr/sbin/log2ram", CONF_FILE, CHECK_SCRIPT, "/var/log.hdd")

CHECK_SCRIPT_CONTENT = """#!/bin/bash
CONF_FILE="/etc/log2ram.conf"
LIMIT_KB=$(grep '^SIZE=' "$CONF_FILE" | cut -d'=' -f2 | tr -d 'M')000
USED_KB=$(df /var/log --output=used | tail -1)
THRESHOLD=$(( LIMIT_KB * 90 / 100 ))

if (( USED_KB > THRESHOLD )); then
    $(command -v log2ram) write
fi
"""


@dataclass(frozen=True)
class Log2RamPlan:
    size: str
    write_interval_hours: int


def plan_for_ram(ram_gb: int) -> Log2RamPlan:
    """Pick the tmpfs size and write-back interval for the amount of RAM."""
    if ram_gb <= 0:
        ram_gb = 4
    if ram_gb <= 8:
        return Log2RamPlan("128M", 1)
    if ram_gb <= 16:
        return Log2RamPlan("256M", 3)
    return Log2RamPlan("512M", 6)


def _installed(ctx: RunContext) -> bool:
    if not ctx.files.exists(CONF_FILE) or ctx.runner.which("log2ram") is None:
        return False
    units = ctx.runner.systemctl("list-units", "--all")
    return "log2ram" in units.stdout


def _remove_leftovers(ctx: RunContext) -> None:
    files = ctx.files
    files.remove(CLONE_DIR)
    for directory, pattern in LEFTOVERS:
        files.remove_glob(directory, pattern)
    for path in LEFTOVER_PATHS:
        files.remove(path)
    ctx.runner.systemctl("daemon-reexec")
    ctx.runner.systemctl("daemon-reload")


def _install(ctx: RunContext) -> bool:
    runner = ctx.runner
    if runner.which("git") is None:
        runner.apt_get("update")
        if not runner.apt_get("install", "git").ok:
            logger.error("Failed to install git")
            return False
        logger.info("Git installed")

    clone = runner.run(["git", "clone", REPO_URL, str(ctx.files.path(CLONE_DIR))])
    _append_install_log(ctx, clone.stdout + clone.stderr)
    if not clone.ok:
        logger.error("Failed to clone the log2ram repository, see %s", INSTALL_LOG)
        return False

    installer = runner.run(["bash", "install.sh"], cwd=str(ctx.files.path(CLONE_DIR)))
    _append_install_log(ctx, installer.stdout + installer.stderr)
    if not installer.ok:
        logger.error("Failed to run the log2ram installer, see %s", INSTALL_LOG)
        return False

    if runner.dry_run:
        return True
    if not ctx.files.exists(CONF_FILE) or runner.which("log2ram") is None:
        logger.error("Log2RAM installation verification failed, see %s", INSTALL_LOG)
        return False
    return True


def _append_install_log(ctx: RunContext, output: str) -> None:
    if output:
        ctx.files.transform(INSTALL_LOG, lambda text: text + output, create=True)


def configure(ctx: RunContext, plan: Log2RamPlan) -> None:
    files = ctx.files
    files.substitute(CONF_FILE, r"^SIZE=.*$", f"SIZE={plan.size}")
    files.remove(HOURLY_CRON)
    files.write(WRITE_CRON, f"0 */{plan.write_interval_hours} * * * root /usr/sbin/log2ram write\n")
    files.write(CHECK_SCRIPT, CHECK_SCRIPT_CONTENT, mode=0o755)
    files.write(AUTOSYNC_CRON, f"*/5 * * * * root {CHECK_SCRIPT}\n")


def install_log2ram(ctx: RunContext) -> StepStatus:
    facts = ctx.facts
    if not facts.root_disk_solid_state:
        logger.warning("System disk (%s) is not SSD/M.2, skipping Log2RAM", facts.root_disk)
        return StepStatus.SKIPPED
    logger.info("System disk (%s) is SSD or M.2, proceeding with Log2RAM", facts.root_disk)

    if _installed(ctx):
        logger.info("Log2RAM is already installed and configured")
        return StepStatus.APPLIED

    _remove_leftovers(ctx)
    if not _install(ctx):
        return StepStatus.FAILED
    logger.info("Log2RAM installed")

    plan = plan_for_ram(facts.ram_gb)
    logger.info("Detected RAM: %d GB, Log2RAM size set to %s", facts.ram_gb, plan.size)
    configure(ctx, plan)
    logger.info(
        "log2ram write scheduled every %d hour(s); auto-sync when /var/log exceeds 90%% of %s",
        plan.write_interval_hours,
        plan.size,
    )
    return StepStatus.APPLIED

