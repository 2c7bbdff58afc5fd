"""Run the post-install optimization steps in their fixed order."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional, Sequence

from . import banner, log2ram, network, repositories, tuning
from .config import Settings
from .context import RunContext, RunReport, Step, StepResult, StepStatus
from .files import FileEditor
from .prompts import Prompter
from .registry import Tool, ToolRegistry
from .shell import CommandRunner
from .system_state import gather_host_facts

logger = logging.getLogger(__name__)

# Repositories are fixed before anything touches apt, the upgrade runs before
# service tuning, and interface renaming comes last.
STEPS: Sequence[Step] = (
    Step(Tool.REPOSITORIES, "Repository configuration", repositories.configure_repositories),
    Step(Tool.APT_UPGRADE, "System upgrade", repositories.apt_upgrade, needs_reboot=True),
    Step(Tool.LVM_REPAIR, "LVM PV header repair", repositories.repair_lvm_headers),
    Step(Tool.REPO_CLEANUP, "Duplicate repository cleanup", repositories.cleanup_duplicate_repos),
    Step(Tool.SUBSCRIPTION_BANNER, "Subscription banner", banner.remove_subscription_banner),
    Step(Tool.TIME_SYNC, "Time synchronization", tuning.configure_time_sync),
    Step(Tool.APT_LANGUAGES, "APT languages", repositories.skip_apt_languages),
    Step(Tool.JOURNALD, "Journald", tuning.optimize_journald, needs_reboot=True),
    Step(Tool.LOGROTATE, "Logrotate", tuning.optimize_logrotate),
    Step(Tool.SYSTEM_LIMITS, "System limits", tuning.increase_system_limits, needs_reboot=True),
    Step(Tool.ENTROPY, "Entropy generation", tuning.configure_entropy),
    Step(Tool.MEMORY_SETTINGS, "Memory settings", tuning.optimize_memory_settings, needs_reboot=True),
    Step(Tool.KERNEL_PANIC, "Kernel panic behaviour", tuning.configure_kernel_panic, needs_reboot=True),
    Step(Tool.APT_IPV4, "APT over IPv4", repositories.force_apt_ipv4),
    Step(Tool.NETWORK_OPTIMIZATION, "Network stack", network.apply_network_optimizations, needs_reboot=True),
    Step(Tool.DISABLE_RPC, "rpcbind", tuning.disable_rpc),
    Step(Tool.BASHRC_CUSTOM, "Root bashrc", tuning.customize_bashrc),
    Step(Tool.LOG2RAM, "Log2RAM", log2ram.install_log2ram),
    Step(Tool.PERSISTENT_NETWORK, "Persistent interface names", network.setup_persistent_network, needs_reboot=True),
)

# Statuses that still count as "applied" in the registry.
MARKED_STATUSES = (StepStatus.APPLIED, StepStatus.FAILED)

StepCallback = Callable[[int, int, Step], None]


def build_context(settings: Settings, prompter: Optional[Prompter] = None) -> RunContext:
    runner = CommandRunner(dry_run=settings.dry_run)
    files = FileEditor(settings.root, dry_run=settings.dry_run)
    registry = ToolRegistry(settings.registry_path, dry_run=settings.dry_run)
    registry.load()
    return RunContext(
        settings=settings,
        runner=runner,
        files=files,
        registry=registry,
        prompter=prompter or Prompter(assume_yes=settings.assume_yes),
        # read-only probes, so they run for real even in dry-run mode
        facts=gather_host_facts(CommandRunner(), files),
    )


def select_steps(only: Optional[Iterable[str]] = None) -> List[Step]:
    """Steps to run, always in the fixed order, optionally limited to ``only``."""
    if not only:
        return list(STEPS)
    wanted = {Tool(name) for name in only}
    return [step for step in STEPS if step.tool in wanted]


def run_step(ctx: RunContext, step: Step) -> StepResult:
    try:
        status = step.action(ctx)
    except Exception as exc:  # one broken step must not stop the run
        logger.exception("%s failed unexpectedly", step.title)
        return StepResult(step.tool, step.title, StepStatus.FAILED, str(exc))
    return StepResult(step.tool, step.title, status)


def run_optimization(
    ctx: RunContext,
    steps: Optional[Sequence[Step]] = None,
    on_step: Optional[StepCallback] = None,
) -> RunReport:
    """Run every step once, marking the registry as each one finishes."""
    plan = list(STEPS if steps is None else steps)
    report = RunReport()
    ctx.registry.ensure()

    for index, step in enumerate(plan, start=1):
        if on_step is not None:
            on_step(index, len(plan), step)
        logger.info("[%d/%d] %s", index, len(plan), step.title)
        result = run_step(ctx, step)
        report.results.append(result)

        if result.status in MARKED_STATUSES:
            if step.needs_reboot:
                ctx.request_reboot()
            ctx.registry.mark_applied(step.tool)
        if result.status is StepStatus.FAILED:
            logger.error("%s finished with errors", step.title)

    report.reboot_required = ctx.reboot_required
    return report


def cleanup_packages(ctx: RunContext) -> None:
    logger.info("Removing no longer required packages and purging old cached updates...")
    ctx.runner.apt_get("autoremove")
    ctx.runner.apt_get("autoclean")
    logger.info("Cleanup finished")


def finish(ctx: RunContext, report: RunReport, reboot: Optional[bool] = None) -> RunReport:
    """Offer the reboot a finished run asks for, cleaning apt caches either way.

    ``reboot`` answers the question up front.  Unattended runs (``assume_yes``)
    never reboot unless told to.
    """
    if not report.reboot_required:
        return report
    if reboot is None:
        reboot = not ctx.prompter.assume_yes and ctx.prompter.confirm(
            "Some changes require a reboot to take effect. Do you want to restart now?"
        )
    cleanup_packages(ctx)
    if reboot:
        logger.warning("Rebooting the system...")
        ctx.runner.run(["reboot"]).check()
        report.rebooted = True
    else:
        logger.info("You can reboot later manually.")
    return report
