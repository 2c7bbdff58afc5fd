import json

import pytest

from pve_faster import orchestrator
from pve_faster.context import RunReport, Step, StepStatus
from pve_faster.registry import Tool

from conftest import FakePrompter, snapshot
from test_banner import PROXMOXLIB


@pytest.fixture
def host(root):
    (root / "etc").mkdir()
    (root / "etc/os-release").write_text("VERSION_CODENAME=bookworm\n")
    (root / "etc/apt").mkdir()
    (root / "etc/apt/sources.list").write_text("deb http://ftp.es.debian.org/debian bookworm main contrib\n")
    (root / "root").mkdir()
    (root / "root/.bashrc").write_text("# stock bashrc\n")
    toolkit = root / "usr/share/javascript/proxmox-widget-toolkit"
    toolkit.mkdir(parents=True)
    (toolkit / "proxmoxlib.js").write_text(PROXMOXLIB)
    return root


def test_steps_follow_fixed_order():
    tools = [step.tool for step in orchestrator.STEPS]
    assert tools == list(Tool)
    assert tools.index(Tool.REPOSITORIES) < tools.index(Tool.APT_UPGRADE)
    assert tools[-1] is Tool.PERSISTENT_NETWORK


def test_select_steps_keeps_order():
    steps = orchestrator.select_steps(["persistent_network", "repositories", "journald"])
    assert [step.tool for step in steps] == [Tool.REPOSITORIES, Tool.JOURNALD, Tool.PERSISTENT_NETWORK]


def test_select_steps_rejects_unknown_tool():
    with pytest.raises(ValueError):
        orchestrator.select_steps(["turbo"])


def test_full_run_marks_every_attempted_tool(ctx, host):
    report = orchestrator.run_optimization(ctx)

    assert [result.tool for result in report.results] == list(Tool)
    # log2ram cannot verify its install against a fake runner
    assert report.status_of(Tool.LOG2RAM) is StepStatus.FAILED
    registry = json.loads(ctx.settings.registry_path.read_text())
    assert registry == {tool.value: True for tool in Tool}
    assert report.reboot_required


def test_full_run_twice_leaves_files_unchanged(ctx, host):
    orchestrator.run_optimization(ctx)
    first = snapshot(host)
    orchestrator.run_optimization(ctx)
    assert snapshot(host) == first


def test_declined_and_skipped_steps_are_not_marked(ctx, host):
    ctx.prompter.answer = False
    ctx.facts.root_disk_solid_state = False

    report = orchestrator.run_optimization(ctx)

    assert report.status_of(Tool.SUBSCRIPTION_BANNER) is StepStatus.DECLINED
    assert report.status_of(Tool.LOG2RAM) is StepStatus.SKIPPED
    assert not ctx.registry.is_applied(Tool.SUBSCRIPTION_BANNER)
    assert not ctx.registry.is_applied(Tool.LOG2RAM)
    assert ctx.registry.is_applied(Tool.JOURNALD)


def test_crashing_step_is_failed_and_run_continues(ctx):
    def explode(_ctx):
        raise RuntimeError("boom")

    steps = [Step(Tool.ENTROPY, "Entropy", explode), orchestrator.STEPS[12]]
    report = orchestrator.run_optimization(ctx, steps)

    assert report.results[0].status is StepStatus.FAILED
    assert report.results[0].message == "boom"
    assert report.results[1].tool is Tool.KERNEL_PANIC
    assert ctx.registry.is_applied(Tool.ENTROPY)


def test_reboot_flag_only_from_reboot_steps(ctx):
    report = orchestrator.run_optimization(ctx, orchestrator.select_steps(["apt_ipv4", "disable_rpc"]))
    assert not report.reboot_required
    report = orchestrator.run_optimization(ctx, orchestrator.select_steps(["kernel_panic"]))
    assert report.reboot_required


def test_on_step_callback(ctx):
    seen = []
    orchestrator.run_optimization(
        ctx,
        orchestrator.select_steps(["apt_ipv4", "kernel_panic"]),
        on_step=lambda index, total, step: seen.append((index, total, step.tool)),
    )
    assert seen == [(1, 2, Tool.KERNEL_PANIC), (2, 2, Tool.APT_IPV4)]


def test_finish_without_reboot_required_does_nothing(ctx):
    orchestrator.finish(ctx, RunReport())
    assert ctx.runner.calls == []
    assert ctx.prompter.questions == []


def test_finish_asks_and_reboots(ctx):
    report = orchestrator.finish(ctx, RunReport(reboot_required=True))
    assert report.rebooted
    assert ctx.runner.calls[-1] == ["reboot"]
    assert ["autoremove"] in ctx.runner.apt_calls()


def test_finish_declined_still_cleans_up(ctx):
    ctx.prompter.answer = False
    report = orchestrator.finish(ctx, RunReport(reboot_required=True))
    assert not report.rebooted
    assert not ctx.runner.ran("reboot")
    assert ["autoclean"] in ctx.runner.apt_calls()


def test_unattended_finish_never_reboots_unless_told(ctx):
    ctx.prompter = FakePrompter(assume_yes=True)
    assert not orchestrator.finish(ctx, RunReport(reboot_required=True)).rebooted
    assert ctx.prompter.questions == []
    assert orchestrator.finish(ctx, RunReport(reboot_required=True), reboot=True).rebooted
