import json

import pytest

from pve_faster import cli


@pytest.fixture
def env(tmp_path, monkeypatch):
    for name in ("PVE_FASTER_ROOT", "PVE_FASTER_REGISTRY", "PVE_FASTER_LOG_FILE"):
        monkeypatch.delenv(name, raising=False)
    root = tmp_path / "root"
    (root / "etc").mkdir(parents=True)
    (root / "etc/os-release").write_text("VERSION_CODENAME=bookworm\n")
    return {
        "root": root,
        "registry": tmp_path / "installed_tools.json",
        "log": tmp_path / "pve-faster.log",
    }


def _global_args(env):
    return ["--root", str(env["root"]), "--registry", str(env["registry"]), "--log-file", str(env["log"])]


def test_status_json(env, capsys):
    env["registry"].write_text(json.dumps({"journald": True, "log2ram": False}))

    assert cli.main(_global_args(env) + ["status", "--json"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["registry"] == {"journald": True, "log2ram": False}
    assert payload["facts"]["os_codename"] == "bookworm"


def test_status_plain(env, capsys):
    assert cli.main(_global_args(env) + ["status"]) == 0
    out = capsys.readouterr().out
    assert "Debian codename: bookworm" in out
    assert "No tools registered yet" in out


def test_dry_run_optimize_writes_nothing(env, capsys):
    before = sorted(env["root"].rglob("*"))

    code = cli.main(_global_args(env) + ["optimize", "--dry-run", "--only", "kernel_panic", "apt_ipv4", "--no-reboot"])

    assert code == 0
    assert sorted(env["root"].rglob("*")) == before
    assert not env["registry"].exists()
    out = capsys.readouterr().out
    assert "Kernel panic behaviour" in out
    assert "A reboot is required" in out
    assert "dry-run" in env["log"].read_text()


def test_optimize_requires_root(monkeypatch, env):
    monkeypatch.setattr(cli.os, "geteuid", lambda: 1000)
    args = ["--registry", str(env["registry"]), "--log-file", str(env["log"]), "optimize", "--yes"]
    assert cli.main(args) == 1
    assert not env["registry"].exists()


def test_unknown_tool_is_rejected(env):
    with pytest.raises(SystemExit):
        cli.main(_global_args(env) + ["optimize", "--only", "turbo"])


def test_bad_uup_link_exits_with_error(env, monkeypatch, tmp_path):
    monkeypatch.setenv("PVE_FASTER_ISO_DIR", str(tmp_path))
    args = ["uupdump", "--url", "https://uupdump.net/?id=x", "--base-dir", str(tmp_path / "uup"), "--dry-run"]
    code = cli.main(_global_args(env) + args)
    assert code == 1
    assert "missing: pack, edition" in env["log"].read_text()
