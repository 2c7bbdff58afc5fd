import requests

from pve_faster import tuning
from pve_faster.context import StepStatus


class FakeResponse:
    def __init__(self, text, status=200):
        self.text = text
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return self.response


def test_lookup_timezone():
    session = FakeSession(FakeResponse("Europe/Madrid\n"))
    assert tuning.lookup_timezone("203.0.113.7", session=session) == "Europe/Madrid"
    assert session.urls == ["https://ipapi.co/203.0.113.7/timezone"]


def test_lookup_timezone_handles_errors():
    assert tuning.lookup_timezone("203.0.113.7", session=FakeSession(error=requests.ConnectionError())) is None
    assert tuning.lookup_timezone("203.0.113.7", session=FakeSession(FakeResponse("", status=429))) is None
    assert tuning.lookup_timezone("203.0.113.7", session=FakeSession(FakeResponse('{"error": true}'))) is None


def test_time_sync_without_public_ip_still_enables_ntp(ctx):
    assert tuning.configure_time_sync(ctx) is StepStatus.APPLIED
    assert ctx.runner.ran("timedatectl set-ntp true")
    assert not ctx.runner.ran("set-timezone")


def test_time_sync_fails_when_ntp_cannot_be_enabled(ctx):
    ctx.runner.responses["set-ntp"] = (1, "")
    assert tuning.configure_time_sync(ctx) is StepStatus.FAILED


def test_journald_failure_is_reported(ctx, root):
    ctx.runner.responses["systemd-journald"] = (1, "")
    assert tuning.optimize_journald(ctx) is StepStatus.FAILED
    assert (root / "etc/systemd/journald.conf").read_text() == tuning.JOURNALD_CONTENT


def test_logrotate_backs_up_original_once(ctx, root):
    (root / "etc").mkdir()
    (root / "etc/logrotate.conf").write_text("weekly\n")
    tuning.optimize_logrotate(ctx)
    tuning.optimize_logrotate(ctx)
    assert (root / "etc/logrotate.conf.bak").read_text() == "weekly\n"
    assert (root / "etc/logrotate.conf").read_text() == tuning.LOGROTATE_CONTENT
    assert len([call for call in ctx.runner.calls if call[:2] == ["systemctl", "restart"]]) == 1


def test_system_limits(ctx, root):
    (root / "etc/systemd").mkdir(parents=True)
    (root / "etc/systemd/system.conf").write_text("[Manager]\n#DefaultLimitNOFILE=\n")
    tuning.increase_system_limits(ctx)
    tuning.increase_system_limits(ctx)
    for path in tuning.SYSCTL_FILES:
        assert (root / path.lstrip("/")).read_text().startswith(tuning.MARKER)
    assert (root / "etc/systemd/system.conf").read_text().count("DefaultLimitNOFILE=256000") == 1
    assert (root / "etc/pam.d/common-session").read_text() == "session required pam_limits.so\n"


def test_memory_settings_add_compaction_when_supported(ctx, root):
    tuning.optimize_memory_settings(ctx)
    assert "compaction_proactiveness" not in (root / "etc/sysctl.d/99-memory.conf").read_text()
    (root / "proc/sys/vm").mkdir(parents=True)
    (root / "proc/sys/vm/compaction_proactiveness").write_text("20\n")
    tuning.optimize_memory_settings(ctx)
    assert "vm.compaction_proactiveness = 20" in (root / "etc/sysctl.d/99-memory.conf").read_text()


def test_entropy_requires_haveged(ctx):
    ctx.runner.responses["install haveged"] = (100, "")
    assert tuning.configure_entropy(ctx) is StepStatus.FAILED


def test_bashrc_block_is_added_once(ctx, root):
    (root / "root").mkdir()
    (root / "root/.bashrc").write_text("# stock bashrc\n")
    tuning.customize_bashrc(ctx)
    first = (root / "root/.bashrc").read_text()
    tuning.customize_bashrc(ctx)
    assert (root / "root/.bashrc").read_text() == first
    assert first.count(f"# BEGIN {tuning.BASHRC_MARKER}") == 1
    assert "alias ll='ls -alF'" in first
    assert (root / "root/.bashrc.bak").read_text() == "# stock bashrc\n"
    assert (root / "root/.bash_profile").read_text() == "source /root/.bashrc\n"


def test_disable_rpc(ctx):
    assert tuning.disable_rpc(ctx) is StepStatus.APPLIED
    assert ["systemctl", "disable", "rpcbind"] in ctx.runner.calls
    assert ["systemctl", "stop", "rpcbind"] in ctx.runner.calls
