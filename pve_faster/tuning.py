"""System tuning steps: time, logging, limits, memory, kernel and shell."""

from __future__ import annotations

import logging
from typing import Optional

import requests

from .context import RunContext, StepStatus

logger = logging.getLogger(__name__)

MARKER = "# pve-faster configuration"
TIMEZONE_URL = "https://ipapi.co/{ip}/timezone"
HTTP_TIMEOUT = 10

JOURNALD_CONF = "/etc/systemd/journald.conf"
JOURNALD_CONTENT = """[Journal]
Storage=persistent
SplitMode=none
RateLimitInterval=0
RateLimitIntervalSec=0
RateLimitBurst=0
ForwardToSyslog=no
ForwardToWall=yes
Seal=no
Compress=yes
SystemMaxUse=64M
RuntimeMaxUse=60M
MaxLevelStore=warning
MaxLevelSyslog=warning
MaxLevelKMsg=warning
MaxLevelConsole=notice
MaxLevelWall=crit
"""

LOGROTATE_CONF = "/etc/logrotate.conf"
LOGROTATE_MARKER = "# pve-faster optimized configuration"
LOGROTATE_CONTENT = f"""{LOGROTATE_MARKER}
daily
su root adm
rotate 7
create
compress
size=10M
delaycompress
copytruncate
include /etc/logrotate.d
"""

SYSCTL_FILES = {
    "/etc/sysctl.d/99-maxwatches.conf": (
        "fs.inotify.max_user_watches = 1048576\n"
        "fs.inotify.max_user_instances = 1048576\n"
        "fs.inotify.max_queued_events = 1048576\n"
    ),
    "/etc/sysctl.d/99-maxkeys.conf": (
        "kernel.keys.root_maxkeys=1000000\n"
        "kernel.keys.maxkeys=1000000\n"
    ),
    "/etc/sysctl.d/99-swap.conf": (
        "vm.swappiness = 10\n"
        "vm.vfs_cache_pressure = 100\n"
    ),
    "/etc/sysctl.d/99-fs.conf": (
        "fs.nr_open = 12000000\n"
        "fs.file-max = 9223372036854775807\n"
        "fs.aio-max-nr = 1048576\n"
    ),
}

LIMITS_CONF = "/etc/security/limits.d/99-limits.conf"
LIMITS_CONTENT = f"""{MARKER}
* soft     nproc          1048576
* hard     nproc          1048576
* soft     nofile         1048576
* hard     nofile         1048576
root soft     nproc          unlimited
root hard     nproc          unlimited
root soft     nofile         unlimited
root hard     nofile         unlimited
"""

HAVEGED_DEFAULTS = "/etc/default/haveged"
HAVEGED_CONTENT = """#   -w sets low entropy watermark (in bits)
DAEMON_ARGS="-w 1024"
"""

MEMORY_CONF = "/etc/sysctl.d/99-memory.conf"
MEMORY_CONTENT = """# Balanced Memory Optimization
vm.swappiness = 10
vm.dirty_ratio = 15
vm.dirty_background_ratio = 5
vm.overcommit_memory = 1
vm.max_map_count = 65530
"""
COMPACTION_KNOB = "/proc/sys/vm/compaction_proactiveness"

KERNEL_PANIC_CONF = "/etc/sysctl.d/99-kernelpanic.conf"
KERNEL_PANIC_CONTENT = """# Enable restart on kernel panic, kernel oops and hardlockup
kernel.core_pattern = /var/crash/core.%t.%p
kernel.panic = 10
kernel.panic_on_oops = 1
kernel.hardlockup_panic = 1
"""

BASHRC = "/root/.bashrc"
BASH_PROFILE = "/root/.bash_profile"
BASHRC_MARKER = "PVE_FASTER_BASHRC"
BASHRC_BLOCK = r"""export HISTTIMEFORMAT="%d/%m/%y %T "
export PS1="\[\e[31m\][\[\e[m\]\[\e[38;5;172m\]\u\[\e[m\]@\[\e[38;5;153m\]\h\[\e[m\] \[\e[38;5;214m\]\W\[\e[m\]\[\e[31m\]]\[\e[m\]\\$ "
alias l='ls -CF'
alias la='ls -A'
alias ll='ls -alF'
alias ls='ls --color=auto'
alias grep='grep --color=auto'
alias fgrep='fgrep --color=auto'
alias egrep='egrep --color=auto'
source /etc/profile.d/bash_completion.sh
"""


def lookup_timezone(ip: str, session: Optional[requests.Session] = None) -> Optional[str]:
    """Ask ipapi.co for the timezone of ``ip``; None when it cannot tell."""
    http = session or requests
    try:
        response = http.get(TIMEZONE_URL.format(ip=ip), timeout=HTTP_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Timezone lookup failed: %s", exc)
        return None
    timezone = response.text.strip()
    if not timezone or " " in timezone or timezone.startswith("{"):
        return None
    return timezone


def configure_time_sync(ctx: RunContext) -> StepStatus:
    runner = ctx.runner
    logger.info("Configuring system time settings...")
    found = runner.run(["dig", "+short", "myip.opendns.com", "@resolver1.opendns.com"])
    public_ip = found.stdout.strip().splitlines()[0] if found.ok and found.stdout.strip() else ""

    timezone = None
    if not public_ip:
        logger.warning("Failed to obtain public IP address")
    else:
        timezone = lookup_timezone(public_ip)
        if timezone is None:
            logger.warning("Failed to determine timezone from IP address")
        else:
            logger.info("Found timezone %s for IP %s", timezone, public_ip)

    if timezone and not runner.run(["timedatectl", "set-timezone", timezone]).ok:
        logger.warning("Could not set timezone %s", timezone)

    if not runner.run(["timedatectl", "set-ntp", "true"]).ok:
        logger.error("Failed to enable automatic time synchronization")
        return StepStatus.FAILED
    logger.info("Time settings configured, timezone: %s", timezone or "UTC")
    return StepStatus.APPLIED


def optimize_journald(ctx: RunContext) -> StepStatus:
    logger.info("Limiting size and optimizing journald...")
    ctx.files.write(JOURNALD_CONF, JOURNALD_CONTENT)
    runner = ctx.runner
    results = [
        runner.systemctl("restart", "systemd-journald.service"),
        runner.run(["journalctl", "--vacuum-size=64M", "--vacuum-time=1d"]),
        runner.run(["journalctl", "--rotate"]),
    ]
    if not all(result.ok for result in results):
        logger.warning("journald was reconfigured but could not be restarted or vacuumed")
        return StepStatus.FAILED
    logger.info("Journald optimized, max size 64M")
    return StepStatus.APPLIED


def optimize_logrotate(ctx: RunContext) -> StepStatus:
    files = ctx.files
    if not files.contains(LOGROTATE_CONF, "^" + LOGROTATE_MARKER):
        files.backup_once(LOGROTATE_CONF)
        files.write(LOGROTATE_CONF, LOGROTATE_CONTENT)
        if not ctx.runner.systemctl("restart", "logrotate").ok:
            logger.warning("Could not restart logrotate")
    logger.info("Logrotate optimization completed")
    return StepStatus.APPLIED


def increase_system_limits(ctx: RunContext) -> StepStatus:
    files = ctx.files
    logger.info("Increasing various system limits...")
    for path, body in SYSCTL_FILES.items():
        files.write(path, f"{MARKER}\n{body}")
    files.write(LIMITS_CONF, LIMITS_CONTENT)

    for path in ("/etc/systemd/system.conf", "/etc/systemd/user.conf"):
        files.ensure_line(path, "DefaultLimitNOFILE=256000", pattern=r"^DefaultLimitNOFILE=")
    for path in ("/etc/pam.d/common-session", "/etc/pam.d/runuser-l"):
        files.ensure_line(path, "session required pam_limits.so", pattern=r"^session required pam_limits\.so")
    files.ensure_line("/root/.profile", "ulimit -n 256000", pattern=r"ulimit -n 256000")
    logger.info("System limits increase completed")
    return StepStatus.APPLIED


def configure_entropy(ctx: RunContext) -> StepStatus:
    runner = ctx.runner
    logger.info("Configuring entropy generation...")
    installed = runner.apt_get("install", "haveged").ok
    if not installed:
        logger.error("Failed to install haveged")
    ctx.files.write(HAVEGED_DEFAULTS, HAVEGED_CONTENT)
    runner.systemctl("daemon-reload")
    enabled = runner.systemctl("enable", "haveged").ok
    if not (installed and enabled):
        return StepStatus.FAILED
    logger.info("Entropy generation configuration completed")
    return StepStatus.APPLIED


def optimize_memory_settings(ctx: RunContext) -> StepStatus:
    content = MEMORY_CONTENT
    if ctx.files.exists(COMPACTION_KNOB):
        content += "vm.compaction_proactiveness = 20\n"
    ctx.files.write(MEMORY_CONF, content)
    logger.info("Memory optimization completed")
    return StepStatus.APPLIED


def configure_kernel_panic(ctx: RunContext) -> StepStatus:
    ctx.files.write(KERNEL_PANIC_CONF, KERNEL_PANIC_CONTENT)
    logger.info("Kernel panic behaviour configured")
    return StepStatus.APPLIED


def disable_rpc(ctx: RunContext) -> StepStatus:
    logger.info("Disabling portmapper/rpcbind...")
    ctx.runner.systemctl("disable", "rpcbind")
    ctx.runner.systemctl("stop", "rpcbind")
    logger.info("portmapper/rpcbind has been disabled")
    return StepStatus.APPLIED


def customize_bashrc(ctx: RunContext) -> StepStatus:
    files = ctx.files
    if not files.contains(BASHRC, rf"^# BEGIN {BASHRC_MARKER}$"):
        files.backup_once(BASHRC)
    files.replace_block(BASHRC, BASHRC_MARKER, BASHRC_BLOCK)
    files.ensure_line(BASH_PROFILE, "source /root/.bashrc", pattern=r"source /root/\.bashrc")
    logger.info("Bashrc customization completed")
    return StepStatus.APPLIED
