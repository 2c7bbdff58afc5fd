"""Network stack tuning and persistent interface names."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from .context import RunContext, StepStatus

logger = logging.getLogger(__name__)

NETWORK_CONF = "/etc/sysctl.d/99-network.conf"
INTERFACES_FILE = "/etc/network/interfaces"
INTERFACES_SOURCE = "source /etc/network/interfaces.d/*"
LINK_DIR = "/etc/systemd/network"

NETWORK_SYSCTLS = """net.core.netdev_max_backlog=8192
net.core.optmem_max=8192
net.core.rmem_max=16777216
net.core.somaxconn=8151
net.core.wmem_max=16777216
net.ipv4.conf.all.accept_redirects = 0
net.ipv4.conf.all.accept_source_route = 0
net.ipv4.conf.all.log_martians = 0
net.ipv4.conf.all.rp_filter = 1
net.ipv4.conf.all.secure_redirects = 0
net.ipv4.conf.all.send_redirects = 0
net.ipv4.conf.default.accept_redirects = 0
net.ipv4.conf.default.accept_source_route = 0
net.ipv4.conf.default.log_martians = 0
net.ipv4.conf.default.rp_filter = 1
net.ipv4.conf.default.secure_redirects = 0
net.ipv4.conf.default.send_redirects = 0
net.ipv4.icmp_echo_ignore_broadcasts = 1
net.ipv4.icmp_ignore_bogus_error_responses = 1
net.ipv4.ip_local_port_range=1024 65535
net.ipv4.tcp_base_mss = 1024
net.ipv4.tcp_challenge_ack_limit = 999999999
net.ipv4.tcp_fin_timeout=10
net.ipv4.tcp_keepalive_intvl=30
net.ipv4.tcp_keepalive_probes=3
net.ipv4.tcp_keepalive_time=240
net.ipv4.tcp_limit_output_bytes=65536
net.ipv4.tcp_max_syn_backlog=8192
net.ipv4.tcp_max_tw_buckets = 1440000
net.ipv4.tcp_mtu_probing = 1
net.ipv4.tcp_rfc1337=1
net.ipv4.tcp_rmem=8192 87380 16777216
net.ipv4.tcp_sack=1
net.ipv4.tcp_slow_start_after_idle=0
net.ipv4.tcp_syn_retries=3
net.ipv4.tcp_synack_retries = 2
net.ipv4.tcp_tw_recycle = 0
net.ipv4.tcp_tw_reuse = 0
net.ipv4.tcp_wmem=8192 65536 16777216
net.netfilter.nf_conntrack_generic_timeout = 60
net.netfilter.nf_conntrack_helper=0
net.netfilter.nf_conntrack_max = 524288
net.netfilter.nf_conntrack_tcp_timeout_established = 28800
net.unix.max_dgram_qlen = 4096
"""


def link_file_content(name: str, mac: str) -> str:
    return f"[Match]\nMACAddress={mac}\n\n[Link]\nName={name}\n"


def apply_network_optimizations(ctx: RunContext) -> StepStatus:
    logger.info("Optimizing network settings...")
    ctx.files.write(NETWORK_CONF, NETWORK_SYSCTLS)
    if not ctx.runner.run(["sysctl", "--system"]).ok:
        # Unknown keys (tcp_tw_recycle on newer kernels) make sysctl exit non-zero.
        logger.warning("sysctl --system reported errors, see the log for details")
    ctx.files.ensure_line(INTERFACES_FILE, INTERFACES_SOURCE, pattern=r"source /etc/network/interfaces\.d/\*")
    logger.info("Network optimization completed")
    return StepStatus.APPLIED


def setup_persistent_network(ctx: RunContext, now: Optional[Callable[[], datetime]] = None) -> StepStatus:
    files = ctx.files
    logger.info("Setting up persistent network interface names...")
    interfaces = ctx.facts.interfaces
    if not interfaces:
        logger.warning("No physical interfaces found")
        return StepStatus.APPLIED

    wanted = {f"{LINK_DIR}/10-{iface.name}.link": link_file_content(iface.name, iface.mac) for iface in interfaces}
    pending = [path for path, content in wanted.items() if files.read(path) != content]
    if not pending:
        logger.info("Persistent names already configured for %d interface(s)", len(wanted))
        return StepStatus.APPLIED

    existing = files.glob(LINK_DIR, "*.link")
    if existing:
        stamp = (now or datetime.now)().strftime("%Y%m%d-%H%M%S")
        files.copy_into(existing, f"{LINK_DIR}/backup-{stamp}")

    for path in pending:
        files.write(path, wanted[path])
    logger.info("Created persistent names for %d interface(s); changes apply after reboot", len(wanted))
    return StepStatus.APPLIED
