"""APT repository configuration, package upgrade and APT tuning steps."""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Set, Tuple

from .context import RunContext, StepStatus

logger = logging.getLogger(__name__)

SOURCES_LIST = "/etc/apt/sources.list"
SOURCES_DIR = "/etc/apt/sources.list.d"
PVE_ENTERPRISE_LIST = f"{SOURCES_DIR}/pve-enterprise.list"
CEPH_LIST = f"{SOURCES_DIR}/ceph.list"
PVE_PUBLIC_LIST = f"{SOURCES_DIR}/pve-public-repo.list"
APT_CONF_DIR = "/etc/apt/apt.conf.d"
FIRMWARE_WARNING_CONF = f"{APT_CONF_DIR}/no-bookworm-firmware.conf"
TRANSLATIONS_CONF = f"{APT_CONF_DIR}/99-disable-translations"
FORCE_IPV4_CONF = f"{APT_CONF_DIR}/99-force-ipv4"

CONFLICTING_PACKAGES = ["ntp", "openntpd", "systemd-timesyncd"]
EXTRA_PACKAGES = ["zfsutils-linux", "proxmox-backup-restore-image", "chrony"]
DEFAULT_LOCALE = "en_US.UTF-8"

DEBIAN_COMPONENTS = "main contrib non-free non-free-firmware"
NO_SUBSCRIPTION_RE = r"^deb\s.*pve-no-subscription"


def pve_no_subscription_line(codename: str) -> str:
    return f"deb http://download.proxmox.com/debian/pve {codename} pve-no-subscription"


def comment_out_deb(text: str, pattern: str = r"^deb\b") -> str:
    """Prefix active ``deb`` lines matching ``pattern`` with ``#``."""
    regex = re.compile(pattern)
    lines = [f"#{line}" if regex.match(line) else line for line in text.splitlines()]
    return _join(lines, text)


def ensure_debian_repos(text: str, codename: str) -> str:
    """Point sources.list at deb.debian.org with full security and updates suites."""
    text = text.replace("ftp.es.debian.org", "deb.debian.org")
    security = f"deb http://security.debian.org/debian-security {codename}-security {DEBIAN_COMPONENTS}"
    text = re.sub(
        r"^deb http://security\.debian\.org " + re.escape(f"{codename}-security") + r" main contrib\b.*$",
        security,
        text,
        flags=re.MULTILINE,
    )
    wanted = [
        (f"deb http://security.debian.org/debian-security {codename}-security", security),
        (f"deb http://deb.debian.org/debian {codename} ", f"deb http://deb.debian.org/debian {codename} {DEBIAN_COMPONENTS}"),
        (
            f"deb http://deb.debian.org/debian {codename}-updates",
            f"deb http://deb.debian.org/debian {codename}-updates {DEBIAN_COMPONENTS}",
        ),
    ]
    for probe, line in wanted:
        if probe not in text:
            if text and not text.endswith("\n"):
                text += "\n"
            text += line + "\n"
    return text


def dedupe_sources(text: str) -> Tuple[str, int]:
    """Comment out ``deb`` lines repeating an earlier URL + suite pair."""
    seen: Set[Tuple[str, str]] = set()
    lines: List[str] = []
    duplicates = 0
    for line in text.splitlines():
        fields = _deb_fields(line)
        if fields is None:
            lines.append(line)
            continue
        if fields in seen:
            lines.append(f"# {line}")
            duplicates += 1
        else:
            seen.add(fields)
            lines.append(line)
    return _join(lines, text), duplicates


def _deb_fields(line: str):
    tokens = line.split()
    if not tokens or tokens[0] != "deb":
        return None
    rest = tokens[1:]
    if rest and rest[0].startswith("["):
        while rest and not rest[0].endswith("]"):
            rest = rest[1:]
        rest = rest[1:]
    if len(rest) < 2:
        return None
    return rest[0], rest[1]


def _join(lines: List[str], original: str) -> str:
    out = "\n".join(lines)
    if original.endswith("\n"):
        out += "\n"
    return out


# ── steps ────────────────────────────────────────────────────────────────────


def configure_repositories(ctx: RunContext) -> StepStatus:
    files = ctx.files
    for path, label in ((PVE_ENTERPRISE_LIST, "enterprise Proxmox"), (CEPH_LIST, "enterprise Proxmox Ceph")):
        if files.contains(path, r"^deb"):
            files.transform(path, comment_out_deb)
            logger.info("Disabled %s repository", label)

    if not ctx.codename:
        logger.error("Cannot configure repositories without the OS codename")
        return StepStatus.FAILED

    if not files.contains(PVE_PUBLIC_LIST, r"pve-no-subscription"):
        files.write(PVE_PUBLIC_LIST, pve_no_subscription_line(ctx.codename) + "\n")
        logger.info("Enabled free public Proxmox repository")

    files.transform(SOURCES_LIST, lambda text: ensure_debian_repos(text, ctx.codename), create=True)
    logger.info("Debian repositories configured")

    if files.write_if_absent(
        FIRMWARE_WARNING_CONF, 'APT::Get::Update::SourceListWarnings::NonFreeFirmware "false";\n'
    ):
        logger.info("Disabled non-free firmware warnings")
    return StepStatus.APPLIED


def apt_upgrade(ctx: RunContext) -> StepStatus:
    runner = ctx.runner
    logger.info("Updating package lists...")
    if not runner.apt_get("update").ok:
        logger.error("Failed to update package lists")
        return StepStatus.FAILED

    status = StepStatus.APPLIED
    if runner.apt_get("purge", *CONFLICTING_PACKAGES).ok:
        logger.info("Removed conflicting time utilities")
    else:
        logger.error("Failed to remove conflicting utilities")
        status = StepStatus.FAILED

    simulated = runner.run(["apt-get", "-s", "dist-upgrade"])
    pending = sum(1 for line in simulated.stdout.splitlines() if line.startswith("Inst "))
    logger.info("Upgrading %d package(s)...", pending)
    if runner.apt_get("dist-upgrade").ok:
        logger.info("System upgrade completed")
    else:
        logger.error("System upgrade failed")
        status = StepStatus.FAILED

    if runner.apt_get("install", *EXTRA_PACKAGES).ok:
        logger.info("Installed additional Proxmox packages")
    else:
        logger.error("Failed to install additional Proxmox packages")
        status = StepStatus.FAILED
    return status


def repair_lvm_headers(ctx: RunContext) -> StepStatus:
    runner = ctx.runner
    logger.info("Checking for old LVM PV headers...")
    listing = runner.run(["pvs", "-v"], env={"LC_ALL": "C"})
    report = listing.stdout + listing.stderr
    groups: Dict[str, None] = {}
    for line in report.splitlines():
        if "old PV header" not in line:
            continue
        match = re.search(r"/dev/\S+", line)
        if not match:
            continue
        owner = runner.run(["pvs", "-o", "vg_name", "--noheadings", match.group(0)])
        vg = owner.stdout.strip().split()[0] if owner.stdout.strip() else ""
        if vg:
            groups[vg] = None

    if not groups:
        logger.info("No PVs with old headers found")
        return StepStatus.APPLIED

    status = StepStatus.APPLIED
    for vg in groups:
        logger.warning("Old PV header(s) found in VG %s, updating metadata", vg)
        runner.run(["vgck", "--updatemetadata", vg])
        if runner.run(["vgchange", "-ay", vg]).ok:
            logger.info("Metadata updated for VG %s", vg)
        else:
            logger.warning("Metadata update failed for VG %s, review manually", vg)
            status = StepStatus.FAILED
    return status


def cleanup_duplicate_repos(ctx: RunContext) -> StepStatus:
    files = ctx.files
    duplicates = 0

    def _dedupe(text: str) -> str:
        nonlocal duplicates
        cleaned, duplicates = dedupe_sources(text)
        return cleaned

    files.transform(SOURCES_LIST, _dedupe)

    # pve-public-repo.list stays the one place the no-subscription repo is enabled
    if files.contains(PVE_PUBLIC_LIST, NO_SUBSCRIPTION_RE):
        candidates = set(files.glob(SOURCES_DIR, "*proxmox*.list")) | set(files.glob(SOURCES_DIR, "*pve*.list"))
        for path in sorted(candidates):
            if str(path) == PVE_PUBLIC_LIST or not files.contains(path, NO_SUBSCRIPTION_RE):
                continue
            files.transform(path, lambda text: comment_out_deb(text, NO_SUBSCRIPTION_RE))
            duplicates += 1

    if duplicates:
        logger.info("Disabled %d duplicate repository entries", duplicates)
    else:
        logger.info("No duplicate repositories found")

    if not ctx.runner.apt_get("update").ok:
        logger.error("Failed to update package lists")
        return StepStatus.FAILED
    return StepStatus.APPLIED


def skip_apt_languages(ctx: RunContext) -> StepStatus:
    files = ctx.files
    locale = _default_locale(files.read("/etc/default/locale")) or _default_locale(files.read("/etc/environment"))
    locale = locale or DEFAULT_LOCALE
    normalized = locale.lower().replace("utf-8", "utf8").replace("-", "_", 1)

    available = ctx.runner.run(["locale", "-a"]).stdout.lower().split()
    if normalized not in available:
        files.ensure_line("/etc/locale.gen", f"{locale} UTF-8", pattern=r"^" + re.escape(locale) + r"\s+UTF-8")
        if not ctx.runner.run(["locale-gen", locale]).ok:
            logger.warning("locale-gen failed for %s", locale)

    files.write(TRANSLATIONS_CONF, 'Acquire::Languages "none";\n')
    logger.info("APT configured to skip additional languages")
    return StepStatus.APPLIED


def _default_locale(text) -> str:
    if not text:
        return ""
    for line in text.splitlines():
        if line.startswith("LANG="):
            return line.split("=", 1)[1].strip().strip('"')
    return ""


def force_apt_ipv4(ctx: RunContext) -> StepStatus:
    ctx.files.write(FORCE_IPV4_CONF, 'Acquire::ForceIPv4 "true";\n')
    logger.info("APT configured to use IPv4")
    return StepStatus.APPLIED
