"""Remove the "No valid subscription" nag from the Proxmox web UI."""

from __future__ import annotations

import logging
import re

from .context import RunContext, StepStatus

logger = logging.getLogger(__name__)

TOOLKIT_DIR = "/usr/share/javascript/proxmox-widget-toolkit"
JS_FILE = f"{TOOLKIT_DIR}/proxmoxlib.js"
GZ_FILE = f"{TOOLKIT_DIR}/proxmoxlib.js.gz"
APT_HOOK = "/etc/apt/apt.conf.d/no-nag-script"
JS_CACHE_DIRS = ("/var/cache/pve-manager", "/var/lib/pve-manager")

_LITERAL_PATCHES = (
    ("res.data.status.toLowerCase() !== 'NoMoreNagging'", "false"),
    ('res.data.status.toLowerCase() !== "NoMoreNagging"', "false"),
    ("res.data.status.toLowerCase() !== 'active'", "false"),
    ("res.data.status !== 'Active'", "false"),
    ("subscription = !(", "subscription = false && ("),
    ("title: gettext('No valid subscription')", "title: gettext('Subscription Active')"),
    ("icon: Ext.Msg.WARNING", "icon: Ext.Msg.INFO"),
)

CHECKED_COMMAND = (
    "        checked_command: function (orig_cmd) {\n"
    "            orig_cmd();\n"
    "        },"
)

CHECK_SUBSCRIPTION = (
    "        check_subscription: function () {\n"
    "            let me = this;\n"
    "            let vm = me.getViewModel();\n"
    '            vm.set("subscriptionActive", true);\n'
    "            me.getController().updateState();\n"
    "        },"
)

APT_HOOK_CONTENT = r"""DPkg::Post-Invoke {
    "test -e /usr/share/javascript/proxmox-widget-toolkit/proxmoxlib.js && sed -i 's/res\.data\.status\.toLowerCase() !== '\''NoMoreNagging'\''/false/g' /usr/share/javascript/proxmox-widget-toolkit/proxmoxlib.js";
    "test -e /usr/share/javascript/proxmox-widget-toolkit/proxmoxlib.js && sed -i 's/res\.data\.status\.toLowerCase() !== '\''active'\''/false/g' /usr/share/javascript/proxmox-widget-toolkit/proxmoxlib.js";
    "test -e /usr/share/javascript/proxmox-widget-toolkit/proxmoxlib.js && sed -i 's/subscription = !(/subscription = false \&\& (/g' /usr/share/javascript/proxmox-widget-toolkit/proxmoxlib.js";
    "test -e /usr/share/javascript/proxmox-widget-toolkit/proxmoxlib.js.gz && rm -f /usr/share/javascript/proxmox-widget-toolkit/proxmoxlib.js.gz";
};
"""


def _replace_function(text: str, name: str, body: str) -> str:
    # From the line declaring ``name: function`` to the first line ending in "},".
    pattern = re.compile(r"^[^\n]*" + re.escape(name) + r": function.*?\},$", re.MULTILINE | re.DOTALL)
    return pattern.sub(lambda _: body, text)


def patch_proxmoxlib(text: str) -> str:
    """Return proxmoxlib.js with every subscription check neutralised."""
    for old, new in _LITERAL_PATCHES:
        text = text.replace(old, new)
    text = _replace_function(text, "checked_command", CHECKED_COMMAND)
    text = _replace_function(text, "check_subscription", CHECK_SUBSCRIPTION)
    return text


def is_patched(text: str) -> bool:
    return patch_proxmoxlib(text) == text


def remove_subscription_banner(ctx: RunContext) -> StepStatus:
    files = ctx.files
    current = files.read(JS_FILE)
    if current is None:
        logger.warning("%s not found, is proxmox-widget-toolkit installed?", JS_FILE)
        return StepStatus.SKIPPED

    already = is_patched(current) and files.read(APT_HOOK) == APT_HOOK_CONTENT
    if not already and not ctx.prompter.confirm(
        "Do you want to remove the Proxmox subscription banner from the web interface?"
    ):
        logger.warning("Banner removal cancelled by user")
        return StepStatus.DECLINED

    logger.info("Applying patches to remove the subscription banner...")
    for hook in files.glob("/etc/apt/apt.conf.d", "*nag*"):
        if str(hook) != APT_HOOK:
            files.remove(hook)
    files.write(APT_HOOK, APT_HOOK_CONTENT)

    if not ctx.runner.apt_get("--reinstall", "install", "proxmox-widget-toolkit").ok:
        logger.warning("Reinstalling proxmox-widget-toolkit failed")

    files.transform(JS_FILE, patch_proxmoxlib)
    files.remove(GZ_FILE)
    for cache_dir in JS_CACHE_DIRS:
        files.remove_glob(cache_dir, "**/*.js*")

    patched = files.read(JS_FILE) or ""
    if "!== 'NoMoreNagging'" in patched and "title: gettext('No valid subscription')" in patched:
        logger.warning("Patches may not have been applied correctly, please verify manually")
    else:
        logger.info("Subscription banner removed")
    return StepStatus.APPLIED
