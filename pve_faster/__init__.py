"""
Post-installation optimizer and Windows ISO helper for Proxmox VE hosts.
"""

__all__ = ["registry", "orchestrator", "uupdump", "cli"]
__version__ = "0.1.0"
