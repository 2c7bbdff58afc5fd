from datetime import datetime

from pve_faster import network
from pve_faster.context import StepStatus
from pve_faster.system_state import NetworkInterface


def _fixed_now():
    return datetime(2024, 5, 1, 12, 30, 0)


def test_network_optimizations(ctx, root):
    (root / "etc/network").mkdir(parents=True)
    (root / "etc/network/interfaces").write_text("auto lo\niface lo inet loopback\n")
    ctx.runner.responses["sysctl --system"] = (255, "")

    assert network.apply_network_optimizations(ctx) is StepStatus.APPLIED
    network.apply_network_optimizations(ctx)

    assert (root / "etc/sysctl.d/99-network.conf").read_text() == network.NETWORK_SYSCTLS
    assert (root / "etc/network/interfaces").read_text().count(network.INTERFACES_SOURCE) == 1


def test_link_file_content():
    assert network.link_file_content("eno1", "aa:bb:cc:dd:ee:ff") == (
        "[Match]\nMACAddress=aa:bb:cc:dd:ee:ff\n\n[Link]\nName=eno1\n"
    )


def test_persistent_names_backup_existing_links(ctx, root):
    links = root / "etc/systemd/network"
    links.mkdir(parents=True)
    (links / "99-custom.link").write_text("[Match]\n")

    network.setup_persistent_network(ctx, now=_fixed_now)

    assert (links / "10-enp1s0.link").read_text() == network.link_file_content("enp1s0", "aa:bb:cc:dd:ee:01")
    assert (links / "backup-20240501-123000" / "99-custom.link").exists()


def test_persistent_names_second_run_changes_nothing(ctx, root):
    network.setup_persistent_network(ctx, now=_fixed_now)
    network.setup_persistent_network(ctx, now=lambda: datetime(2024, 5, 2))
    names = sorted(path.name for path in (root / "etc/systemd/network").iterdir())
    assert names == ["10-enp1s0.link"]


def test_persistent_names_without_interfaces(ctx, root):
    ctx.facts.interfaces = []
    assert network.setup_persistent_network(ctx) is StepStatus.APPLIED
    assert not (root / "etc/systemd/network").exists()


def test_persistent_names_refresh_changed_mac(ctx, root):
    network.setup_persistent_network(ctx, now=_fixed_now)
    ctx.facts.interfaces = [NetworkInterface("enp1s0", "aa:bb:cc:dd:ee:02")]
    network.setup_persistent_network(ctx, now=lambda: datetime(2024, 5, 2))
    links = root / "etc/systemd/network"
    assert "aa:bb:cc:dd:ee:02" in (links / "10-enp1s0.link").read_text()
    assert "aa:bb:cc:dd:ee:01" in (links / "backup-20240502-000000" / "10-enp1s0.link").read_text()


def test_interfaces_source_line_with_trailing_space_is_kept(ctx, root):
    (root / "etc/network").mkdir(parents=True)
    original = "auto lo\niface lo inet loopback\n\nsource /etc/network/interfaces.d/*  \n"
    (root / "etc/network/interfaces").write_text(original)

    network.apply_network_optimizations(ctx)

    assert (root / "etc/network/interfaces").read_text() == original
