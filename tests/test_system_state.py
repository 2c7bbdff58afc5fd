import pytest

from pve_faster import system_state
from pve_faster.files import FileEditor

from conftest import FakeRunner


@pytest.fixture(autouse=True)
def no_host_addresses(monkeypatch):
    monkeypatch.setattr(system_state, "_link_addresses", lambda: {})


def _iface(root, name, mac, marker="device"):
    path = root / "sys/class/net" / name
    path.mkdir(parents=True)
    (path / "address").write_text(mac + "\n")
    if marker:
        (path / marker).mkdir()


def test_physical_interfaces_filters_virtual_ones(root):
    _iface(root, "enp1s0", "AA:BB:CC:DD:EE:01")
    _iface(root, "wlo1", "aa:bb:cc:dd:ee:02", marker="phy80211")
    _iface(root, "lo", "00:00:00:00:00:00")
    _iface(root, "vmbr0", "aa:bb:cc:dd:ee:03")
    _iface(root, "tap100i0", "aa:bb:cc:dd:ee:04")
    _iface(root, "dummy0", "aa:bb:cc:dd:ee:05", marker=None)
    _iface(root, "eno2", "not-a-mac")

    found = system_state.physical_interfaces(FileEditor(root))

    assert [(iface.name, iface.mac) for iface in found] == [
        ("enp1s0", "aa:bb:cc:dd:ee:01"),
        ("wlo1", "aa:bb:cc:dd:ee:02"),
    ]


def test_psutil_addresses_take_precedence(root, monkeypatch):
    _iface(root, "eno1", "aa:bb:cc:dd:ee:01")
    monkeypatch.setattr(system_state, "_link_addresses", lambda: {"eno1": "AA:BB:CC:DD:EE:09"})
    found = system_state.physical_interfaces(FileEditor(root))
    assert found[0].mac == "aa:bb:cc:dd:ee:09"


def test_read_os_codename(root):
    (root / "etc").mkdir()
    (root / "etc/os-release").write_text('PRETTY_NAME="Debian GNU/Linux 12 (bookworm)"\nVERSION_CODENAME=bookworm\n')
    assert system_state.read_os_codename(FileEditor(root)) == "bookworm"


def test_read_os_codename_missing(root):
    assert system_state.read_os_codename(FileEditor(root)) == ""


def test_is_solid_state(root):
    files = FileEditor(root)
    assert system_state.is_solid_state(files, "nvme0n1")
    queue = root / "sys/block/sda/queue"
    queue.mkdir(parents=True)
    (queue / "rotational").write_text("1\n")
    assert not system_state.is_solid_state(files, "sda")
    (queue / "rotational").write_text("0\n")
    assert system_state.is_solid_state(files, "sda")
    assert not system_state.is_solid_state(files, "sdz")


def test_root_disk_from_lsblk():
    runner = FakeRunner(
        responses={
            "lsblk -rno": (0, "sda\nsda1 /boot/efi\nnvme0n1\nnvme0n1p3 /\n"),
            "PKNAME": (0, "nvme0n1\n"),
        }
    )
    assert system_state._root_disk(runner) == "nvme0n1"
    assert ["lsblk", "-no", "PKNAME", "/dev/nvme0n1p3"] in runner.calls


def test_root_disk_defaults_to_sda():
    assert system_state._root_disk(FakeRunner()) == "sda"


def test_gather_host_facts(root, monkeypatch):
    (root / "etc").mkdir()
    (root / "etc/os-release").write_text("VERSION_CODENAME=trixie\n")
    _iface(root, "enp2s0", "aa:bb:cc:dd:ee:10")
    runner = FakeRunner(responses={"lsblk -rno": (0, "nvme0n1p2 /\n"), "PKNAME": (0, "nvme0n1\n")})

    facts = system_state.gather_host_facts(runner, FileEditor(root))

    assert facts.os_codename == "trixie"
    assert facts.root_disk == "nvme0n1"
    assert facts.root_disk_solid_state
    assert facts.ram_total > 0
    assert [iface.name for iface in facts.interfaces] == ["enp2s0"]
