"""Build Windows ISOs from a UUP Dump share link.

The heavy lifting is done by aria2c and the UUP Dump converter; this module
validates the link, prepares the working directories, drives the tools and
moves the resulting ISO into the Proxmox ISO storage.
"""

from __future__ import annotations

import logging
import os
import shutil
import tarfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional
from urllib.parse import parse_qs, urlencode, urlsplit

import requests

from .config import Settings
from .errors import DependencyError, DownloadError, InvalidUupUrl, StorageError
from .prompts import Prompter
from .shell import CommandRunner

logger = logging.getLogger(__name__)

# command -> Debian package providing it
DEPENDENCIES: Dict[str, str] = {
    "curl": "curl",
    "aria2c": "aria2",
    "cabextract": "cabextract",
    "wimlib-imagex": "wimtools",
    "genisoimage": "genisoimage",
    "chntpw": "chntpw",
}
REQUIRED_PARAMS = ("id", "pack", "edition")
CONVERTER_URL = "https://git.uupdump.net/uup-dump/converter/archive/refs/heads/master.tar.gz"
GET_URL = "https://uupdump.net/get.php"
ERROR_MARKER = "#UUPDUMP_ERROR:"
ARIA2_SCRIPT = "aria2_script.txt"
ARIA2 = [
    "aria2c",
    "--no-conf",
    "--console-log-level=warn",
    "--log-level=info",
    "--log=aria2_download.log",
]
HTTP_TIMEOUT = 60


@dataclass(frozen=True)
class UupRequest:
    build_id: str
    lang: str
    edition: str
    arch: str = "amd64"

    @property
    def download_list_url(self) -> str:
        query = urlencode({"id": self.build_id, "pack": self.lang, "edition": self.edition, "aria2": 2}, safe=";")
        return f"{GET_URL}?{query}"


@dataclass(frozen=True)
class UupWorkspace:
    base: Path
    tmp_dir: Path
    converter_dir: Path


def parse_uup_url(url: str) -> UupRequest:
    """Extract ``id``, ``pack`` and ``edition`` from a UUP Dump link."""
    params = parse_qs(urlsplit(url.strip()).query, keep_blank_values=True)
    missing = [name for name in REQUIRED_PARAMS if not params.get(name) or not params[name][0]]
    if missing:
        raise InvalidUupUrl(
            "The URL does not contain the required parameters (id, pack, edition); "
            f"missing: {', '.join(missing)}"
        )
    return UupRequest(build_id=params["id"][0], lang=params["pack"][0], edition=params["edition"][0])


def ensure_dependencies(runner: CommandRunner) -> None:
    missing = [package for command, package in DEPENDENCIES.items() if runner.which(command) is None]
    if missing:
        logger.info("Installing dependencies: %s", " ".join(missing))
        runner.apt_get("update")
        if not runner.apt_get("install", *missing).ok:
            raise DependencyError(f"Failed to install: {' '.join(missing)}")
        if runner.dry_run:
            return
        logger.info("All dependencies installed")

    still_missing = [command for command in DEPENDENCIES if runner.which(command) is None]
    if still_missing:
        raise DependencyError(f"Missing commands after installation: {' '.join(still_missing)}")


def detect_iso_dir(runner: CommandRunner, fallback: Path) -> Path:
    """Directory of the first storage already holding an iso/img volume."""
    status = runner.run(["pvesm", "status", "-content", "iso"])
    for line in status.stdout.splitlines()[1:]:
        fields = line.split()
        if not fields:
            continue
        listing = runner.run(["pvesm", "list", fields[0], "--content", "iso"])
        rows = [row.split() for row in listing.stdout.splitlines()[1:]]
        for ext in ("iso", "img"):
            volid = next((row[0] for row in rows if len(row) > 1 and ext in row[1]), None)
            if volid is None:
                continue
            location = runner.run(["pvesm", "path", volid]).stdout.strip()
            if location and Path(location).parent.is_dir():
                return Path(location).parent
    if fallback.is_dir():
        return fallback
    raise StorageError("Could not determine a valid ISO storage directory")


def clean_base_dir(raw: str, default: Path) -> Path:
    cleaned = raw.rstrip().rstrip("/")
    return Path(cleaned) if cleaned else default


def prepare_workspace(base: Path, dry_run: bool = False) -> UupWorkspace:
    workspace = UupWorkspace(base=base, tmp_dir=base / "uup-temp", converter_dir=base / "uup-converter")
    if dry_run:
        logger.info("[dry-run] prepare %s", base)
        return workspace
    try:
        base.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StorageError(f"The selected base folder could not be created: {base} ({exc})") from exc
    if not os.access(base, os.W_OK):
        raise StorageError(f"No write permissions on: {base}")
    for directory in (workspace.tmp_dir, workspace.converter_dir):
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not create directory {directory}: {exc}") from exc
    return workspace


def cleanup_workspace(workspace: UupWorkspace, dry_run: bool = False) -> None:
    for directory in (workspace.tmp_dir, workspace.converter_dir):
        if dry_run:
            logger.info("[dry-run] remove %s", directory)
            continue
        shutil.rmtree(directory, ignore_errors=True)


def _strip_first_component(members: List[tarfile.TarInfo]) -> List[tarfile.TarInfo]:
    stripped = []
    for member in members:
        parts = PurePosixPath(member.name).parts[1:]
        if not parts or ".." in parts:
            continue
        member.name = str(PurePosixPath(*parts))
        stripped.append(member)
    return stripped


def download_converter(workspace: UupWorkspace, session: Optional[requests.Session] = None) -> Path:
    """Fetch and unpack the UUP converter unless ``convert.sh`` is already there."""
    script = workspace.converter_dir / "convert.sh"
    if script.exists():
        return script

    logger.info("Downloading UUP converter...")
    archive = workspace.converter_dir / "converter.tar.gz"
    http = session or requests
    try:
        with http.get(CONVERTER_URL, stream=True, timeout=HTTP_TIMEOUT) as response:
            response.raise_for_status()
            with open(archive, "wb") as fh:
                for chunk in response.iter_content(chunk_size=1 << 16):
                    fh.write(chunk)
    except requests.RequestException as exc:
        raise DownloadError(f"Failed to download the UUP converter: {exc}") from exc

    try:
        with tarfile.open(archive, "r:gz") as tar:
            members = _strip_first_component(tar.getmembers())
            if hasattr(tarfile, "data_filter"):
                tar.extractall(workspace.converter_dir, members=members, filter="data")
            else:
                tar.extractall(workspace.converter_dir, members=members)
    except (tarfile.TarError, OSError) as exc:
        raise DownloadError(f"Failed to unpack the UUP converter: {exc}") from exc

    if not script.exists():
        raise DownloadError("The UUP converter archive does not contain convert.sh")
    script.chmod(script.stat().st_mode | 0o111)
    return script


def download_uups(runner: CommandRunner, request: UupRequest, workspace: UupWorkspace) -> Path:
    """Download the UUP files for ``request`` with aria2c; returns the UUPs folder."""
    cwd = str(workspace.tmp_dir)
    fetch_list = runner.run(
        [*ARIA2, f"-o{ARIA2_SCRIPT}", "--allow-overwrite=true", "--auto-file-renaming=false", request.download_list_url],
        cwd=cwd,
    )
    if not fetch_list.ok:
        raise DownloadError("Failed to retrieve the UUP download list")

    if not runner.dry_run:
        try:
            script = (workspace.tmp_dir / ARIA2_SCRIPT).read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise DownloadError(f"The UUP download list could not be read: {exc}") from exc
        for line in script.splitlines():
            if line.startswith(ERROR_MARKER):
                raise DownloadError(f"Error generating UUP download list: {line[len(ERROR_MARKER):].strip()}")

    files = runner.run(
        [*ARIA2, "-x16", "-s16", "-j5", "-c", "-R", "-dUUPs", f"-i{ARIA2_SCRIPT}"],
        cwd=cwd,
        stream=True,
    )
    if not files.ok:
        raise DownloadError("Failed to download the UUP files")

    if runner.dry_run:
        return workspace.tmp_dir / "UUPs"
    folder = next((path for path in sorted(workspace.tmp_dir.rglob("UUPs")) if path.is_dir()), None)
    if folder is None:
        raise DownloadError("No UUP folder found")
    return folder


def find_iso(*directories: Path) -> Optional[Path]:
    for directory in directories:
        if not directory.is_dir():
            continue
        for candidate in sorted(directory.iterdir()):
            if candidate.is_file() and candidate.suffix.lower() == ".iso":
                return candidate
    return None


def convert_to_iso(runner: CommandRunner, workspace: UupWorkspace, uup_folder: Path, iso_dir: Path) -> Optional[Path]:
    logger.info("Starting ISO conversion...")
    converter = workspace.converter_dir / "convert.sh"
    runner.run([str(converter), "wim", str(uup_folder), "1"], cwd=str(workspace.tmp_dir), stream=True)

    iso = find_iso(workspace.tmp_dir, workspace.converter_dir, uup_folder)
    if iso is None:
        return None
    target = iso_dir / iso.name
    shutil.move(str(iso), str(target))
    return target


def run_uupdump_creator(
    settings: Settings,
    runner: CommandRunner,
    prompter: Prompter,
    url: Optional[str] = None,
    base_dir: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> Optional[Path]:
    """Run the whole ISO pipeline; returns the ISO path, or None when nothing was built.

    Once the workspace exists it is removed on every exit path.
    """
    ensure_dependencies(runner)

    iso_dir = detect_iso_dir(runner, settings.iso_dir)
    raw_base = base_dir if base_dir is not None else prompter.ask(
        "Enter base folder for temporary files and converter", default=str(settings.uup_base)
    )
    workspace = prepare_workspace(clean_base_dir(raw_base, settings.uup_base), dry_run=settings.dry_run)

    try:
        if url is None:
            url = prompter.ask("Paste the UUP Dump URL here")
        if not url:
            logger.warning("No UUP Dump URL given")
            return None
        request = parse_uup_url(url)
        logger.info(
            "UUP Dump request: id=%s language=%s edition=%s arch=%s",
            request.build_id,
            request.lang,
            request.edition,
            request.arch,
        )

        if settings.dry_run:
            logger.info("[dry-run] download %s", request.download_list_url)
            return None

        download_converter(workspace, session=session)
        uup_folder = download_uups(runner, request, workspace)
        iso = convert_to_iso(runner, workspace, uup_folder, iso_dir)
    finally:
        logger.info("Cleaning temporary files...")
        cleanup_workspace(workspace, dry_run=settings.dry_run)

    if iso is None:
        logger.warning("No ISO was generated")
        return None
    logger.info("ISO created successfully: %s", iso)
    return iso
