"""Idempotent edits of configuration files.

Every path handed to :class:`FileEditor` is an absolute OS path such as
``/etc/sysctl.d/99-network.conf``; it is resolved under ``root`` so the same
steps can run against a scratch directory.  Each write compares the desired
content with what is on disk first, so repeating an edit leaves the file
untouched.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from pathlib import Path
from typing import Callable, List, Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def managed_block(marker: str, block: str) -> str:
    return f"# BEGIN {marker}\n{block.rstrip()}\n# END {marker}\n"


class FileEditor:
    def __init__(self, root: PathLike = "/", dry_run: bool = False) -> None:
        self.root = Path(root)
        self.dry_run = dry_run

    def path(self, target: PathLike) -> Path:
        target = Path(target)
        if target.is_absolute():
            target = target.relative_to(target.anchor)
        return self.root / target

    def exists(self, target: PathLike) -> bool:
        return self.path(target).exists()

    def read(self, target: PathLike) -> Optional[str]:
        path = self.path(target)
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8", errors="surrogateescape")

    def glob(self, directory: PathLike, pattern: str) -> List[Path]:
        """Return matches as OS paths (relative to ``root``), sorted."""
        base = self.path(directory)
        if not base.is_dir():
            return []
        return sorted(Path("/") / match.relative_to(self.root) for match in base.glob(pattern))

    def write(self, target: PathLike, content: str, mode: int = 0o644) -> bool:
        """Write ``content`` unless the file already holds exactly that."""
        path = self.path(target)
        if self.read(target) == content:
            logger.debug("No change needed: %s", target)
            return False
        if self.dry_run:
            logger.info("[dry-run] write %s", target)
            return True
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.pve-faster.tmp")
        tmp.write_text(content, encoding="utf-8", errors="surrogateescape")
        os.chmod(tmp, mode)
        tmp.replace(path)
        logger.debug("Wrote %s", target)
        return True

    def write_if_absent(self, target: PathLike, content: str, mode: int = 0o644) -> bool:
        if self.exists(target):
            return False
        return self.write(target, content, mode=mode)

    def transform(self, target: PathLike, func: Callable[[str], str], create: bool = False) -> bool:
        """Rewrite a file through ``func``; missing files are skipped unless ``create``."""
        current = self.read(target)
        if current is None:
            if not create:
                logger.debug("%s not found, skipping", target)
                return False
            current = ""
        updated = func(current)
        if updated == current:
            return False
        return self.write(target, updated)

    def substitute(self, target: PathLike, pattern: str, repl: str, flags: int = re.MULTILINE) -> bool:
        return self.transform(target, lambda text: re.sub(pattern, repl, text, flags=flags))

    def contains(self, target: PathLike, pattern: str, flags: int = re.MULTILINE) -> bool:
        text = self.read(target)
        return text is not None and re.search(pattern, text, flags) is not None

    def ensure_line(self, target: PathLike, line: str, pattern: Optional[str] = None) -> bool:
        """Append ``line`` unless a line matching ``pattern`` (default: the line) exists."""
        regex = pattern if pattern is not None else r"^" + re.escape(line) + r"$"

        def _append(text: str) -> str:
            if re.search(regex, text, re.MULTILINE):
                return text
            if text and not text.endswith("\n"):
                text += "\n"
            return text + line + "\n"

        return self.transform(target, _append, create=True)

    def replace_block(self, target: PathLike, marker: str, block: str) -> bool:
        """Insert or refresh a ``# BEGIN marker`` / ``# END marker`` block."""
        wrapped = managed_block(marker, block)
        span = re.compile(
            r"^# BEGIN " + re.escape(marker) + r"\n.*?^# END " + re.escape(marker) + r"\n?",
            re.MULTILINE | re.DOTALL,
        )

        def _apply(text: str) -> str:
            if span.search(text):
                return span.sub(lambda _: wrapped, text, count=1)
            prefix = text
            if prefix and not prefix.endswith("\n"):
                prefix += "\n"
            if prefix and not prefix.endswith("\n\n"):
                prefix += "\n"
            return prefix + wrapped

        return self.transform(target, _apply, create=True)

    def backup_once(self, target: PathLike, suffix: str = ".bak") -> Optional[Path]:
        """Copy ``target`` next to itself unless a backup already exists."""
        source = self.path(target)
        backup = source.with_name(source.name + suffix)
        if not source.is_file() or backup.exists():
            return None
        if self.dry_run:
            logger.info("[dry-run] backup %s", target)
            return backup
        shutil.copy2(source, backup)
        logger.debug("Backed up %s to %s", source, backup)
        return backup

    def copy_into(self, sources: List[PathLike], directory: PathLike) -> None:
        if self.dry_run:
            logger.info("[dry-run] copy %d file(s) into %s", len(sources), directory)
            return
        dest = self.path(directory)
        dest.mkdir(parents=True, exist_ok=True)
        for source in sources:
            shutil.copy2(self.path(source), dest)

    def remove(self, target: PathLike) -> bool:
        path = self.path(target)
        if not path.exists() and not path.is_symlink():
            return False
        if self.dry_run:
            logger.info("[dry-run] remove %s", target)
            return True
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        return True

    def remove_glob(self, directory: PathLike, pattern: str) -> int:
        removed = 0
        for match in self.glob(directory, pattern):
            if self.remove(match):
                removed += 1
        return removed
