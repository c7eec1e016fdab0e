"""Static asset copying for Kiln.

This module mirrors static files from the source tree into the build tree,
preserving paths relative to a base directory.

Key components:
- SourceSet: Include/exclude glob selection of files under a root.
- AssetCopier: Copies a SourceSet (or a single file) into the build tree.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .utils import display_path, glob_to_regex, relative_posix, split_patterns, static_prefix

logger = logging.getLogger(__name__)


@dataclass
class SourceSet:
    """A set of files selected by include and exclude globs.

    Globs are matched against POSIX paths relative to ``root``. A file is
    in the set when it matches any include and no exclude.

    Attributes:
        root: Directory the patterns are relative to.
        includes: Globs selecting files.
        excludes: Globs removing files regardless of includes.
    """

    root: Path
    includes: list[str]
    excludes: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._include_res = [glob_to_regex(p) for p in self.includes]
        self._exclude_res = [glob_to_regex(p) for p in self.excludes]

    @classmethod
    def from_patterns(cls, root: Path, patterns: Sequence[str]) -> SourceSet:
        """Build a set from gulp-style patterns where ``!`` marks excludes."""
        includes, excludes = split_patterns(patterns)
        return cls(root=root, includes=includes, excludes=excludes)

    def matches(self, path: Path) -> bool:
        """Whether ``path`` (absolute or root-relative) belongs to the set."""
        rel = relative_posix(path, self.root) if path.is_absolute() else path.as_posix()
        if rel is None:
            return False
        if not any(r.fullmatch(rel) for r in self._include_res):
            return False
        return not any(r.fullmatch(rel) for r in self._exclude_res)

    def iter_files(self) -> Iterator[Path]:
        """Yield matching files in sorted order."""
        found: set[Path] = set()
        for pattern in self.includes:
            base = self.root / static_prefix(pattern)
            if base.is_file():
                candidates = [base]
            elif base.is_dir():
                candidates = base.rglob("*")
            else:
                continue
            for path in candidates:
                if path.is_file() and self.matches(path):
                    found.add(path)
        yield from sorted(found)


class AssetCopier:
    """Mirrors static files into the build directory.

    Attributes:
        project_root: Project root, used for log lines.
    """

    def __init__(self, project_root: Path):
        self.project_root = project_root

    def copy(self, source_set: SourceSet, base_dir: Path, dest_dir: Path) -> list[Path]:
        """Copy every file of ``source_set`` to ``dest_dir``.

        Paths are preserved relative to ``base_dir``; files outside
        ``base_dir`` are skipped. A file that cannot be copied is logged and
        skipped; the rest of the set is still copied. Copying twice with
        unchanged sources yields identical destination bytes.

        Args:
            source_set: Files to copy.
            base_dir: Directory the destination layout is relative to.
            dest_dir: Build output directory.

        Returns:
            Destination paths that were written.
        """
        written = []
        for source in source_set.iter_files():
            try:
                dest = self.copy_file(source, base_dir, dest_dir)
            except OSError as exc:
                logger.error("Copy Error: %s %s", display_path(source, self.project_root), exc)
                continue
            if dest is not None:
                written.append(dest)
        logger.info("Copy: %d static files to %s", len(written), display_path(dest_dir, self.project_root))
        return written

    def copy_file(self, source: Path, base_dir: Path, dest_dir: Path) -> Path | None:
        """Copy a single file, creating parent directories as needed.

        Returns:
            The destination path, or None if ``source`` is outside ``base_dir``.

        Raises:
            OSError: If the file could not be copied.
        """
        try:
            rel = source.relative_to(base_dir)
        except ValueError:
            logger.warning(
                "Copy: skipping %s, outside %s",
                display_path(source, self.project_root),
                display_path(base_dir, self.project_root),
            )
            return None
        dest = dest_dir / rel
        # Ensure the parent exists on every copy: a clean may remove the root meanwhile.
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest)
        logger.debug("Copy: %s", rel.as_posix())
        return dest
