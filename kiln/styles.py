"""SCSS compilation for Kiln.

Stylesheets are compiled with libsass. Every compile recompiles the whole set
because stylesheets import each other; partials (``_name.scss``) are only
compiled through the files that import them.

Key classes:
- StyleCompiler: Compiles the stylesheet set into the build directory.
- CompiledStyle: One compiled stylesheet and its source map.
- StyleError: Structured compile error passed to the error callback.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

import sass

from .utils import display_path, glob_to_regex, relative_posix, static_prefix

logger = logging.getLogger(__name__)

# libsass: "Error: message\n        on line 3:7 of sass/_b.scss\n..."
_LOCATION_RE = re.compile(r"on line (?P<line>\d+)(?::(?P<column>\d+))? of (?P<path>\S[^\n]*)")
# Compact "path:line:column message" form.
_COMPACT_RE = re.compile(r"(?P<path>[^:\n]+):(?P<line>\d+):(?P<column>\d*)\s*(?P<message>.*)")


@dataclass(frozen=True)
class StyleError:
    """A stylesheet compile error.

    Attributes:
        path: Absolute path of the file that failed.
        line: One-based line, when reported.
        column: One-based column, when reported.
        message: Compiler message.
    """

    path: Path
    line: int | None
    column: int | None
    message: str


@dataclass(frozen=True)
class CompiledStyle:
    """A stylesheet written to the build directory."""

    source: Path
    destination: Path
    source_map: Path


def parse_compile_error(text: str, source: Path, root: Path | None = None) -> StyleError:
    """Turn a libsass error message into a StyleError.

    Args:
        text: ``str()`` of the ``sass.CompileError``.
        source: Entry-point file being compiled, used when no location is found.
        root: Directory relative error paths are resolved against.

    Returns:
        Structured error. Location fields are None when the message has none.
    """
    lines = [line for line in text.strip().splitlines() if line.strip()]
    first = lines[0].strip() if lines else "Unknown error"
    message = first[len("Error:") :].strip() if first.startswith("Error:") else first

    location = _LOCATION_RE.search(text)
    if location:
        return StyleError(
            path=_resolve(location.group("path"), source, root),
            line=int(location.group("line")),
            column=int(location.group("column")) if location.group("column") else None,
            message=message,
        )
    compact = _COMPACT_RE.match(first)
    if compact:
        return StyleError(
            path=_resolve(compact.group("path"), source, root),
            line=int(compact.group("line")),
            column=int(compact.group("column")) if compact.group("column") else None,
            message=compact.group("message") or message,
        )
    return StyleError(path=source, line=None, column=None, message=message)


def _resolve(path_text: str, source: Path, root: Path | None) -> Path:
    path_text = path_text.strip()
    if path_text in ("stdin", ""):
        return source
    path = Path(path_text)
    if path.is_absolute():
        return path
    # libsass reports paths relative to the working directory.
    if (Path.cwd() / path).exists():
        return (Path.cwd() / path).resolve()
    return root / path if root is not None else path


class StyleCompiler:
    """Compiles SCSS sources with libsass.

    Attributes:
        project_root: Directory the patterns are relative to.
        styles_dir: Base directory of stylesheets; output mirrors paths below it.
        output_dir: Directory compiled CSS is written to.
        patterns: Globs selecting stylesheet sources.
        output_style: libsass output style.
        on_error: Called with a StyleError for each file that fails.
    """

    def __init__(
        self,
        project_root: Path,
        styles_dir: Path,
        output_dir: Path,
        patterns: Sequence[str] = ("sass/**/*.scss",),
        output_style: str = "compressed",
        on_error: Callable[[StyleError], None] | None = None,
    ):
        self.project_root = project_root
        self.styles_dir = styles_dir
        self.output_dir = output_dir
        self.patterns = list(patterns)
        self.output_style = output_style
        self.on_error = on_error or self._log_error
        self._regexes = [glob_to_regex(p) for p in self.patterns]

    def matches(self, path: Path) -> bool:
        """Whether ``path`` belongs to the stylesheet set."""
        rel = relative_posix(path, self.project_root)
        return rel is not None and any(r.fullmatch(rel) for r in self._regexes)

    def sources(self) -> list[Path]:
        """All stylesheet files in the set, partials included."""
        found: set[Path] = set()
        for pattern in self.patterns:
            base = self.project_root / static_prefix(pattern)
            candidates = [base] if base.is_file() else base.rglob("*")
            found.update(p for p in candidates if p.is_file() and self.matches(p))
        return sorted(found)

    def entry_points(self) -> list[Path]:
        """Stylesheets compiled to their own CSS file (partials skipped)."""
        return [p for p in self.sources() if not p.name.startswith("_")]

    def destination_for(self, source: Path) -> Path:
        try:
            rel = source.relative_to(self.styles_dir)
        except ValueError:
            rel = Path(source.name)
        return self.output_dir / rel.with_suffix(".css")

    def compile_all(self) -> list[CompiledStyle]:
        """Compile every entry point.

        A file that fails to compile is reported through ``on_error`` and
        skipped; the rest of the set still compiles.

        Returns:
            Stylesheets that were written.
        """
        compiled = []
        for source in self.entry_points():
            result = self.compile_file(source)
            if result is not None:
                compiled.append(result)
        return compiled

    def compile_file(self, source: Path) -> CompiledStyle | None:
        """Compile one stylesheet and write it with its source map.

        Returns:
            The compiled stylesheet, or None if compilation failed.
        """
        dest = self.destination_for(source)
        map_path = dest.with_name(dest.name + ".map")
        try:
            css, source_map = sass.compile(
                filename=str(source),
                output_style=self.output_style,
                include_paths=[str(self.styles_dir)],
                source_map_filename=str(map_path),
                output_filename_hint=str(dest),
            )
        except sass.CompileError as exc:
            self.on_error(parse_compile_error(str(exc), source, self.project_root))
            return None
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(css, encoding="utf-8")
        map_path.write_text(source_map, encoding="utf-8")
        logger.info("Sass: compiled %s", display_path(dest, self.output_dir))
        return CompiledStyle(source=source, destination=dest, source_map=map_path)

    def _log_error(self, error: StyleError) -> None:
        location = display_path(error.path, self.project_root)
        if error.line is not None:
            location += f":{error.line}"
            if error.column is not None:
                location += f":{error.column}"
        logger.error("Sass Error: %s %s", location, error.message)
