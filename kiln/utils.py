"""Utility functions for Kiln.

This module contains small helpers used throughout the Kiln codebase.
These include glob translation, path handling and duration formatting.

Key functions:
    glob_to_regex: Translate a gulp-style glob into a compiled regex.
    split_patterns: Split a pattern list into includes and ``!`` excludes.
    static_prefix: Return the literal leading directories of a glob.
    replace_extension: Swap a path's extension for another.
    relative_posix: Express a path relative to a root with forward slashes.
    format_elapsed: Human-readable elapsed time for log lines.
    remove_dir: Remove a directory tree if it exists.
"""

from __future__ import annotations

import re
import shutil
from collections.abc import Iterable
from pathlib import Path

_GLOB_CHARS = set("*?[")
_NO_DOT = r"(?!\.)"
# One or more path segments, none of them hidden.
_ANY_SEGMENTS = rf"{_NO_DOT}[^/]+(?:/{_NO_DOT}[^/]+)*"


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a glob into a regex matched against POSIX relative paths.

    Supported syntax:
        ``**`` matches zero or more whole path segments,
        ``*`` matches within one segment, ``?`` matches one character and
        ``[...]`` is a character class (``[!...]`` negates it).

    Wildcards never match a segment starting with a dot, so dotfiles and
    dot-directories are only selected by a segment that spells the dot
    out (``source/.well-known/**``).

    Args:
        pattern: Glob pattern such as ``source/**/*.php``.

    Returns:
        Compiled regex meant to be used with ``fullmatch``.

    Examples:
        >>> glob_to_regex("source/**/*.php").fullmatch("source/a/b.php") is not None
        True
    """
    parts = _normalize(pattern).split("/")
    regex = ""
    for index, part in enumerate(parts):
        is_last = index == len(parts) - 1
        if part == "**":
            regex += _ANY_SEGMENTS if is_last else f"(?:{_NO_DOT}[^/]+/)*"
            continue
        if not part.startswith("."):
            regex += _NO_DOT
        regex += _translate_segment(part)
        if not is_last:
            regex += "/"
    return re.compile(regex)


def _translate_segment(segment: str) -> str:
    out = []
    i = 0
    while i < len(segment):
        char = segment[i]
        if char == "*":
            out.append("[^/]*")
        elif char == "?":
            out.append("[^/]")
        elif char == "[":
            end = segment.find("]", i + 1)
            if end == -1:
                out.append(re.escape(char))
            else:
                body = segment[i + 1 : end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end
        else:
            out.append(re.escape(char))
        i += 1
    return "".join(out)


def _normalize(pattern: str) -> str:
    pattern = pattern.replace("\\", "/")
    while pattern.startswith("./"):
        pattern = pattern[2:]
    return pattern


def split_patterns(patterns: Iterable[str]) -> tuple[list[str], list[str]]:
    """Split a gulp-style pattern list into include and exclude globs.

    Patterns prefixed with ``!`` are excludes.

    Args:
        patterns: Patterns such as ``["source/**", "!source/**/*.php"]``.

    Returns:
        Tuple of (includes, excludes) with the ``!`` prefix removed.
    """
    includes: list[str] = []
    excludes: list[str] = []
    for pattern in patterns:
        if pattern.startswith("!"):
            excludes.append(_normalize(pattern[1:]))
        else:
            includes.append(_normalize(pattern))
    return includes, excludes


def static_prefix(pattern: str) -> str:
    """Return the leading path segments of a glob that contain no wildcards.

    Examples:
        >>> static_prefix("source/**/*.php")
        'source'
        >>> static_prefix("**/*.css")
        ''
    """
    literal = []
    for part in _normalize(pattern).split("/"):
        if _GLOB_CHARS.intersection(part):
            break
        literal.append(part)
    return "/".join(literal)


def replace_extension(path: Path, old: str, new: str) -> Path:
    """Swap ``old`` for ``new`` at the end of a path's name.

    Paths that do not end with ``old`` are returned unchanged.

    Args:
        path: Path to rewrite.
        old: Extension to replace, including the dot (e.g. ``.php``).
        new: Replacement extension (e.g. ``.html``).

    Returns:
        Rewritten path.
    """
    if old and path.name.endswith(old):
        return path.with_name(path.name[: -len(old)] + new)
    return path


def relative_posix(path: Path, root: Path) -> str | None:
    """Return ``path`` relative to ``root`` with forward slashes.

    Returns:
        The relative path, or None when ``path`` is outside ``root``.
    """
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return None


def display_path(path: Path, root: Path) -> str:
    """Path for log lines: relative to ``root`` when possible."""
    rel = relative_posix(path, root)
    return rel if rel is not None else str(path)


def format_elapsed(seconds: float) -> str:
    """Format an elapsed duration the way task runners print it.

    Examples:
        >>> format_elapsed(0.0000042)
        '4 μs'
        >>> format_elapsed(0.012)
        '12 ms'
        >>> format_elapsed(1.5)
        '1.5 s'
    """
    if seconds < 0.001:
        return f"{round(seconds * 1_000_000)} μs"
    if seconds < 1:
        return f"{round(seconds * 1000)} ms"
    if seconds < 60:
        return f"{seconds:.2g} s" if seconds < 10 else f"{round(seconds)} s"
    minutes, secs = divmod(round(seconds), 60)
    return f"{minutes} min {secs} s"


def remove_dir(path: Path) -> bool:
    """Remove a directory tree if it exists.

    Args:
        path: Directory to remove.

    Returns:
        True if something was removed.
    """
    if not path.exists():
        return False
    shutil.rmtree(str(path), ignore_errors=True)
    if path.exists():
        # Fallback for stubborn directories
        for item in path.rglob("*"):
            if item.is_file() or item.is_symlink():
                item.unlink()
        for item in sorted([p for p in path.rglob("*") if p.is_dir()], reverse=True):
            item.rmdir()
        path.rmdir()
    return True
