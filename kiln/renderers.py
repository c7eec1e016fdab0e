"""External template rendering for Kiln.

Templates are rendered by piping each file through an external interpreter
(``php`` by default): the file's bytes go to the process's stdin, stdout
becomes the rendered page and stderr is parsed into diagnostics.

Key classes:
- SubprocessSpawner: Starts the configured interpreter command.
- ExternalRenderer: Streams one file through a spawned process.
- RenderResult: Outcome of one render.
- Diagnostic: One warning or error reported on stderr.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .executable_utils import find_executable
from .protocols import ProcessSpawner
from .utils import replace_extension

logger = logging.getLogger(__name__)

# PHP CLI error lines, e.g.
#   PHP Warning:  Undefined variable $x in Standard input code on line 3
#   PHP Fatal error:  Uncaught Error: boom in /site/source/lib.php:12
DIAGNOSTIC_RE = re.compile(
    r"^(?:PHP )?(?P<severity>[A-Za-z][A-Za-z ]*?):\s+(?P<message>.+)"
    r" in (?P<path>.+?)(?: on line |:)(?P<line>\d+)\s*$"
)

# Name PHP gives code read from stdin.
STDIN_PATH = "Standard input code"

CHUNK_SIZE = 64 * 1024


class RenderError(Exception):
    """The renderer could not be run for a file.

    Attributes:
        source_path: File that was being rendered.
        message: Human-readable error message.
    """

    def __init__(self, source_path: Path, message: str):
        self.source_path = source_path
        self.message = message
        super().__init__(f"{source_path}: {message}")


@dataclass(frozen=True)
class Diagnostic:
    """A diagnostic record parsed from the renderer's stderr.

    Attributes:
        severity: Lowercased label such as ``warning`` or ``fatal error``.
        message: Diagnostic text.
        path: File the diagnostic points at.
        line: One-based line number.
    """

    severity: str
    message: str
    path: Path
    line: int


@dataclass
class RenderResult:
    """Outcome of rendering one source file.

    Attributes:
        source: Absolute path of the rendered source file.
        destination: Output path relative to the build directory.
        output: Rendered bytes; empty means the file is dropped.
        diagnostics: Records parsed from stderr.
        returncode: Exit code of the process (advisory only).
        elapsed: Wall-clock seconds spent, for logging.
    """

    source: Path
    destination: Path
    output: bytes = b""
    diagnostics: list[Diagnostic] = field(default_factory=list)
    returncode: int | None = None
    elapsed: float = 0.0

    @property
    def dropped(self) -> bool:
        """True when the renderer produced no content."""
        return not self.output


def parse_diagnostics(
    text: str, source: Path, pattern: re.Pattern[str] = DIAGNOSTIC_RE
) -> list[Diagnostic]:
    """Parse renderer stderr into diagnostic records.

    Lines that do not match ``pattern`` (stack traces, blank lines,
    malformed output) are skipped.

    Args:
        text: Decoded stderr.
        source: File that was rendered; substituted for stdin placeholders.
        pattern: Regex with ``severity``, ``message``, ``path`` and ``line`` groups.

    Returns:
        Diagnostics in the order they were reported.
    """
    diagnostics = []
    for raw_line in text.splitlines():
        match = pattern.match(raw_line.strip())
        if not match:
            continue
        path_text = match.group("path").strip()
        path = source if path_text in (STDIN_PATH, "-") else Path(path_text)
        diagnostics.append(
            Diagnostic(
                severity=match.group("severity").strip().lower(),
                message=match.group("message").strip(),
                path=path,
                line=int(match.group("line")),
            )
        )
    return diagnostics


class SubprocessSpawner:
    """Starts the interpreter command for each file.

    The command is a list of arguments where ``{dir}`` expands to the
    source file's directory and ``{base_dir}`` to the render base
    directory. The program is looked up on PATH and in project-local bin
    directories.

    Attributes:
        command: Command template.
        project_root: Project root used for local executable lookup.
    """

    def __init__(self, command: Sequence[str], project_root: Path | None = None):
        if not command:
            raise ValueError("Renderer command must not be empty")
        self.command = list(command)
        self.project_root = project_root

    def build_command(self, source: Path, base_dir: Path) -> list[str]:
        """Expand the command template for ``source``."""
        args = [
            arg.replace("{dir}", str(source.parent)).replace("{base_dir}", str(base_dir))
            for arg in self.command
        ]
        program = args[0]
        if "/" not in program and "\\" not in program:
            args[0] = find_executable(program, self.project_root) or program
        return args

    async def spawn(self, source: Path, base_dir: Path) -> asyncio.subprocess.Process:
        args = self.build_command(source, base_dir)
        return await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )


class ExternalRenderer:
    """Renders files by streaming them through an external process.

    Attributes:
        spawner: Starts one process per file.
        source_extension: Extension of renderable sources (``.php``).
        target_extension: Extension of rendered output (``.html``).
        diagnostic_pattern: Regex used to parse stderr.
    """

    def __init__(
        self,
        spawner: ProcessSpawner,
        source_extension: str = ".php",
        target_extension: str = ".html",
        diagnostic_pattern: re.Pattern[str] = DIAGNOSTIC_RE,
    ):
        self.spawner = spawner
        self.source_extension = source_extension
        self.target_extension = target_extension
        self.diagnostic_pattern = diagnostic_pattern

    def destination_for(self, source: Path, base_dir: Path) -> Path:
        """Build-relative output path for ``source`` with the extension swapped."""
        try:
            rel = source.relative_to(base_dir)
        except ValueError:
            rel = Path(source.name)
        return replace_extension(rel, self.source_extension, self.target_extension)

    async def render(self, source: Path, base_dir: Path) -> RenderResult:
        """Render one file.

        A non-zero exit code is not an error: the result is simply empty
        (dropped) or carries diagnostics.

        Args:
            source: File to render.
            base_dir: Base directory for the execution context and the
                destination path.

        Returns:
            RenderResult for the file.

        Raises:
            RenderError: If the file could not be read or the process
                could not be started.
        """
        started = time.perf_counter()
        try:
            handle = open(source, "rb")
        except OSError as exc:
            raise RenderError(source, f"could not read source: {exc}") from exc
        with handle:
            try:
                process = await self.spawner.spawn(source, base_dir)
            except OSError as exc:
                raise RenderError(source, f"could not start renderer: {exc}") from exc
            output, errors, _ = await asyncio.gather(
                _read_stream(process.stdout),
                _read_stream(process.stderr),
                _feed_stdin(handle, process.stdin),
            )
            returncode = await process.wait()
        if returncode:
            logger.debug("Renderer exited with %s for %s", returncode, source)
        diagnostics = (
            parse_diagnostics(
                errors.decode("utf-8", errors="replace"), source, self.diagnostic_pattern
            )
            if errors
            else []
        )
        return RenderResult(
            source=source,
            destination=self.destination_for(source, base_dir),
            output=output,
            diagnostics=diagnostics,
            returncode=returncode,
            elapsed=time.perf_counter() - started,
        )


async def _read_stream(stream: asyncio.StreamReader | None) -> bytes:
    if stream is None:
        return b""
    return await stream.read()


async def _feed_stdin(handle, stdin: asyncio.StreamWriter | None) -> None:
    if stdin is None:
        return
    try:
        while True:
            chunk = handle.read(CHUNK_SIZE)
            if not chunk:
                break
            stdin.write(chunk)
            await stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        # The process stopped reading; whatever it printed still counts.
        logger.debug("Renderer closed its input early")
    finally:
        stdin.close()
        with contextlib.suppress(BrokenPipeError, ConnectionResetError):
            await stdin.wait_closed()
